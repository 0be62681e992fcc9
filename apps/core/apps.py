from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security-critical configuration when Django initializes.
        """
        self._validate_jwt_configuration()
        self._validate_identity_directory()

    def _validate_jwt_configuration(self):
        """Validate JWT secret key configuration."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == secret_key:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be different from SECRET_KEY."
            )

    def _validate_identity_directory(self):
        """The remote directory needs an endpoint and a service key."""
        if not settings.IDENTITY_DIRECTORY_CLASS.endswith('RemoteIdentityDirectory'):
            return
        missing = [
            name for name in ('IDENTITY_DIRECTORY_URL', 'IDENTITY_DIRECTORY_SERVICE_KEY')
            if not getattr(settings, name, None)
        ]
        if missing:
            raise ImproperlyConfigured(
                f"RemoteIdentityDirectory requires: {', '.join(missing)}"
            )
