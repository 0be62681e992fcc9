"""
Local identity directory records.

Holds authentication credentials only. Profile data (tenant membership,
tenant level, display name) lives in the tenants app and references an
Identity by id without owning it.
"""
from django.db import models
from django.contrib.auth.hashers import make_password, check_password
from apps.core.models import BaseModel
from apps.core.validators import InputValidator


class IdentityManager(models.Manager):
    """
    Manager for Identity queries.

    Compatible with Django's authentication system.
    """

    def by_email(self, email):
        """Find identity by normalized email."""
        return self.filter(email=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create an identity with a hashed password (unusable when none given)."""
        if not email:
            raise ValueError('Email address is required')

        identity = self.model(email=self.normalize_email(email), **extra_fields)
        identity.set_password(password)
        identity.save(using=self._db)
        return identity

    @staticmethod
    def normalize_email(email):
        return InputValidator.normalize_email(email)

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class Identity(BaseModel):
    """
    A credential record in the local identity directory.

    This is the AUTH_USER_MODEL. Its id is the principal id shared with the
    profile store.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="Login email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Directory metadata supplied at creation (name, tenant_level, client_id)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the identity may authenticate"
    )
    last_login = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last login timestamp"
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = IdentityManager()

    class Meta:
        db_table = 'identities'
        ordering = ['-created_at']
        verbose_name_plural = 'identities'

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash, expected by Django's auth machinery."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        """Check if provided password matches stored hash."""
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        """Set password (hashes automatically; None yields an unusable password)."""
        self.password_hash = make_password(raw_password)

    def get_username(self):
        return self.email

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False
