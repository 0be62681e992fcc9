"""
Identity Directory contract and implementations.

The directory issues and stores authentication credentials and hands back a
stable principal id on creation. The provisioning workflow and the bearer
token authentication talk to it only through ``IdentityDirectory``.

Implementations:
- DatabaseIdentityDirectory: local ``Identity`` table, Django password
  hashers and PyJWT bearer tokens.
- RemoteIdentityDirectory: an HTTP identity service admin API (GoTrue style),
  every call bounded by a timeout.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Dict, Optional

import jwt
import requests
from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils.module_loading import import_string

from apps.core.exceptions import (
    DependencyUnavailable,
    DuplicateEmailError,
    NotFound,
    Unauthorized,
    ValidationError,
)
from apps.core.validators import InputValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryPrincipal:
    """A principal as known to the identity directory."""
    id: uuid.UUID
    email: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class IdentityDirectory:
    """
    Contract for the external identity directory.
    """

    name = 'identity_directory'

    def create_principal(self, email: str, password: Optional[str], metadata: Dict[str, Any]) -> uuid.UUID:
        """
        Create a principal and return its id.

        Raises:
            DuplicateEmailError: email already registered
            DependencyUnavailable: directory unreachable or timed out
        """
        raise NotImplementedError

    def get_caller_identity(self, token: str) -> uuid.UUID:
        """
        Resolve a credential token to a principal id.

        Raises:
            Unauthorized: token missing, invalid or expired
        """
        raise NotImplementedError

    def find_by_email(self, email: str) -> Optional[DirectoryPrincipal]:
        """Look up an existing principal by email (used by the resume path)."""
        raise NotImplementedError

    def reset_credential(self, principal_id: uuid.UUID, password: str) -> None:
        """
        Replace a principal's password.

        Raises:
            NotFound: no such principal
            DependencyUnavailable: directory unreachable or timed out
        """
        raise NotImplementedError

    def check_health(self) -> None:
        """
        Raises:
            DependencyUnavailable: directory cannot serve requests
        """
        raise NotImplementedError


class DatabaseIdentityDirectory(IdentityDirectory):
    """
    Identity directory backed by the local ``identities`` table.
    """

    name = 'identity_directory'

    def create_principal(self, email, password, metadata):
        from apps.identity.models import Identity

        email = InputValidator.normalize_email(email)
        if not InputValidator.validate_email(email):
            raise ValidationError('Invalid email address', details={'email': email})

        try:
            with transaction.atomic():
                identity = Identity.objects.create_user(
                    email=email,
                    password=password,
                    metadata=metadata or {},
                )
        except IntegrityError as e:
            raise DuplicateEmailError(email) from e
        except DatabaseError as e:
            raise DependencyUnavailable(self.name) from e

        logger.info(
            "Identity created",
            extra={'principal_id': str(identity.id)}
        )
        return identity.id

    def get_caller_identity(self, token):
        from apps.identity.models import Identity

        payload = self.validate_token(token)
        if not payload:
            raise Unauthorized('Invalid or expired credential token')

        try:
            principal_id = uuid.UUID(payload.get('sub', ''))
        except (TypeError, ValueError, AttributeError):
            raise Unauthorized('Invalid or expired credential token')

        if not Identity.objects.filter(id=principal_id, is_active=True).exists():
            raise Unauthorized('Unknown or inactive principal')
        return principal_id

    def find_by_email(self, email):
        from apps.identity.models import Identity

        identity = Identity.objects.by_email(email)
        if identity is None:
            return None
        return DirectoryPrincipal(id=identity.id, email=identity.email, metadata=identity.metadata)

    def reset_credential(self, principal_id, password):
        from apps.identity.models import Identity

        try:
            with transaction.atomic():
                identity = Identity.objects.select_for_update().filter(id=principal_id).first()
                if identity is None:
                    raise NotFound('Identity not found', details={'principal_id': str(principal_id)})
                identity.set_password(password)
                identity.save(update_fields=['password_hash', 'updated_at'])
        except DatabaseError as e:
            raise DependencyUnavailable(self.name) from e

        logger.info(
            "Identity credential reset",
            extra={'principal_id': str(principal_id)}
        )

    def check_health(self):
        from apps.identity.models import Identity

        try:
            Identity.objects.only('id').first()
        except DatabaseError as e:
            raise DependencyUnavailable(self.name) from e

    @staticmethod
    def issue_token(principal_id, email: str = None) -> str:
        """
        Issue a bearer token for a principal.

        Token issuance belongs to the login flow, which lives outside this
        service; this is used by the bootstrap command and by tests.
        """
        now = datetime.now(dt_timezone.utc)
        payload = {
            'sub': str(principal_id),
            'email': email,
            'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
            'iat': now,
        }
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def validate_token(token: str) -> Optional[Dict[str, Any]]:
        """Decode a bearer token, returning None when invalid or expired."""
        if not token:
            return None
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None


class RemoteIdentityDirectory(IdentityDirectory):
    """
    Identity directory reached over HTTP.

    Speaks the admin API of a GoTrue-style auth service:
    - POST {base}/admin/users creates a user
    - GET {base}/admin/users?email=... looks a user up
    - PUT {base}/admin/users/{id} replaces a password
    - GET {base}/user resolves a caller token
    - GET {base}/health reports liveness
    """

    name = 'identity_directory'

    def __init__(self, base_url: str = None, service_key: str = None, timeout: float = None):
        self.base_url = (base_url or settings.IDENTITY_DIRECTORY_URL or '').rstrip('/')
        self.service_key = service_key or settings.IDENTITY_DIRECTORY_SERVICE_KEY
        self.timeout = timeout or settings.IDENTITY_DIRECTORY_TIMEOUT

    def _admin_headers(self):
        return {
            'apikey': self.service_key,
            'Authorization': f'Bearer {self.service_key}',
            'Content-Type': 'application/json',
        }

    def create_principal(self, email, password, metadata):
        email = InputValidator.normalize_email(email)
        body = {
            'email': email,
            'email_confirm': True,
            'user_metadata': metadata or {},
        }
        if password:
            body['password'] = password

        try:
            response = requests.post(
                f'{self.base_url}/admin/users',
                json=body,
                headers=self._admin_headers(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(
                "Identity directory request failed",
                extra={'operation': 'create_principal', 'error': str(e)}
            )
            raise DependencyUnavailable(self.name) from e

        if response.status_code in (409, 422) and self._is_duplicate(response):
            raise DuplicateEmailError(email)
        if response.status_code in (400, 422):
            raise ValidationError('Identity directory rejected the principal', details=self._error_body(response))
        if response.status_code >= 500:
            raise DependencyUnavailable(self.name)

        try:
            response.raise_for_status()
            return uuid.UUID(response.json()['id'])
        except (requests.exceptions.HTTPError, ValueError, KeyError) as e:
            raise DependencyUnavailable(self.name, 'Unexpected response from identity directory') from e

    def get_caller_identity(self, token):
        if not token:
            raise Unauthorized('Missing credential token')
        try:
            response = requests.get(
                f'{self.base_url}/user',
                headers={'apikey': self.service_key, 'Authorization': f'Bearer {token}'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(self.name) from e

        if response.status_code in (401, 403):
            raise Unauthorized('Invalid or expired credential token')
        if response.status_code >= 500:
            raise DependencyUnavailable(self.name)

        try:
            response.raise_for_status()
            return uuid.UUID(response.json()['id'])
        except (requests.exceptions.HTTPError, ValueError, KeyError) as e:
            raise Unauthorized('Invalid or expired credential token') from e

    def find_by_email(self, email):
        email = InputValidator.normalize_email(email)
        try:
            response = requests.get(
                f'{self.base_url}/admin/users',
                params={'email': email},
                headers=self._admin_headers(),
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(self.name) from e

        try:
            data = response.json()
            users = data.get('users', []) if isinstance(data, dict) else data
            for user in users:
                if InputValidator.normalize_email(user.get('email', '')) == email:
                    return DirectoryPrincipal(
                        id=uuid.UUID(user['id']),
                        email=email,
                        metadata=user.get('user_metadata') or {},
                    )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise DependencyUnavailable(self.name, 'Unexpected response from identity directory') from e
        return None

    def reset_credential(self, principal_id, password):
        try:
            response = requests.put(
                f'{self.base_url}/admin/users/{principal_id}',
                json={'password': password},
                headers=self._admin_headers(),
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(
                "Identity directory request failed",
                extra={'operation': 'reset_credential', 'error': str(e)}
            )
            raise DependencyUnavailable(self.name) from e

        if response.status_code == 404:
            raise NotFound('Identity not found', details={'principal_id': str(principal_id)})
        if response.status_code in (400, 422):
            raise ValidationError('Identity directory rejected the credential', details=self._error_body(response))
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise DependencyUnavailable(self.name) from e

    def check_health(self):
        try:
            response = requests.get(
                f'{self.base_url}/health',
                headers={'apikey': self.service_key},
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(self.name) from e

    @staticmethod
    def _error_body(response):
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @classmethod
    def _is_duplicate(cls, response):
        body = cls._error_body(response)
        text = ' '.join(str(body.get(key, '')) for key in ('msg', 'message', 'error_code', 'code')).lower()
        return response.status_code == 409 or 'already' in text or 'email_exists' in text


def get_identity_directory() -> IdentityDirectory:
    """Return the configured identity directory."""
    directory_class = import_string(settings.IDENTITY_DIRECTORY_CLASS)
    return directory_class()
