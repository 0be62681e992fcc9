"""
Error taxonomy and the DRF exception handler.

Every failure surfaced by the platform carries a stable ``kind`` and a
human-readable message. Plaintext credentials never appear in an error
payload.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework import exceptions as drf_exceptions
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)


class PlatformError(Exception):
    """Base exception for platform errors."""

    kind = 'error'
    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'kind': self.kind,
            'message': self.message,
            'details': self.details,
        }


class Unauthorized(PlatformError):
    """Raised when the caller is not authenticated."""
    kind = 'unauthorized'
    status_code = 401


class Forbidden(PlatformError):
    """Raised when an authenticated caller fails a policy predicate."""
    kind = 'forbidden'
    status_code = 403


class NotFound(PlatformError):
    """Raised when a referenced record does not exist."""
    kind = 'not_found'
    status_code = 404


class ValidationError(PlatformError):
    """Raised when input is malformed (bad email, weak password, unknown role)."""
    kind = 'validation_error'
    status_code = 400


class ConflictError(PlatformError):
    """Raised on a uniqueness violation."""
    kind = 'conflict'
    status_code = 409


class DuplicateEmailError(ConflictError):
    """Raised by the identity directory when the email is already registered."""

    def __init__(self, email, message=None):
        self.email = email
        super().__init__(
            message or 'A principal with this email already exists',
            details={'email': email},
        )


class PartialProvisioningError(PlatformError):
    """
    Raised when a provisioning workflow stops partway.

    Nothing is rolled back. The error names the step reached and the
    identifiers already created so the caller can resume or clean up.
    """
    kind = 'partial_provisioning'
    status_code = 500

    def __init__(self, step_reached, tenant_id=None, principal_id=None, message=None):
        self.step_reached = step_reached
        self.tenant_id = tenant_id
        self.principal_id = principal_id
        details = {
            'step_reached': int(step_reached),
            'step_name': step_reached.name.lower(),
            'tenant_id': str(tenant_id) if tenant_id else None,
            'principal_id': str(principal_id) if principal_id else None,
        }
        super().__init__(
            message or f'Provisioning stopped at step {int(step_reached)} ({details["step_name"]})',
            details=details,
        )


class AuditWriteFailed(PlatformError):
    """
    Raised when the primary effect committed but the audit append failed.

    ``result`` holds the non-secret identifiers of the committed effect.
    """
    kind = 'audit_write_failed'
    status_code = 500

    def __init__(self, action, result=None, message=None):
        self.action = action
        self.result = result or {}
        super().__init__(
            message or f'Operation succeeded but the audit record for {action} could not be written',
            details={'action': action, 'result': self.result},
        )


class DependencyUnavailable(PlatformError):
    """Raised when the identity directory, store or audit log is unreachable or timed out."""
    kind = 'dependency_unavailable'
    status_code = 503

    def __init__(self, dependency, message=None):
        self.dependency = dependency
        super().__init__(
            message or f'{dependency} is unavailable',
            details={'dependency': dependency},
        )


# DRF exception classes mapped onto the platform kinds
DRF_KIND_MAP = {
    drf_exceptions.NotAuthenticated: Unauthorized.kind,
    drf_exceptions.AuthenticationFailed: Unauthorized.kind,
    drf_exceptions.PermissionDenied: Forbidden.kind,
    drf_exceptions.NotFound: NotFound.kind,
    drf_exceptions.ValidationError: ValidationError.kind,
    drf_exceptions.ParseError: ValidationError.kind,
}


def _error_response(kind, message, details, status_code, request_id):
    return Response(
        {
            'error': {
                'kind': kind,
                'message': message,
                'details': details,
            },
            'request_id': request_id,
        },
        status=status_code
    )


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns a consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    # Handle django-ratelimit exceptions
    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        retry_after = 60
        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown',
            principal_id=str(request.user.id) if request and getattr(request.user, 'is_authenticated', False) else None,
        )
        response = _error_response(
            'rate_limited',
            'Rate limit exceeded. Please try again later.',
            {'retry_after': retry_after},
            status.HTTP_429_TOO_MANY_REQUESTS,
            request_id,
        )
        # Add Retry-After header (RFC 6585)
        response['Retry-After'] = str(retry_after)
        return response

    if isinstance(exc, PlatformError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"API error: {exc.kind}",
            extra={
                'error_kind': exc.kind,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=exc.status_code >= 500
        )
        return _error_response(exc.kind, exc.message, exc.details, exc.status_code, request_id)

    # Call DRF's default exception handler for its own exceptions
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"Unhandled API exception: {exc.__class__.__name__}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return _error_response(
            'internal_error',
            'An unexpected error occurred',
            {},
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id,
        )

    kind = 'error'
    for exc_class, mapped_kind in DRF_KIND_MAP.items():
        if isinstance(exc, exc_class):
            kind = mapped_kind
            break

    if isinstance(exc, drf_exceptions.ValidationError):
        message = 'Invalid input'
        details = response.data
    else:
        message = str(response.data.get('detail', exc)) if isinstance(response.data, dict) else str(exc)
        details = {}

    response.data = {
        'error': {
            'kind': kind,
            'message': message,
            'details': details,
        },
        'request_id': request_id,
    }
    return response
