"""
Custom logging formatters, filters and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.
    """

    # Patterns for sensitive data
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9_\-\.]+', re.IGNORECASE)
    JWT_PATTERN = re.compile(r'eyJ[a-zA-Z0-9_\-]+\.eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+')

    # Field names whose values are always masked
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd', 'admin_password',
        'api_key', 'access_token', 'refresh_token', 'bearer_token', 'token',
        'secret', 'secret_key', 'service_key', 'authorization',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"
        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask tokens, passwords and secrets in text."""
        if not isinstance(text, str):
            return text
        text = cls.JWT_PATTERN.sub('[REDACTED_JWT]', text)
        text = cls.BEARER_PATTERN.sub('Bearer [REDACTED]', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_secrets(text)
        text = cls.mask_email(text)
        return text

    @classmethod
    def is_sensitive_field(cls, key):
        return str(key).lower() in cls.SENSITIVE_FIELDS

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if cls.is_sensitive_field(key):
                masked[key] = '********' if value else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


# LogRecord attributes that are not user-supplied extras
RESERVED_RECORD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info', 'taskName',
    'request_id', 'principal_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and principal_id when available.
    Automatically masks sensitive data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if getattr(record, 'request_id', None):
            log_data['request_id'] = record.request_id

        if getattr(record, 'principal_id', None):
            log_data['principal_id'] = str(record.principal_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in RESERVED_RECORD_ATTRS or key.startswith('_'):
                continue
            if PIIMasker.is_sensitive_field(key):
                log_data[key] = '********'
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_text(value)
                else:
                    masked_value = value

                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SanitizingFilter(logging.Filter):
    """
    Logging filter that masks secrets in the rendered message of every record.

    Used on every handler so plain-text formatters never emit passwords or
    bearer tokens either.
    """

    def filter(self, record):
        if record.args:
            try:
                record.msg = record.getMessage()
                record.args = None
            except (TypeError, ValueError):
                return True
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_secrets(record.msg)
        return True


class SecurityLogger:
    """
    Centralized security event logging.

    Logs security-related events with structured data to the ``security``
    logger. Critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'privilege_escalation_attempt',
        'audit_write_failed',
        'partial_provisioning',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (principal_id, tenant_id, etc.)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_permission_denied(principal_id, action: str, tenant_id=None, reason: str = None):
        """
        Log a policy denial.

        Args:
            principal_id: Caller that was denied
            action: Operation attempted (e.g., 'create_tenant')
            tenant_id: Target tenant, if any
            reason: Predicate that failed
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            principal_id=str(principal_id) if principal_id else None,
            action=action,
            tenant_id=str(tenant_id) if tenant_id else None,
            reason=reason,
        )

    @staticmethod
    def log_privilege_escalation_attempt(principal_id, requested, tenant_id=None):
        """Log an attempt to grant roles or levels beyond the caller's reach."""
        SecurityLogger.log_event(
            'privilege_escalation_attempt',
            level='error',
            principal_id=str(principal_id) if principal_id else None,
            requested=list(requested),
            tenant_id=str(tenant_id) if tenant_id else None,
        )

    @staticmethod
    def log_failed_authentication(reason: str, ip_address: str = None):
        """Log a rejected credential token."""
        SecurityLogger.log_event(
            'failed_authentication',
            level='warning',
            reason=reason,
            ip_address=ip_address,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, principal_id: str = None):
        """Log a rate limit violation."""
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            principal_id=principal_id,
        )

    @staticmethod
    def log_audit_write_failed(action: str, tenant_id=None, performed_by=None, error: str = None):
        """Log a failed audit append; the primary effect already committed."""
        SecurityLogger.log_event(
            'audit_write_failed',
            level='error',
            action=action,
            tenant_id=str(tenant_id) if tenant_id else None,
            performed_by=str(performed_by) if performed_by else None,
            error=error,
        )

    @staticmethod
    def log_partial_provisioning(step: str, tenant_id=None, principal_id=None, performed_by=None):
        """Log a provisioning workflow that stopped partway."""
        SecurityLogger.log_event(
            'partial_provisioning',
            level='error',
            step=step,
            tenant_id=str(tenant_id) if tenant_id else None,
            principal_id=str(principal_id) if principal_id else None,
            performed_by=str(performed_by) if performed_by else None,
        )
