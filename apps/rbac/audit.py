"""
Audit Log service.

Appends are never allowed to fail silently: a failed write raises
AuditWriteFailed so the caller reports the operation as failed even when its
primary effect already committed.
"""
import logging

from django.db import DatabaseError, transaction

from apps.core.exceptions import AuditWriteFailed, Forbidden
from apps.core.logging import PIIMasker, SecurityLogger
from apps.rbac.models import AuditRecord
from apps.rbac.policy import PolicyEngine

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only record of privileged operations.
    """

    @classmethod
    def _scrub(cls, details):
        """Drop secret-bearing keys from a details payload."""
        return {
            key: (cls._scrub(value) if isinstance(value, dict) else value)
            for key, value in (details or {}).items()
            if not PIIMasker.is_sensitive_field(key)
        }

    @classmethod
    def record(cls, tenant_id, performed_by, action, details=None, request_id=None, result=None) -> AuditRecord:
        """
        Append an audit record.

        Args:
            tenant_id: Tenant the action belongs to (None for platform-level)
            performed_by: Principal id of the caller
            action: One of AuditRecord.ACTION_*
            details: Structured payload (secrets are stripped)
            request_id: Request ID for tracing
            result: Non-secret identifiers of the committed effect, carried
                by AuditWriteFailed when the append fails

        Raises:
            AuditWriteFailed: the append did not commit
        """
        try:
            with transaction.atomic():
                record = AuditRecord.objects.create(
                    tenant_id=tenant_id,
                    performed_by=performed_by,
                    action=action,
                    details=cls._scrub(details),
                    request_id=request_id or '',
                )
        except DatabaseError as e:
            logger.error(
                f"Failed to write audit record: {action}",
                extra={'action': action, 'tenant_id': str(tenant_id) if tenant_id else None},
                exc_info=True
            )
            SecurityLogger.log_audit_write_failed(
                action=action,
                tenant_id=tenant_id,
                performed_by=performed_by,
                error=e.__class__.__name__,
            )
            raise AuditWriteFailed(action, result=result) from e

        logger.info(
            f"Audit record written: {action}",
            extra={
                'action': action,
                'audit_record_id': str(record.id),
                'tenant_id': str(tenant_id) if tenant_id else None,
            }
        )
        return record

    @classmethod
    def list_for(cls, tenant_id, caller_id):
        """
        Audit records visible to the caller.

        A tenant id requires can_access_client. None lists everything the
        caller may see: all records for super admins, the caller's own tenant
        otherwise.
        """
        if tenant_id is not None:
            if not PolicyEngine.can_access_client(caller_id, tenant_id):
                SecurityLogger.log_permission_denied(
                    caller_id, 'list_audit_records', tenant_id=tenant_id, reason='can_access_client'
                )
                raise Forbidden('You do not have access to this tenant')
            return AuditRecord.objects.for_tenant(tenant_id)

        return AuditRecord.objects.filter(PolicyEngine.tenant_scope(caller_id, 'tenant_id'))
