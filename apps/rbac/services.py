"""
Access administration services.

Wraps the store operations that change who can do what (role assignments,
profile fields, tenant fields) and records each committed change in the
audit log.
"""
import logging

from apps.core.exceptions import NotFound
from apps.rbac.audit import AuditLog
from apps.rbac.models import AuditRecord, Role
from apps.tenants.services.store import TenantUserStore

logger = logging.getLogger(__name__)


class RBACService:
    """
    Service for role assignment and profile administration.
    """

    @staticmethod
    def get_role(role_id) -> Role:
        role = Role.objects.filter(id=role_id).first()
        if role is None:
            raise NotFound('Role not found', details={'role_id': str(role_id)})
        return role

    @classmethod
    def assign_role(cls, caller_id, principal_id, role: Role, request_id: str = None):
        """
        Assign a role to a principal.

        Assigning a role the principal already holds succeeds without a new
        audit record.

        Returns:
            (RoleAssignment, created)
        """
        assignment, created = TenantUserStore.assign_role(caller_id, principal_id, role)

        if created:
            AuditLog.record(
                tenant_id=assignment.principal.client_id,
                performed_by=caller_id,
                action=AuditRecord.ACTION_ROLE_ASSIGNED,
                details={
                    'principal_id': str(principal_id),
                    'role_name': role.name,
                },
                request_id=request_id,
                result={'assignment_id': str(assignment.id)},
            )

        return assignment, created

    @classmethod
    def remove_role(cls, caller_id, principal_id, role: Role, request_id: str = None) -> bool:
        """
        Remove a role from a principal.

        Returns:
            True if role was removed, False if it was not assigned
        """
        removed = TenantUserStore.remove_role(caller_id, principal_id, role)

        if removed:
            principal = TenantUserStore.get_principal(caller_id, principal_id)
            AuditLog.record(
                tenant_id=principal.client_id,
                performed_by=caller_id,
                action=AuditRecord.ACTION_ROLE_REMOVED,
                details={
                    'principal_id': str(principal_id),
                    'role_name': role.name,
                },
                request_id=request_id,
                result={'principal_id': str(principal_id), 'role_id': str(role.id)},
            )

        return removed

    @classmethod
    def update_profile(cls, caller_id, principal_id, request_id: str = None, **fields):
        """Update profile fields within the caller's authority."""
        before = TenantUserStore.get_principal(caller_id, principal_id)
        previous = {name: getattr(before, name) for name in fields}

        principal = TenantUserStore.update_principal(caller_id, principal_id, **fields)

        changes = {}
        for name, value in fields.items():
            old = None if previous[name] is None else str(previous[name])
            new = None if value is None else str(value)
            if old != new:
                changes[name] = {'from': old, 'to': new}

        if changes:
            AuditLog.record(
                tenant_id=principal.client_id,
                performed_by=caller_id,
                action=AuditRecord.ACTION_PROFILE_UPDATED,
                details={'principal_id': str(principal.id), 'changes': changes},
                request_id=request_id,
                result={'principal_id': str(principal.id)},
            )
        return principal

    @classmethod
    def update_tenant(cls, caller_id, tenant_id, request_id: str = None, **fields):
        """Update descriptive tenant fields (super admins only)."""
        tenant = TenantUserStore.update_tenant(caller_id, tenant_id, **fields)

        AuditLog.record(
            tenant_id=tenant.id,
            performed_by=caller_id,
            action=AuditRecord.ACTION_TENANT_UPDATED,
            details={'fields': sorted(fields)},
            request_id=request_id,
            result={'tenant_id': str(tenant.id)},
        )
        return tenant
