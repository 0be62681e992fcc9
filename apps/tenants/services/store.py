"""
Tenant/User Store.

Persists tenants, principal profiles, roles and role assignments. Every
operation takes the caller's principal id explicitly and re-checks the policy
predicate itself, so a caller that skipped the check at the call site is
still refused here.

Each write runs in its own atomic block. Uniqueness violations surface as
ConflictError, other database failures (including statement timeouts) as
DependencyUnavailable.
"""
import logging
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError, transaction

from apps.core.exceptions import (
    ConflictError,
    DependencyUnavailable,
    Forbidden,
    NotFound,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.validators import InputValidator
from apps.rbac.models import Role, RoleAssignment
from apps.rbac.policy import PolicyEngine
from apps.tenants.models import Principal, Tenant

logger = logging.getLogger(__name__)

STORE = 'tenant_user_store'


@contextmanager
def store_errors(conflict_message='Record already exists'):
    """Translate database errors into platform errors."""
    try:
        yield
    except IntegrityError as e:
        raise ConflictError(conflict_message) from e
    except DatabaseError as e:
        logger.error("Store operation failed", exc_info=True)
        raise DependencyUnavailable(STORE) from e


def _deny(caller_id, action, tenant_id=None, reason=None, message='You do not have permission to perform this action'):
    SecurityLogger.log_permission_denied(caller_id, action, tenant_id=tenant_id, reason=reason)
    return Forbidden(message)


class TenantUserStore:
    """
    Store contract for tenants, principals, roles and role assignments.
    """

    TENANT_UPDATABLE_FIELDS = ('name', 'contact_email', 'tenant_type', 'settings')

    # Tenants

    @classmethod
    def create_tenant(cls, caller_id, name, contact_email, tenant_type=Tenant.TYPE_REGULAR, settings=None) -> Tenant:
        """
        Create a provisional tenant (admin reference unset).

        The unique constraint on name is the serialization point for
        concurrent creations: the second writer gets ConflictError.
        """
        if not PolicyEngine.is_super_admin(caller_id):
            raise _deny(caller_id, 'create_tenant', reason='is_super_admin')

        with store_errors(f"A tenant named '{name}' already exists"):
            with transaction.atomic():
                tenant = Tenant.objects.create(
                    name=name,
                    contact_email=contact_email,
                    tenant_type=tenant_type,
                    created_by=caller_id,
                    settings=settings or {},
                )

        logger.info(
            "Provisional tenant created",
            extra={'tenant_id': str(tenant.id), 'created_by': str(caller_id)}
        )
        return tenant

    @classmethod
    def get_tenant(cls, caller_id, tenant_id) -> Tenant:
        if not PolicyEngine.can_access_client(caller_id, tenant_id):
            raise _deny(caller_id, 'get_tenant', tenant_id=tenant_id, reason='can_access_client',
                        message='You do not have access to this tenant')
        with store_errors():
            tenant = Tenant.objects.filter(id=tenant_id).first()
        if tenant is None:
            raise NotFound('Tenant not found', details={'tenant_id': str(tenant_id)})
        return tenant

    @classmethod
    def list_tenants(cls, caller_id):
        """Tenants the caller can access."""
        return Tenant.objects.filter(PolicyEngine.tenant_scope(caller_id, 'id')).select_related('admin_user')

    @classmethod
    def update_tenant(cls, caller_id, tenant_id, **fields) -> Tenant:
        """Update descriptive tenant fields. Super admins only."""
        if not PolicyEngine.is_super_admin(caller_id):
            raise _deny(caller_id, 'update_tenant', tenant_id=tenant_id, reason='is_super_admin')

        unknown = set(fields) - set(cls.TENANT_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                'Fields cannot be updated', details={'fields': sorted(unknown)}
            )

        tenant = cls.get_tenant(caller_id, tenant_id)
        for field, value in fields.items():
            setattr(tenant, field, value)

        name = fields.get('name', tenant.name)
        with store_errors(f"A tenant named '{name}' already exists"):
            with transaction.atomic():
                tenant.save(update_fields=list(fields) + ['updated_at'])
        return tenant

    @classmethod
    def activate_tenant(cls, caller_id, tenant_id, admin_principal_id) -> Tenant:
        """
        Point the tenant at its administrator, making it active.

        The referenced principal must be a tenant_admin of this tenant.
        """
        if not PolicyEngine.is_super_admin(caller_id):
            raise _deny(caller_id, 'activate_tenant', tenant_id=tenant_id, reason='is_super_admin')

        with store_errors():
            with transaction.atomic():
                tenant = Tenant.objects.select_for_update().filter(id=tenant_id).first()
                if tenant is None:
                    raise NotFound('Tenant not found', details={'tenant_id': str(tenant_id)})
                admin = Principal.objects.filter(id=admin_principal_id).first()
                if (
                    admin is None
                    or admin.tenant_level != Principal.LEVEL_TENANT_ADMIN
                    or admin.client_id != tenant.id
                ):
                    raise ValidationError(
                        'Administrator must be a tenant_admin principal of this tenant',
                        details={'tenant_id': str(tenant_id), 'principal_id': str(admin_principal_id)},
                    )
                tenant.admin_user = admin
                tenant.save(update_fields=['admin_user', 'updated_at'])

        logger.info(
            "Tenant activated",
            extra={'tenant_id': str(tenant.id), 'admin_user_id': str(admin.id)}
        )
        return tenant

    @classmethod
    def discard_tenant(cls, caller_id, tenant_id) -> Tenant:
        """
        Delete a provisional tenant and any principal profiles attached to it.

        Active tenants cannot be discarded through this path.
        """
        if not PolicyEngine.is_super_admin(caller_id):
            raise _deny(caller_id, 'discard_tenant', tenant_id=tenant_id, reason='is_super_admin')

        with store_errors():
            with transaction.atomic():
                tenant = Tenant.objects.select_for_update().filter(id=tenant_id).first()
                if tenant is None:
                    raise NotFound('Tenant not found', details={'tenant_id': str(tenant_id)})
                if tenant.is_active:
                    raise ConflictError(
                        'Only provisional tenants can be discarded',
                        details={'tenant_id': str(tenant_id)},
                    )
                tenant.delete()
        return tenant

    # Principals

    @classmethod
    def get_principal(cls, caller_id, principal_id) -> Principal:
        with store_errors():
            principal = Principal.objects.filter(id=principal_id).select_related('client').first()
        if principal is None:
            if PolicyEngine.is_super_admin(caller_id):
                raise NotFound('Principal not found', details={'principal_id': str(principal_id)})
            raise _deny(caller_id, 'get_principal', reason='can_access_client')

        if str(principal.id) == str(caller_id):
            return principal
        if principal.client_id is None:
            allowed = PolicyEngine.is_super_admin(caller_id)
        else:
            allowed = PolicyEngine.can_access_client(caller_id, principal.client_id)
        if not allowed:
            raise _deny(caller_id, 'get_principal', tenant_id=principal.client_id, reason='can_access_client')
        return principal

    @classmethod
    def list_principals(cls, caller_id, tenant_id=None):
        """
        Principals visible to the caller.

        With a tenant id the caller must pass can_access_client for it;
        without one, the row filter limits results to accessible tenants.
        """
        if tenant_id is not None:
            if not PolicyEngine.can_access_client(caller_id, tenant_id):
                raise _deny(caller_id, 'list_principals', tenant_id=tenant_id, reason='can_access_client',
                            message='You do not have access to this tenant')
            return Principal.objects.for_tenant(tenant_id).prefetch_related('role_assignments__role')

        return Principal.objects.filter(
            PolicyEngine.tenant_scope(caller_id, 'client_id')
        ).prefetch_related('role_assignments__role')

    @classmethod
    def _check_level(cls, tenant_level, client_id):
        if tenant_level not in dict(Principal.LEVEL_CHOICES):
            raise ValidationError('Unknown tenant level', details={'tenant_level': tenant_level})
        if (tenant_level == Principal.LEVEL_SUPER_ADMIN) != (client_id is None):
            raise ValidationError(
                'Super admins have no tenant; every other principal belongs to exactly one tenant',
                details={'tenant_level': tenant_level, 'client_id': str(client_id) if client_id else None},
            )

    @classmethod
    def _check_active_admin_kept(cls, principal, tenant_level, client_id):
        """Refuse to demote or move a principal that a tenant references as its admin."""
        if principal is None:
            return
        administered = Tenant.objects.filter(admin_user_id=principal.id).exclude(
            id=client_id if tenant_level == Principal.LEVEL_TENANT_ADMIN else None
        )
        if administered.exists():
            raise ValidationError(
                'Principal is the active administrator of a tenant',
                details={'principal_id': str(principal.id)},
            )

    @classmethod
    def write_principal(cls, caller_id, principal_id, email, display_name, client_id, tenant_level) -> Principal:
        """
        Create or merge profile fields keyed by the directory-issued id.

        Re-running with the same arguments is a no-op, so resumed workflows
        can repeat this step safely.
        """
        cls._check_level(tenant_level, client_id)
        if tenant_level != Principal.LEVEL_USER:
            if not PolicyEngine.is_super_admin(caller_id):
                raise _deny(caller_id, 'write_principal', tenant_id=client_id, reason='is_super_admin')
        elif not PolicyEngine.can_access_client(caller_id, client_id):
            raise _deny(caller_id, 'write_principal', tenant_id=client_id, reason='can_access_client')

        email = InputValidator.normalize_email(email)
        display_name = display_name or email.split('@')[0]

        with store_errors('Principal profile conflicts with an existing record'):
            with transaction.atomic():
                existing = Principal.objects.select_for_update().filter(id=principal_id).first()
                if existing is not None and not PolicyEngine.is_super_admin(caller_id):
                    if existing.client_id != client_id:
                        raise _deny(caller_id, 'write_principal', tenant_id=existing.client_id,
                                    reason='can_access_client')
                    if existing.tenant_level != tenant_level:
                        raise _deny(caller_id, 'write_principal', tenant_id=existing.client_id,
                                    reason='field_scope')
                    unchanged = existing.email == email and existing.display_name == display_name
                    if not unchanged and not PolicyEngine.can_manage_principal(caller_id, existing):
                        raise _deny(caller_id, 'write_principal', tenant_id=existing.client_id,
                                    reason='can_manage_principal')
                cls._check_active_admin_kept(existing, tenant_level, client_id)
                principal, _ = Principal.objects.update_or_create(
                    id=principal_id,
                    defaults={
                        'email': email,
                        'display_name': display_name,
                        'client_id': client_id,
                        'tenant_level': tenant_level,
                    }
                )
        return principal

    @classmethod
    def update_principal(cls, caller_id, principal_id, **fields) -> Principal:
        """
        Update profile fields.

        - super admins: display_name, email, tenant_level, client_id
        - tenant admins / manage_users holders in the principal's tenant:
          display_name, email
        - the principal itself: display_name
        """
        principal = cls.get_principal(caller_id, principal_id)
        is_super = PolicyEngine.is_super_admin(caller_id)

        if is_super:
            allowed = {'display_name', 'email', 'tenant_level', 'client_id'}
        elif PolicyEngine.can_manage_principal(caller_id, principal):
            allowed = {'display_name', 'email'}
        elif str(principal.id) == str(caller_id):
            allowed = {'display_name'}
        else:
            allowed = set()

        denied = set(fields) - allowed
        if denied:
            raise _deny(caller_id, 'update_principal', tenant_id=principal.client_id, reason='field_scope',
                        message=f"You may not change: {', '.join(sorted(denied))}")

        if 'email' in fields:
            fields['email'] = InputValidator.normalize_email(fields['email'])
            if not InputValidator.validate_email(fields['email']):
                raise ValidationError('Invalid email address', details={'email': fields['email']})

        tenant_level = fields.get('tenant_level', principal.tenant_level)
        client_id = fields.get('client_id', principal.client_id)
        if 'tenant_level' in fields or 'client_id' in fields:
            cls._check_level(tenant_level, client_id)
            cls._check_active_admin_kept(principal, tenant_level, client_id)

        with store_errors():
            with transaction.atomic():
                for field, value in fields.items():
                    setattr(principal, field, value)
                principal.save(update_fields=list(fields) + ['updated_at'])
        return principal

    # Roles

    @classmethod
    def list_roles(cls, caller_id, assignable_only=False):
        if assignable_only:
            return PolicyEngine.assignable_roles(caller_id)
        return list(Role.objects.all())

    @classmethod
    def resolve_roles(cls, names):
        """
        Resolve role names to roles.

        Unknown names are a validation error, never silently dropped.
        """
        names = list(dict.fromkeys(names or []))
        roles = {role.name: role for role in Role.objects.by_names(names)}
        unknown = [name for name in names if name not in roles]
        if unknown:
            raise ValidationError('Unknown role names', details={'unknown_roles': unknown})
        return [roles[name] for name in names]

    @classmethod
    def _check_assignment_authority(cls, caller_id, principal, role, action):
        if PolicyEngine.is_super_admin(caller_id):
            return
        if principal.client_id is None or not PolicyEngine.can_access_client(caller_id, principal.client_id):
            raise _deny(caller_id, action, tenant_id=principal.client_id, reason='can_access_client')
        if not PolicyEngine.can_manage_role_assignments(caller_id):
            raise _deny(caller_id, action, tenant_id=principal.client_id, reason='manage_users')
        if PolicyEngine.is_privileged_role(role.name, role.permissions):
            SecurityLogger.log_privilege_escalation_attempt(caller_id, [role.name], tenant_id=principal.client_id)
            raise Forbidden(f"You may not grant or revoke the '{role.name}' role")

    @classmethod
    def assign_role(cls, caller_id, principal_id, role):
        """
        Assign a role. Assigning an already-held role is a no-op success.

        Returns:
            (RoleAssignment, created)
        """
        with store_errors():
            principal = Principal.objects.filter(id=principal_id).first()
        if principal is None:
            raise NotFound('Principal not found', details={'principal_id': str(principal_id)})
        cls._check_assignment_authority(caller_id, principal, role, 'assign_role')

        try:
            with transaction.atomic():
                assignment, created = RoleAssignment.objects.get_or_create(
                    principal=principal,
                    role=role,
                    defaults={'assigned_by': caller_id},
                )
        except IntegrityError:
            # Concurrent insert of the same pair won the race
            assignment, created = RoleAssignment.objects.get(principal=principal, role=role), False
        except DatabaseError as e:
            raise DependencyUnavailable(STORE) from e
        return assignment, created

    @classmethod
    def remove_role(cls, caller_id, principal_id, role) -> bool:
        """
        Remove a role. Removing an unassigned role is a no-op success.

        Returns:
            True if an assignment was deleted
        """
        with store_errors():
            principal = Principal.objects.filter(id=principal_id).first()
        if principal is None:
            raise NotFound('Principal not found', details={'principal_id': str(principal_id)})
        cls._check_assignment_authority(caller_id, principal, role, 'remove_role')

        with store_errors():
            with transaction.atomic():
                deleted, _ = RoleAssignment.objects.filter(principal=principal, role=role).delete()
        return deleted > 0
