"""
Policy Engine: the single source of truth for tenant isolation.

Every predicate reads current store state on each call. Nothing is cached:
role and membership changes must take effect on the very next check.

Row filters (``tenant_scope``) and the PostgreSQL row-security SQL in
``apps.rbac.rls`` are derived from these predicates, never written by hand.
"""
import logging
from typing import Iterable, List, Optional, Set

from django.db.models import Q

from apps.rbac.models import AppPermission, Role, RoleAssignment, SystemRole
from apps.tenants.models import Principal

logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Pure authorization decisions over the current store state.
    """

    @staticmethod
    def _client_id(principal_id):
        """Tenant the principal's profile belongs to, or None."""
        if principal_id is None:
            return None
        return (
            Principal.objects.filter(id=principal_id)
            .values_list('client_id', flat=True)
            .first()
        )

    @classmethod
    def is_super_admin(cls, principal_id) -> bool:
        """True iff the principal holds the Super Admin role."""
        if principal_id is None:
            return False
        return RoleAssignment.objects.holds(principal_id, SystemRole.SUPER_ADMIN)

    @classmethod
    def is_tenant_admin(cls, principal_id, tenant_id) -> bool:
        """True iff the principal belongs to the tenant and holds Tenant Admin."""
        if principal_id is None or tenant_id is None:
            return False
        return (
            Principal.objects.filter(id=principal_id, client_id=tenant_id).exists()
            and RoleAssignment.objects.holds(principal_id, SystemRole.TENANT_ADMIN)
        )

    @classmethod
    def can_access_client(cls, principal_id, tenant_id) -> bool:
        """
        True iff the principal is a super admin or a member of the tenant.

        A null tenant is permitted for super admins only.
        """
        if principal_id is None:
            return False
        if cls.is_super_admin(principal_id):
            return True
        if tenant_id is None:
            return False
        return Principal.objects.filter(id=principal_id, client_id=tenant_id).exists()

    @staticmethod
    def is_privileged_role(name: str, permissions: Iterable[str]) -> bool:
        """
        Whether granting this role confers administrative authority.

        The two system roles are privileged by definition; any other role is
        privileged when it carries an elevated permission tag.
        """
        if name in SystemRole.ALL:
            return True
        return bool(frozenset(permissions or []) & AppPermission.ELEVATED)

    @classmethod
    def assignable_roles(cls, principal_id) -> List[Role]:
        """Roles the principal may grant: the full catalog for super admins, else non-privileged roles."""
        roles = list(Role.objects.all())
        if cls.is_super_admin(principal_id):
            return roles
        return [role for role in roles if not cls.is_privileged_role(role.name, role.permissions)]

    @classmethod
    def permissions_for(cls, principal_id) -> frozenset:
        """Union of permission tags over the principal's roles."""
        if principal_id is None:
            return frozenset()
        tags = set()
        for permissions in Role.objects.filter(assignments__principal_id=principal_id).values_list('permissions', flat=True):
            tags.update(permissions or [])
        return frozenset(tags & AppPermission.ALL)

    @classmethod
    def has_permission(cls, principal_id, tag: str) -> bool:
        return tag in cls.permissions_for(principal_id)

    @classmethod
    def can_manage_role_assignments(cls, principal_id) -> bool:
        """Holders of manage_users or manage_roles may create and remove role assignments."""
        return bool(cls.permissions_for(principal_id) & {AppPermission.MANAGE_USERS, AppPermission.MANAGE_ROLES})

    @classmethod
    def can_manage_principal(cls, caller_id, principal: Principal) -> bool:
        """
        Whether the caller may edit another principal's profile.

        Super admins may edit anyone; tenant members may edit principals of
        their own tenant when they are its tenant admin or hold manage_users.
        """
        if cls.is_super_admin(caller_id):
            return True
        if principal.client_id is None or not cls.can_access_client(caller_id, principal.client_id):
            return False
        return (
            cls.is_tenant_admin(caller_id, principal.client_id)
            or cls.has_permission(caller_id, AppPermission.MANAGE_USERS)
        )

    @classmethod
    def accessible_tenant_ids(cls, principal_id) -> Optional[Set]:
        """
        Tenants T for which can_access_client(principal, T) holds.

        Returns None for "every tenant" (super admins).
        """
        if principal_id is None:
            return set()
        if cls.is_super_admin(principal_id):
            return None
        client_id = cls._client_id(principal_id)
        return {client_id} if client_id else set()

    @classmethod
    def tenant_scope(cls, principal_id, field: str = 'client_id') -> Q:
        """
        Row filter equivalent to can_access_client over ``field``.

        ``field`` names the column that references the tenant on the model
        being filtered (``id`` for tenants, ``client_id`` for principals,
        ``tenant_id`` for audit records).
        """
        tenant_ids = cls.accessible_tenant_ids(principal_id)
        if tenant_ids is None:
            return Q()
        if not tenant_ids:
            return Q(pk__in=[])
        return Q(**{f'{field}__in': list(tenant_ids)})
