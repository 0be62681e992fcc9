"""
RBAC models for tenant access control.

Implements:
- AppPermission: the closed set of permission tags
- Role (global role catalog with a permission tag set)
- RoleAssignment (maps roles to principals)
- AuditRecord (append-only audit trail)
"""
import logging
import uuid
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from apps.core.models import BaseModel

logger = logging.getLogger(__name__)


class AppPermission:
    """Permission tags a role may carry."""

    MANAGE_USERS = 'manage_users'
    MANAGE_ROLES = 'manage_roles'
    VIEW_ALL_CLIENTS = 'view_all_clients'
    MANAGE_CLIENTS = 'manage_clients'
    VIEW_LOGS = 'view_logs'
    MANAGE_LOGS = 'manage_logs'
    VIEW_ASSETS = 'view_assets'
    MANAGE_ASSETS = 'manage_assets'
    VIEW_REPORTS = 'view_reports'
    MANAGE_REPORTS = 'manage_reports'

    ALL = frozenset({
        MANAGE_USERS, MANAGE_ROLES, VIEW_ALL_CLIENTS, MANAGE_CLIENTS,
        VIEW_LOGS, MANAGE_LOGS, VIEW_ASSETS, MANAGE_ASSETS,
        VIEW_REPORTS, MANAGE_REPORTS,
    })

    # Tags that confer authority over principals or tenants
    ELEVATED = frozenset({MANAGE_USERS, MANAGE_ROLES, VIEW_ALL_CLIENTS, MANAGE_CLIENTS})


class SystemRole:
    """Role names the policy engine keys on."""

    SUPER_ADMIN = 'Super Admin'
    TENANT_ADMIN = 'Tenant Admin'

    ALL = frozenset({SUPER_ADMIN, TENANT_ADMIN})


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def by_name(self, name):
        """Get role by name."""
        return self.filter(name=name).first()

    def by_names(self, names):
        return self.filter(name__in=list(names))


class Role(BaseModel):
    """
    Global role catalog entry.

    A role is a named bundle of permission tags. The catalog is seeded by a
    data migration and kept in sync by ``manage.py seed_roles``.
    """

    name = models.CharField(
        max_length=100,
        unique=True,
        help_text="Role name (e.g., 'Tenant Admin', 'SOC Analyst')"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Permission tags granted by this role"
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def permission_set(self):
        return frozenset(self.permissions or [])

    def has_permission(self, tag):
        """Check if role grants a permission tag."""
        return tag in self.permission_set

    def clean(self):
        """Reject tags outside the closed permission set."""
        super().clean()
        unknown = self.permission_set - AppPermission.ALL
        if unknown:
            raise DjangoValidationError(
                f"Unknown permission tags: {', '.join(sorted(unknown))}"
            )


class RoleAssignmentManager(models.Manager):
    """Manager for RoleAssignment queries."""

    def for_principal(self, principal_id):
        return self.filter(principal_id=principal_id)

    def holds(self, principal_id, role_name):
        """Whether a principal holds the named role."""
        return self.filter(principal_id=principal_id, role__name=role_name).exists()


class RoleAssignment(BaseModel):
    """
    Maps roles to principals.

    A principal can hold multiple roles; each (principal, role) pair at most
    once.
    """

    principal = models.ForeignKey(
        'tenants.Principal',
        on_delete=models.CASCADE,
        related_name='role_assignments',
        help_text="Principal holding the role"
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='assignments',
        help_text="Role assigned to the principal"
    )
    assigned_by = models.UUIDField(
        null=True,
        blank=True,
        help_text="Principal id of the assigner (null for system assignments)"
    )

    objects = RoleAssignmentManager()

    class Meta:
        db_table = 'role_assignments'
        ordering = ['principal', 'role']
        constraints = [
            models.UniqueConstraint(fields=['principal', 'role'], name='unique_principal_role'),
        ]

    def __str__(self):
        return f"{self.principal_id} -> {self.role.name}"


class AuditRecordQuerySet(models.QuerySet):
    """Append-only queryset: bulk mutation is refused."""

    def for_tenant(self, tenant_id):
        return self.filter(tenant_id=tenant_id)

    def by_action(self, action):
        return self.filter(action=action)

    def update(self, **kwargs):
        raise TypeError("Audit records are append-only")

    def delete(self):
        raise TypeError("Audit records are append-only")


class AuditRecord(models.Model):
    """
    Append-only audit trail of privileged operations.

    ``tenant_id`` is a plain reference so records outlive a discarded tenant.
    """

    ACTION_TENANT_CREATED = 'tenant_created'
    ACTION_TENANT_UPDATED = 'tenant_updated'
    ACTION_TENANT_DISCARDED = 'tenant_discarded'
    ACTION_USER_CREATED = 'user_created'
    ACTION_PROFILE_UPDATED = 'profile_updated'
    ACTION_ROLE_ASSIGNED = 'role_assigned'
    ACTION_ROLE_REMOVED = 'role_removed'
    ACTION_CHOICES = [
        (ACTION_TENANT_CREATED, 'Tenant created'),
        (ACTION_TENANT_UPDATED, 'Tenant updated'),
        (ACTION_TENANT_DISCARDED, 'Provisional tenant discarded'),
        (ACTION_USER_CREATED, 'User created'),
        (ACTION_PROFILE_UPDATED, 'Profile updated'),
        (ACTION_ROLE_ASSIGNED, 'Role assigned'),
        (ACTION_ROLE_REMOVED, 'Role removed'),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )
    tenant_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Tenant this action belongs to (null for platform-level)"
    )
    performed_by = models.UUIDField(
        db_index=True,
        help_text="Principal id of the caller"
    )
    action = models.CharField(
        max_length=50,
        choices=ACTION_CHOICES,
        db_index=True,
        help_text="Action performed"
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured payload"
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Request ID for tracing"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
    )

    objects = AuditRecordQuerySet.as_manager()

    class Meta:
        db_table = 'audit_records'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant_id', 'created_at'], name='audit_tenant_created_idx'),
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
        ]

    def __str__(self):
        return f"{self.tenant_id or 'platform'} - {self.performed_by} - {self.action}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TypeError("Audit records are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TypeError("Audit records are append-only")
