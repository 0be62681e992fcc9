"""
Tenant models for multi-tenant isolation.

Implements:
- Tenant: an isolated customer organization, the unit of data partitioning
- Principal: the profile of a registered user, tied to at most one tenant
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from apps.core.models import BaseModel


class TenantQuerySet(models.QuerySet):
    """QuerySet for tenant lifecycle queries."""

    def active(self):
        """Tenants whose provisioning completed (admin reference set)."""
        return self.filter(admin_user__isnull=False)

    def provisional(self):
        """Tenants still waiting for their administrator."""
        return self.filter(admin_user__isnull=True)

    def by_name(self, name):
        return self.filter(name=name).first()


class Tenant(BaseModel):
    """
    Tenant model representing an isolated customer organization.

    A tenant is created with ``admin_user`` unset and only becomes active once
    its first administrator is provisioned and referenced.
    """

    TYPE_REGULAR = 'regular'
    TYPE_MSP = 'msp_tenant'
    TYPE_CHOICES = [
        (TYPE_REGULAR, 'Regular'),
        (TYPE_MSP, 'MSP Tenant'),
    ]

    STATUS_PROVISIONING = 'provisioning'
    STATUS_ACTIVE = 'active'

    name = models.CharField(
        max_length=255,
        unique=True,
        help_text="Organization name (unique across tenants)"
    )
    contact_email = models.EmailField(
        help_text="Contact email for the organization"
    )
    tenant_type = models.CharField(
        max_length=20,
        choices=TYPE_CHOICES,
        default=TYPE_REGULAR,
        db_index=True,
        help_text="Tenant classification"
    )
    created_by = models.UUIDField(
        null=True,
        blank=True,
        help_text="Principal id of the super admin who created the tenant (null for system tenants)"
    )
    admin_user = models.ForeignKey(
        'tenants.Principal',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='administered_tenants',
        help_text="Active administrator; null while provisioning"
    )
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Open key/value settings"
    )

    objects = TenantQuerySet.as_manager()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']
        indexes = [
            models.Index(fields=['tenant_type', 'created_at'], name='tenants_type_created_idx'),
        ]

    def __str__(self):
        return self.name

    @property
    def is_active(self):
        return self.admin_user_id is not None

    @property
    def status(self):
        return self.STATUS_ACTIVE if self.is_active else self.STATUS_PROVISIONING

    def clean(self):
        """Enforce the active-tenant invariant on the admin reference."""
        super().clean()
        if self.admin_user_id is None:
            return
        admin = self.admin_user
        if admin.tenant_level != Principal.LEVEL_TENANT_ADMIN or admin.client_id != self.id:
            raise DjangoValidationError(
                "Tenant administrator must be a tenant_admin principal of this tenant"
            )


class PrincipalQuerySet(models.QuerySet):
    """QuerySet for principal profile queries."""

    def for_tenant(self, tenant_id):
        return self.filter(client_id=tenant_id)

    def super_admins(self):
        return self.filter(tenant_level=Principal.LEVEL_SUPER_ADMIN)


class Principal(BaseModel):
    """
    Profile of a registered user.

    The id is the identity directory's principal id; the credential itself
    lives in the directory. ``client`` is null only for the super-admin class.
    """

    LEVEL_SUPER_ADMIN = 'super_admin'
    LEVEL_TENANT_ADMIN = 'tenant_admin'
    LEVEL_USER = 'user'
    LEVEL_CHOICES = [
        (LEVEL_SUPER_ADMIN, 'Super Admin'),
        (LEVEL_TENANT_ADMIN, 'Tenant Admin'),
        (LEVEL_USER, 'User'),
    ]

    id = models.UUIDField(
        primary_key=True,
        editable=False,
        help_text="Identity directory principal id"
    )
    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Name shown in listings"
    )
    email = models.EmailField(
        db_index=True,
        help_text="Email copied from the identity directory"
    )
    client = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='principals',
        help_text="Owning tenant (null only for super admins)"
    )
    tenant_level = models.CharField(
        max_length=20,
        choices=LEVEL_CHOICES,
        default=LEVEL_USER,
        db_index=True,
        help_text="Coarse trust level"
    )

    objects = PrincipalQuerySet.as_manager()

    class Meta:
        db_table = 'principals'
        ordering = ['email']
        indexes = [
            models.Index(fields=['client', 'tenant_level'], name='principals_client_level_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(tenant_level='super_admin', client__isnull=True)
                    | (~models.Q(tenant_level='super_admin') & models.Q(client__isnull=False))
                ),
                name='principal_client_matches_level',
            ),
        ]

    def __str__(self):
        return self.email

    @property
    def is_authenticated(self):
        """Principals attached to a request are always authenticated."""
        return True

    @property
    def is_anonymous(self):
        return False
