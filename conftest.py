"""
Pytest configuration and fixtures.

The role catalog is seeded by a data migration, so every test database
starts with the five catalog roles.
"""
import pytest


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_principal(db):
    """
    Factory creating a directory identity and its principal profile.

    Usage:
        principal = make_principal('a@acme.test', tenant=tenant, roles=['Client User'])
    """
    from apps.identity.models import Identity
    from apps.rbac.models import Role, RoleAssignment
    from apps.tenants.models import Principal

    def _make(email, tenant=None, tenant_level=None, roles=(), password='Str0ng!Passw0rd'):
        if tenant_level is None:
            tenant_level = Principal.LEVEL_USER if tenant is not None else Principal.LEVEL_SUPER_ADMIN
        identity = Identity.objects.create_user(
            email=email,
            password=password,
            metadata={'client_id': str(tenant.id) if tenant else None, 'tenant_level': tenant_level},
        )
        principal = Principal.objects.create(
            id=identity.id,
            email=identity.email,
            display_name=identity.email.split('@')[0],
            client=tenant,
            tenant_level=tenant_level,
        )
        for name in roles:
            RoleAssignment.objects.create(principal=principal, role=Role.objects.get(name=name))
        return principal

    return _make


@pytest.fixture
def make_tenant(db, make_principal):
    """
    Factory creating an active tenant together with its tenant admin.

    Returns (tenant, admin).
    """
    from apps.rbac.models import SystemRole
    from apps.tenants.models import Principal, Tenant

    def _make(name, admin_email=None):
        tenant = Tenant.objects.create(
            name=name,
            contact_email=f"ops@{name.lower().replace(' ', '-')}.test",
        )
        admin = make_principal(
            admin_email or f"admin@{name.lower().replace(' ', '-')}.test",
            tenant=tenant,
            tenant_level=Principal.LEVEL_TENANT_ADMIN,
            roles=[SystemRole.TENANT_ADMIN],
        )
        tenant.admin_user = admin
        tenant.save(update_fields=['admin_user'])
        return tenant, admin

    return _make


@pytest.fixture
def super_admin(make_principal):
    """Platform super admin."""
    from apps.rbac.models import SystemRole
    return make_principal('root@platform.test', roles=[SystemRole.SUPER_ADMIN])


@pytest.fixture
def tenant_a(make_tenant):
    return make_tenant('Tenant A')


@pytest.fixture
def tenant_b(make_tenant):
    return make_tenant('Tenant B')


@pytest.fixture
def tenant(tenant_a):
    """Active test tenant."""
    return tenant_a[0]


@pytest.fixture
def tenant_admin(tenant_a):
    """Tenant admin of the test tenant."""
    return tenant_a[1]


@pytest.fixture
def other_tenant(tenant_b):
    """Another active tenant for isolation tests."""
    return tenant_b[0]


@pytest.fixture
def tenant_user(make_principal, tenant):
    """Ordinary user of the test tenant."""
    return make_principal('user@tenant-a.test', tenant=tenant, roles=['Client User'])


@pytest.fixture
def auth_client(api_client):
    """
    Factory returning an API client authenticated as a principal.
    """
    from apps.identity.directory import DatabaseIdentityDirectory

    def _auth(principal):
        token = DatabaseIdentityDirectory.issue_token(principal.id, principal.email)
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        return api_client

    return _auth
