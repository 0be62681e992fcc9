"""
Default role catalog.

Shared by the seeding data migration and the ``seed_roles`` command so both
produce the same catalog.
"""
from apps.rbac.models import AppPermission as P, SystemRole

DEFAULT_ROLES = [
    {
        'name': SystemRole.SUPER_ADMIN,
        'description': 'Platform-wide administrator with access to every tenant',
        'permissions': sorted(P.ALL),
    },
    {
        'name': SystemRole.TENANT_ADMIN,
        'description': 'Administrator of a single tenant',
        'permissions': sorted([
            P.MANAGE_USERS, P.VIEW_LOGS, P.MANAGE_LOGS, P.VIEW_ASSETS,
            P.MANAGE_ASSETS, P.VIEW_REPORTS, P.MANAGE_REPORTS,
        ]),
    },
    {
        'name': 'SOC Analyst',
        'description': 'Security analyst who triages logs and assets',
        'permissions': sorted([P.VIEW_LOGS, P.MANAGE_LOGS, P.VIEW_ASSETS, P.VIEW_REPORTS]),
    },
    {
        'name': 'SOC Viewer',
        'description': 'Read-only access to logs, assets and reports',
        'permissions': sorted([P.VIEW_LOGS, P.VIEW_ASSETS, P.VIEW_REPORTS]),
    },
    {
        'name': 'Client User',
        'description': 'Tenant end user with access to assets and reports',
        'permissions': sorted([P.VIEW_ASSETS, P.VIEW_REPORTS]),
    },
]


def sync_role_catalog(role_model):
    """
    Create missing catalog roles and refresh their permissions.

    Takes the model class so data migrations can pass the historical model.
    Returns (created, updated) counts.
    """
    created = updated = 0
    for definition in DEFAULT_ROLES:
        role, was_created = role_model.objects.get_or_create(
            name=definition['name'],
            defaults={
                'description': definition['description'],
                'permissions': definition['permissions'],
            }
        )
        if was_created:
            created += 1
        elif sorted(role.permissions or []) != definition['permissions'] or role.description != definition['description']:
            role.permissions = definition['permissions']
            role.description = definition['description']
            role.save(update_fields=['permissions', 'description', 'updated_at'])
            updated += 1
    return created, updated
