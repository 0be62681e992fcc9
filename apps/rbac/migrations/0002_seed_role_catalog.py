"""
Seed the default role catalog.
"""
from django.db import migrations


def seed_roles(apps, schema_editor):
    from apps.rbac.catalog import sync_role_catalog

    Role = apps.get_model('rbac', 'Role')
    sync_role_catalog(Role)


class Migration(migrations.Migration):

    dependencies = [
        ('rbac', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(seed_roles, migrations.RunPython.noop),
    ]
