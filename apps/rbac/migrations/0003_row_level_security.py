"""
Install row-level security policies on PostgreSQL.

Other engines have no declarative row filters; the migration is a no-op
there.
"""
from django.db import migrations


def apply_row_security(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    from apps.rbac.rls import row_security_sql

    for statement in row_security_sql():
        schema_editor.execute(statement)


def remove_row_security(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    from apps.rbac.rls import reverse_sql

    for statement in reverse_sql():
        schema_editor.execute(statement)


class Migration(migrations.Migration):

    dependencies = [
        ('rbac', '0002_seed_role_catalog'),
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(apply_row_security, remove_row_security),
    ]
