"""
Create tenants and principal profiles.

Tenant and Principal reference each other, so the admin reference is added
after both tables exist.
"""
import uuid
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Tenant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(help_text='Organization name (unique across tenants)', max_length=255, unique=True)),
                ('contact_email', models.EmailField(help_text='Contact email for the organization', max_length=254)),
                ('tenant_type', models.CharField(choices=[('regular', 'Regular'), ('msp_tenant', 'MSP Tenant')], db_index=True, default='regular', help_text='Tenant classification', max_length=20)),
                ('created_by', models.UUIDField(blank=True, help_text='Principal id of the super admin who created the tenant (null for system tenants)', null=True)),
                ('settings', models.JSONField(blank=True, default=dict, help_text='Open key/value settings')),
            ],
            options={
                'db_table': 'tenants',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Principal',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('id', models.UUIDField(editable=False, help_text='Identity directory principal id', primary_key=True, serialize=False)),
                ('display_name', models.CharField(blank=True, help_text='Name shown in listings', max_length=255)),
                ('email', models.EmailField(db_index=True, help_text='Email copied from the identity directory', max_length=254)),
                ('tenant_level', models.CharField(choices=[('super_admin', 'Super Admin'), ('tenant_admin', 'Tenant Admin'), ('user', 'User')], db_index=True, default='user', help_text='Coarse trust level', max_length=20)),
                ('client', models.ForeignKey(blank=True, help_text='Owning tenant (null only for super admins)', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='principals', to='tenants.tenant')),
            ],
            options={
                'db_table': 'principals',
                'ordering': ['email'],
            },
        ),
        migrations.AddField(
            model_name='tenant',
            name='admin_user',
            field=models.ForeignKey(blank=True, help_text='Active administrator; null while provisioning', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='administered_tenants', to='tenants.principal'),
        ),
        migrations.AddIndex(
            model_name='tenant',
            index=models.Index(fields=['tenant_type', 'created_at'], name='tenants_type_created_idx'),
        ),
        migrations.AddIndex(
            model_name='principal',
            index=models.Index(fields=['client', 'tenant_level'], name='principals_client_level_idx'),
        ),
        migrations.AddConstraint(
            model_name='principal',
            constraint=models.CheckConstraint(
                condition=(
                    models.Q(tenant_level='super_admin', client__isnull=True)
                    | (~models.Q(tenant_level='super_admin') & models.Q(client__isnull=False))
                ),
                name='principal_client_matches_level',
            ),
        ),
    ]
