"""
Create the role catalog, role assignments and audit records.
"""
import uuid
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Role',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('name', models.CharField(help_text="Role name (e.g., 'Tenant Admin', 'SOC Analyst')", max_length=100, unique=True)),
                ('description', models.TextField(blank=True, help_text='Role description')),
                ('permissions', models.JSONField(blank=True, default=list, help_text='Permission tags granted by this role')),
            ],
            options={
                'db_table': 'roles',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='RoleAssignment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('assigned_by', models.UUIDField(blank=True, help_text='Principal id of the assigner (null for system assignments)', null=True)),
                ('principal', models.ForeignKey(help_text='Principal holding the role', on_delete=django.db.models.deletion.CASCADE, related_name='role_assignments', to='tenants.principal')),
                ('role', models.ForeignKey(help_text='Role assigned to the principal', on_delete=django.db.models.deletion.CASCADE, related_name='assignments', to='rbac.role')),
            ],
            options={
                'db_table': 'role_assignments',
                'ordering': ['principal', 'role'],
            },
        ),
        migrations.AddConstraint(
            model_name='roleassignment',
            constraint=models.UniqueConstraint(fields=('principal', 'role'), name='unique_principal_role'),
        ),
        migrations.CreateModel(
            name='AuditRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tenant_id', models.UUIDField(blank=True, db_index=True, help_text='Tenant this action belongs to (null for platform-level)', null=True)),
                ('performed_by', models.UUIDField(db_index=True, help_text='Principal id of the caller')),
                ('action', models.CharField(choices=[('tenant_created', 'Tenant created'), ('tenant_updated', 'Tenant updated'), ('tenant_discarded', 'Provisional tenant discarded'), ('user_created', 'User created'), ('profile_updated', 'Profile updated'), ('role_assigned', 'Role assigned'), ('role_removed', 'Role removed')], db_index=True, help_text='Action performed', max_length=50)),
                ('details', models.JSONField(blank=True, default=dict, help_text='Structured payload')),
                ('request_id', models.CharField(blank=True, help_text='Request ID for tracing', max_length=64)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                'db_table': 'audit_records',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['tenant_id', 'created_at'], name='audit_tenant_created_idx'),
                    models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
                ],
            },
        ),
    ]
