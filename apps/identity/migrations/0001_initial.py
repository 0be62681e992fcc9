"""
Create the local identity directory table.
"""
import uuid
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Identity',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('email', models.EmailField(db_index=True, help_text='Login email address (unique globally)', max_length=254, unique=True)),
                ('password_hash', models.CharField(db_column='password_hash', help_text='Hashed password', max_length=255)),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Directory metadata supplied at creation (name, tenant_level, client_id)')),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether the identity may authenticate')),
                ('last_login', models.DateTimeField(blank=True, help_text='Last login timestamp', null=True)),
            ],
            options={
                'db_table': 'identities',
                'ordering': ['-created_at'],
                'verbose_name_plural': 'identities',
            },
        ),
    ]
