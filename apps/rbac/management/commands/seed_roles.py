"""
Management command to sync the default role catalog.

Creates missing catalog roles and refreshes the permission tags of existing
ones. Safe to run repeatedly.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.catalog import DEFAULT_ROLES, sync_role_catalog
from apps.rbac.models import Role


class Command(BaseCommand):
    help = 'Create or refresh the default role catalog'

    def handle(self, *args, **options):
        with transaction.atomic():
            created, updated = sync_role_catalog(Role)

        for definition in DEFAULT_ROLES:
            self.stdout.write(f"  {definition['name']}: {', '.join(definition['permissions'])}")

        self.stdout.write(self.style.SUCCESS(
            f'Role catalog synced: {created} created, {updated} updated, '
            f'{len(DEFAULT_ROLES) - created - updated} unchanged'
        ))
