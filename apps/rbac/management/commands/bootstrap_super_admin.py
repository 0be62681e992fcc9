"""
Management command to create the first platform super admin.

Every other principal is created through the provisioning workflow, which
requires a super admin caller; this command breaks that cycle.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.core.exceptions import DuplicateEmailError, PlatformError
from apps.core.validators import InputValidator, PasswordPolicy
from apps.identity.directory import DatabaseIdentityDirectory, get_identity_directory
from apps.rbac.audit import AuditLog
from apps.rbac.models import AuditRecord, Role, RoleAssignment, SystemRole
from apps.tenants.models import Principal


class Command(BaseCommand):
    help = 'Create a platform super admin (identity, profile and Super Admin role)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='Super admin email address',
        )
        parser.add_argument(
            '--display-name',
            type=str,
            default='',
            help='Display name (defaults to the email local part)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password (generated when omitted)',
        )
        parser.add_argument(
            '--allow-additional',
            action='store_true',
            help='Create even if a super admin already exists',
        )
        parser.add_argument(
            '--print-token',
            action='store_true',
            help='Print a bearer token (local identity directory only)',
        )

    def handle(self, *args, **options):
        email = InputValidator.normalize_email(options['email'])
        if not InputValidator.validate_email(email):
            raise CommandError(f'Invalid email address: {email}')

        if not options['allow_additional'] and RoleAssignment.objects.filter(
            role__name=SystemRole.SUPER_ADMIN
        ).exists():
            raise CommandError(
                'A super admin already exists. Use --allow-additional to create another.'
            )

        role = Role.objects.by_name(SystemRole.SUPER_ADMIN)
        if role is None:
            raise CommandError('Super Admin role missing. Run "manage.py seed_roles" first.')

        password = options.get('password')
        if password:
            result = PasswordPolicy.validate(password)
            if not result['valid']:
                raise CommandError('; '.join(result['errors']))
        else:
            password = PasswordPolicy.generate()

        display_name = options['display_name'] or email.split('@')[0]
        directory = get_identity_directory()

        try:
            principal_id = directory.create_principal(
                email,
                password,
                {'tenant_level': Principal.LEVEL_SUPER_ADMIN, 'client_id': None, 'display_name': display_name},
            )
            created_identity = True
        except DuplicateEmailError:
            existing = directory.find_by_email(email)
            if existing is None:
                raise CommandError(f'{email} exists in the identity directory but cannot be read')
            principal_id = existing.id
            created_identity = False
        except PlatformError as e:
            raise CommandError(e.message)

        with transaction.atomic():
            principal, _ = Principal.objects.update_or_create(
                id=principal_id,
                defaults={
                    'email': email,
                    'display_name': display_name,
                    'client': None,
                    'tenant_level': Principal.LEVEL_SUPER_ADMIN,
                }
            )
            RoleAssignment.objects.get_or_create(principal=principal, role=role)

        try:
            AuditLog.record(
                tenant_id=None,
                performed_by=principal.id,
                action=AuditRecord.ACTION_USER_CREATED,
                details={'email': email, 'tenant_level': Principal.LEVEL_SUPER_ADMIN, 'via': 'bootstrap'},
                result={'principal_id': str(principal.id)},
            )
        except PlatformError as e:
            raise CommandError(e.message)

        self.stdout.write(self.style.SUCCESS(f'Super admin ready: {email} ({principal.id})'))
        if created_identity:
            self.stdout.write(f'Password: {password}')
        else:
            self.stdout.write('Existing identity reused; its password is unchanged.')

        if options['print_token']:
            if not isinstance(directory, DatabaseIdentityDirectory):
                raise CommandError('--print-token requires the local identity directory')
            self.stdout.write(f'Token: {DatabaseIdentityDirectory.issue_token(principal.id, email)}')
