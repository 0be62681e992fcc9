"""
Tests for the provisioning workflow.

Tests:
- Tenant creation with its first administrator
- Authorization and validation before any write
- Partial failures, resume and discard
- User creation and privilege escalation
"""
import json
import threading
import uuid
from unittest import mock

import pytest
from django.db import DatabaseError, connection

from apps.core.exceptions import (
    AuditWriteFailed,
    ConflictError,
    DependencyUnavailable,
    Forbidden,
    PartialProvisioningError,
    ValidationError,
)
from apps.core.validators import PasswordPolicy
from apps.identity.directory import DatabaseIdentityDirectory, IdentityDirectory
from apps.identity.models import Identity
from apps.rbac.models import AuditRecord, RoleAssignment, SystemRole
from apps.tenants.models import Principal, Tenant
from apps.tenants.services import (
    ProvisioningService,
    TenantProvisioningStep,
    TenantUserStore,
    UserProvisioningStep,
)


def _create_acme(caller, **kwargs):
    params = {
        'tenant_name': 'Acme Corp',
        'tenant_email': 'ops@acme.test',
        'admin_email': 'a@acme.test',
    }
    params.update(kwargs)
    return ProvisioningService.create_tenant_with_admin(caller.id, **params)


def _unavailable_directory():
    directory = mock.Mock(spec=IdentityDirectory)
    directory.create_principal.side_effect = DependencyUnavailable('identity_directory')
    return directory


@pytest.mark.django_db
class TestCreateTenantWithAdmin:

    def test_creates_active_tenant_with_admin(self, super_admin):
        result = _create_acme(super_admin, request_id='req-1')

        tenant = Tenant.objects.get(id=result.tenant_id)
        assert tenant.name == 'Acme Corp'
        assert tenant.is_active
        assert tenant.created_by == super_admin.id
        assert tenant.settings['status'] == 'active'
        assert tenant.settings['created_via'] == 'provisioning_workflow'

        admin = Principal.objects.get(id=result.admin_user_id)
        assert tenant.admin_user_id == admin.id
        assert admin.tenant_level == Principal.LEVEL_TENANT_ADMIN
        assert admin.client_id == tenant.id
        assert admin.email == 'a@acme.test'
        assert admin.display_name == 'a'
        assert RoleAssignment.objects.holds(admin.id, SystemRole.TENANT_ADMIN)

        assert result.admin_email == 'a@acme.test'
        assert result.resumed is False
        assert len(result.password) == 16
        assert PasswordPolicy.validate(result.password)['valid']
        assert Identity.objects.get(id=admin.id).check_password(result.password)

    def test_records_audit_without_password(self, super_admin):
        result = _create_acme(super_admin, admin_display_name='Alice Admin', request_id='req-1')

        record = AuditRecord.objects.get(action=AuditRecord.ACTION_TENANT_CREATED)
        assert str(record.tenant_id) == result.tenant_id
        assert record.performed_by == super_admin.id
        assert record.request_id == 'req-1'
        assert record.details == {
            'tenant_name': 'Acme Corp',
            'admin_email': 'a@acme.test',
            'admin_name': 'Alice Admin',
            'resumed': False,
        }
        assert result.password not in json.dumps(record.details)

    def test_custom_password(self, super_admin):
        result = _create_acme(super_admin, password='Chosen!Passw0rd', auto_generate=False)

        assert result.password == 'Chosen!Passw0rd'
        assert Identity.objects.get(id=result.admin_user_id).check_password('Chosen!Passw0rd')

    def test_custom_settings_are_kept(self, super_admin):
        result = _create_acme(super_admin, settings={'region': 'eu'}, tenant_type=Tenant.TYPE_MSP)

        tenant = Tenant.objects.get(id=result.tenant_id)
        assert tenant.settings['region'] == 'eu'
        assert tenant.tenant_type == Tenant.TYPE_MSP

    def test_non_super_admin_has_no_side_effects(self, tenant_admin):
        with pytest.raises(Forbidden):
            _create_acme(tenant_admin)

        assert not Tenant.objects.filter(name='Acme Corp').exists()
        assert not Identity.objects.filter(email='a@acme.test').exists()
        assert not AuditRecord.objects.exists()

    @pytest.mark.parametrize('kwargs', [
        {'admin_email': 'not-an-email'},
        {'tenant_email': 'nope'},
        {'tenant_name': '   '},
        {'tenant_type': 'enterprise'},
        {'password': 'weak'},
        {'password': None, 'auto_generate': False},
    ])
    def test_invalid_input_has_no_side_effects(self, super_admin, kwargs):
        with pytest.raises(ValidationError):
            _create_acme(super_admin, **kwargs)

        assert not Tenant.objects.exclude(admin_user__isnull=False).exists()
        assert not Identity.objects.filter(email='a@acme.test').exists()

    def test_duplicate_tenant_name(self, super_admin):
        _create_acme(super_admin)

        with pytest.raises(ConflictError):
            _create_acme(super_admin, admin_email='b@acme.test')

        assert Tenant.objects.filter(name='Acme Corp').count() == 1
        assert not Identity.objects.filter(email='b@acme.test').exists()

    def test_directory_unavailable_leaves_provisional_tenant(self, super_admin):
        with pytest.raises(PartialProvisioningError) as exc_info:
            _create_acme(super_admin, directory=_unavailable_directory())

        error = exc_info.value
        assert error.step_reached == TenantProvisioningStep.CREATE_IDENTITY
        assert error.principal_id is None
        assert isinstance(error.__cause__, DependencyUnavailable)

        tenant = Tenant.objects.get(id=error.tenant_id)
        assert not tenant.is_active

    def test_admin_email_of_other_tenant(self, super_admin, tenant_b):
        with pytest.raises(PartialProvisioningError) as exc_info:
            _create_acme(super_admin, admin_email=tenant_b[1].email)

        assert exc_info.value.step_reached == TenantProvisioningStep.CREATE_IDENTITY
        assert isinstance(exc_info.value.__cause__, ConflictError)
        assert Principal.objects.get(id=tenant_b[1].id).client_id == tenant_b[0].id

    def test_profile_failure_then_resume(self, super_admin):
        with mock.patch.object(TenantUserStore, 'write_principal', side_effect=DatabaseError('timeout')):
            with pytest.raises(PartialProvisioningError) as exc_info:
                _create_acme(super_admin)

        error = exc_info.value
        assert error.step_reached == TenantProvisioningStep.WRITE_PROFILE
        assert error.details['step_reached'] == 5
        assert error.principal_id is not None

        tenant = Tenant.objects.get(id=error.tenant_id)
        assert not tenant.is_active
        assert Identity.objects.filter(id=error.principal_id).exists()
        assert not Principal.objects.filter(id=error.principal_id).exists()
        assert not AuditRecord.objects.exists()

        result = ProvisioningService.resume_tenant_provisioning(
            super_admin.id, tenant.id, admin_email='a@acme.test'
        )

        tenant.refresh_from_db()
        assert tenant.is_active
        assert result.admin_user_id == str(error.principal_id)
        assert result.resumed is True
        assert result.password is None
        assert Identity.objects.filter(email='a@acme.test').count() == 1
        assert AuditRecord.objects.get(action=AuditRecord.ACTION_TENANT_CREATED).details['resumed'] is True

    def test_resume_with_credential_reset(self, super_admin):
        with mock.patch.object(TenantUserStore, 'write_principal', side_effect=DatabaseError('timeout')):
            with pytest.raises(PartialProvisioningError) as exc_info:
                _create_acme(super_admin)
        error = exc_info.value

        result = ProvisioningService.resume_tenant_provisioning(
            super_admin.id, error.tenant_id, admin_email='a@acme.test', reset_password=True
        )

        assert result.resumed is True
        assert result.admin_user_id == str(error.principal_id)
        assert len(result.password) == 16
        assert Identity.objects.get(id=error.principal_id).check_password(result.password)
        assert Identity.objects.filter(email='a@acme.test').count() == 1

    def test_role_failure_then_resume(self, super_admin):
        with mock.patch.object(TenantUserStore, 'assign_role', side_effect=DatabaseError('timeout')):
            with pytest.raises(PartialProvisioningError) as exc_info:
                _create_acme(super_admin)

        error = exc_info.value
        assert error.step_reached == TenantProvisioningStep.ASSIGN_ROLE
        assert Principal.objects.filter(id=error.principal_id).exists()

        result = ProvisioningService.resume_tenant_provisioning(
            super_admin.id, error.tenant_id, admin_email='a@acme.test'
        )
        assert RoleAssignment.objects.holds(result.admin_user_id, SystemRole.TENANT_ADMIN)
        assert Principal.objects.filter(client_id=error.tenant_id).count() == 1

    def test_resume_after_directory_failure_creates_identity(self, super_admin):
        with pytest.raises(PartialProvisioningError) as exc_info:
            _create_acme(super_admin, directory=_unavailable_directory())

        result = ProvisioningService.resume_tenant_provisioning(
            super_admin.id, exc_info.value.tenant_id, admin_email='a@acme.test'
        )

        assert result.resumed is True
        assert len(result.password) == 16

    def test_resume_active_tenant_conflicts(self, super_admin, tenant):
        with pytest.raises(ConflictError):
            ProvisioningService.resume_tenant_provisioning(
                super_admin.id, tenant.id, admin_email='new@tenant-a.test'
            )

    def test_audit_failure_after_activation(self, super_admin):
        with mock.patch.object(AuditRecord.objects, 'create', side_effect=DatabaseError('audit down')):
            with pytest.raises(AuditWriteFailed) as exc_info:
                _create_acme(super_admin)

        tenant = Tenant.objects.get(name='Acme Corp')
        assert tenant.is_active
        assert exc_info.value.result == {
            'tenant_id': str(tenant.id),
            'admin_user_id': str(tenant.admin_user_id),
        }

    def test_discard_after_partial_failure(self, super_admin):
        with mock.patch.object(TenantUserStore, 'write_principal', side_effect=DatabaseError('timeout')):
            with pytest.raises(PartialProvisioningError) as exc_info:
                _create_acme(super_admin)

        tenant_id = exc_info.value.tenant_id
        ProvisioningService.discard_provisional_tenant(super_admin.id, tenant_id, request_id='req-2')

        assert not Tenant.objects.filter(id=tenant_id).exists()
        record = AuditRecord.objects.get(action=AuditRecord.ACTION_TENANT_DISCARDED)
        assert record.tenant_id == tenant_id
        assert record.details == {'tenant_name': 'Acme Corp'}

    def test_discard_requires_super_admin(self, super_admin, tenant_admin):
        tenant = TenantUserStore.create_tenant(super_admin.id, 'Acme Corp', 'ops@acme.test')

        with pytest.raises(Forbidden):
            ProvisioningService.discard_provisional_tenant(tenant_admin.id, tenant.id)


@pytest.mark.django_db
class TestCreateUser:

    def test_tenant_admin_creates_user_with_role(self, tenant_admin, tenant):
        result = ProvisioningService.create_user(
            tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id, role_names=['SOC Analyst']
        )

        principal = Principal.objects.get(id=result.principal_id)
        assert principal.client_id == tenant.id
        assert principal.tenant_level == Principal.LEVEL_USER
        assert RoleAssignment.objects.holds(principal.id, 'SOC Analyst')
        assert result.roles == ['SOC Analyst']
        assert Identity.objects.get(id=principal.id).check_password(result.password)
        assert not AuditRecord.objects.exists()

    def test_audit_when_enabled(self, settings, tenant_admin, tenant):
        settings.AUDIT_USER_CREATION = True

        result = ProvisioningService.create_user(
            tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id, request_id='req-3'
        )

        record = AuditRecord.objects.get(action=AuditRecord.ACTION_USER_CREATED)
        assert record.tenant_id == tenant.id
        assert record.details['email'] == 'new@tenant-a.test'
        assert result.password not in json.dumps(record.details)

    def test_escalation_to_super_admin_forbidden(self, tenant_admin, tenant):
        with pytest.raises(Forbidden) as exc_info:
            ProvisioningService.create_user(
                tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id, role_names=[SystemRole.SUPER_ADMIN]
            )

        assert exc_info.value.details == {'denied': [SystemRole.SUPER_ADMIN]}
        assert not Identity.objects.filter(email='new@tenant-a.test').exists()

    def test_escalation_to_tenant_admin_level_forbidden(self, tenant_admin, tenant):
        with pytest.raises(Forbidden):
            ProvisioningService.create_user(
                tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id,
                tenant_level=Principal.LEVEL_TENANT_ADMIN,
            )

        assert not Identity.objects.filter(email='new@tenant-a.test').exists()

    def test_plain_user_may_create_user_without_roles(self, tenant_user, tenant):
        result = ProvisioningService.create_user(tenant_user.id, 'new@tenant-a.test', tenant_id=tenant.id)

        assert result.roles == []
        assert Principal.objects.filter(id=result.principal_id, client_id=tenant.id).exists()

    def test_plain_user_may_not_assign_roles(self, tenant_user, tenant):
        with pytest.raises(Forbidden):
            ProvisioningService.create_user(
                tenant_user.id, 'new@tenant-a.test', tenant_id=tenant.id, role_names=['Client User']
            )

    def test_cross_tenant_forbidden(self, tenant_admin, other_tenant):
        with pytest.raises(Forbidden):
            ProvisioningService.create_user(tenant_admin.id, 'new@tenant-b.test', tenant_id=other_tenant.id)

        assert not Identity.objects.filter(email='new@tenant-b.test').exists()

    def test_unknown_role(self, super_admin, tenant):
        with pytest.raises(ValidationError) as exc_info:
            ProvisioningService.create_user(
                super_admin.id, 'new@tenant-a.test', tenant_id=tenant.id, role_names=['Wizard']
            )

        assert exc_info.value.details == {'unknown_roles': ['Wizard']}
        assert not Identity.objects.filter(email='new@tenant-a.test').exists()

    def test_super_admin_creates_super_admin(self, super_admin):
        result = ProvisioningService.create_user(
            super_admin.id, 'ops@platform.test', tenant_level=Principal.LEVEL_SUPER_ADMIN,
            role_names=[SystemRole.SUPER_ADMIN],
        )

        assert result.tenant_id is None
        assert RoleAssignment.objects.holds(result.principal_id, SystemRole.SUPER_ADMIN)

    def test_level_tenant_mismatch(self, super_admin, tenant):
        with pytest.raises(ValidationError):
            ProvisioningService.create_user(
                super_admin.id, 'ops@platform.test', tenant_id=tenant.id,
                tenant_level=Principal.LEVEL_SUPER_ADMIN,
            )

    def test_unknown_tenant(self, super_admin):
        with pytest.raises(ValidationError):
            ProvisioningService.create_user(super_admin.id, 'x@acme.test', tenant_id=uuid.uuid4())

    def test_email_of_other_tenant_conflicts(self, super_admin, tenant, tenant_b):
        with pytest.raises(ConflictError):
            ProvisioningService.create_user(super_admin.id, tenant_b[1].email, tenant_id=tenant.id)

    def test_reuses_identity_without_profile(self, tenant_admin, tenant):
        principal_id = DatabaseIdentityDirectory().create_principal(
            'new@tenant-a.test', 'Str0ng!Passw0rd', {'client_id': str(tenant.id)}
        )

        result = ProvisioningService.create_user(tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id)

        assert result.principal_id == str(principal_id)
        assert result.resumed is True
        assert result.password is None

    def test_plain_user_cannot_rewrite_existing_colleague(self, make_principal, tenant_user, tenant):
        deputy = make_principal('deputy@tenant-a.test', tenant=tenant, tenant_level=Principal.LEVEL_TENANT_ADMIN)

        with pytest.raises(ConflictError):
            ProvisioningService.create_user(
                tenant_user.id, 'deputy@tenant-a.test', tenant_id=tenant.id, display_name='Renamed'
            )

        deputy.refresh_from_db()
        assert deputy.display_name == 'deputy'
        assert deputy.tenant_level == Principal.LEVEL_TENANT_ADMIN

    def test_manager_cannot_demote_existing_profile(self, make_principal, tenant_admin, tenant):
        deputy = make_principal('deputy@tenant-a.test', tenant=tenant, tenant_level=Principal.LEVEL_TENANT_ADMIN)

        with pytest.raises(ConflictError):
            ProvisioningService.create_user(tenant_admin.id, 'deputy@tenant-a.test', tenant_id=tenant.id)

        deputy.refresh_from_db()
        assert deputy.tenant_level == Principal.LEVEL_TENANT_ADMIN

    def test_manager_reuses_matching_profile(self, make_principal, tenant_admin, tenant):
        colleague = make_principal('colleague@tenant-a.test', tenant=tenant)

        result = ProvisioningService.create_user(
            tenant_admin.id, 'colleague@tenant-a.test', tenant_id=tenant.id, display_name='Colleague'
        )

        assert result.resumed is True
        assert result.principal_id == str(colleague.id)
        colleague.refresh_from_db()
        assert colleague.display_name == 'Colleague'

    def test_directory_unavailable_leaves_nothing(self, tenant_admin, tenant):
        with pytest.raises(DependencyUnavailable):
            ProvisioningService.create_user(
                tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id,
                directory=_unavailable_directory(),
            )

        assert not Principal.objects.filter(email='new@tenant-a.test').exists()

    def test_role_failure_is_partial(self, tenant_admin, tenant):
        with mock.patch.object(TenantUserStore, 'assign_role', side_effect=DatabaseError('timeout')):
            with pytest.raises(PartialProvisioningError) as exc_info:
                ProvisioningService.create_user(
                    tenant_admin.id, 'new@tenant-a.test', tenant_id=tenant.id, role_names=['Client User']
                )

        error = exc_info.value
        assert error.step_reached == UserProvisioningStep.ASSIGN_ROLES
        assert error.tenant_id == tenant.id
        assert Principal.objects.filter(id=error.principal_id).exists()


@pytest.mark.skipif(connection.vendor != 'postgresql', reason='concurrent writers need PostgreSQL row locking')
@pytest.mark.django_db(transaction=True, serialized_rollback=True)
class TestConcurrentTenantCreation:

    def test_same_name_exactly_one_succeeds(self, super_admin):
        barrier = threading.Barrier(2)
        outcomes = []

        def provision(admin_email):
            barrier.wait(timeout=10)
            try:
                outcomes.append(_create_acme(super_admin, admin_email=admin_email))
            except ConflictError as e:
                outcomes.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=provision, args=(email,))
            for email in ('a@acme.test', 'b@acme.test')
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        succeeded = [o for o in outcomes if not isinstance(o, Exception)]
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(succeeded) == 1
        assert len(conflicts) == 1
        assert Tenant.objects.filter(name='Acme Corp').count() == 1
        assert Tenant.objects.get(name='Acme Corp').admin_user_id == uuid.UUID(succeeded[0].admin_user_id)
