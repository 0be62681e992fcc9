"""
Tests for the audit log.
"""
import uuid
from unittest import mock

import pytest
from django.db import DatabaseError

from apps.core.exceptions import AuditWriteFailed, Forbidden
from apps.rbac.audit import AuditLog
from apps.rbac.models import AuditRecord


@pytest.mark.django_db
class TestAuditRecord:

    def test_record_strips_secrets(self, super_admin, tenant):
        record = AuditLog.record(
            tenant_id=tenant.id,
            performed_by=super_admin.id,
            action=AuditRecord.ACTION_TENANT_CREATED,
            details={
                'tenant_name': tenant.name,
                'admin_email': 'admin@tenant-a.test',
                'password': 'Str0ng!Passw0rd',
                'nested': {'token': 'abc', 'step': 2},
            },
            request_id='req-1',
        )

        record.refresh_from_db()
        assert record.details == {
            'tenant_name': tenant.name,
            'admin_email': 'admin@tenant-a.test',
            'nested': {'step': 2},
        }
        assert record.request_id == 'req-1'
        assert record.performed_by == super_admin.id

    def test_failed_write_raises(self, super_admin, tenant):
        with mock.patch.object(AuditRecord.objects, 'create', side_effect=DatabaseError('disk full')):
            with pytest.raises(AuditWriteFailed) as exc_info:
                AuditLog.record(
                    tenant_id=tenant.id,
                    performed_by=super_admin.id,
                    action=AuditRecord.ACTION_TENANT_CREATED,
                    result={'tenant_id': str(tenant.id)},
                )

        assert exc_info.value.action == AuditRecord.ACTION_TENANT_CREATED
        assert exc_info.value.details['result'] == {'tenant_id': str(tenant.id)}
        assert not AuditRecord.objects.exists()

    def test_records_are_append_only(self, super_admin):
        record = AuditLog.record(None, super_admin.id, AuditRecord.ACTION_USER_CREATED)

        record.action = AuditRecord.ACTION_ROLE_REMOVED
        with pytest.raises(TypeError):
            record.save()
        with pytest.raises(TypeError):
            record.delete()
        with pytest.raises(TypeError):
            AuditRecord.objects.all().update(action=AuditRecord.ACTION_ROLE_REMOVED)
        with pytest.raises(TypeError):
            AuditRecord.objects.all().delete()

        assert AuditRecord.objects.get(id=record.id).action == AuditRecord.ACTION_USER_CREATED


@pytest.mark.django_db
class TestAuditVisibility:

    @pytest.fixture
    def records(self, super_admin, tenant_a, tenant_b):
        return [
            AuditLog.record(tenant_a[0].id, super_admin.id, AuditRecord.ACTION_TENANT_CREATED),
            AuditLog.record(tenant_b[0].id, super_admin.id, AuditRecord.ACTION_TENANT_CREATED),
            AuditLog.record(None, super_admin.id, AuditRecord.ACTION_USER_CREATED),
        ]

    def test_super_admin_sees_everything(self, super_admin, records):
        assert set(AuditLog.list_for(None, super_admin.id)) == set(records)

    def test_tenant_member_sees_own_tenant(self, tenant_a, records):
        visible = list(AuditLog.list_for(None, tenant_a[1].id))
        assert visible == [records[0]]

    def test_other_tenant_is_forbidden(self, tenant_a, tenant_b, records):
        with pytest.raises(Forbidden):
            AuditLog.list_for(tenant_b[0].id, tenant_a[1].id)

    def test_unknown_caller_sees_nothing(self, records):
        assert not AuditLog.list_for(None, uuid.uuid4()).exists()
