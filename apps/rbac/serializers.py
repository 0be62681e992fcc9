"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Roles and role assignments
- Audit records
"""
from rest_framework import serializers

from apps.rbac.models import AuditRecord, Role, RoleAssignment
from apps.rbac.policy import PolicyEngine


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    is_privileged = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = ['id', 'name', 'description', 'permissions', 'is_privileged']
        read_only_fields = fields

    def get_is_privileged(self, obj):
        return PolicyEngine.is_privileged_role(obj.name, obj.permissions)


class RoleAssignmentSerializer(serializers.ModelSerializer):
    """Serializer for RoleAssignment model."""

    principal_id = serializers.UUIDField(read_only=True)
    role = RoleSerializer(read_only=True)

    class Meta:
        model = RoleAssignment
        fields = ['id', 'principal_id', 'role', 'assigned_by', 'created_at']
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    """Input for AssignRole: a role id or a role name."""

    role_id = serializers.UUIDField(required=False)
    role_name = serializers.CharField(max_length=100, required=False)

    def validate(self, attrs):
        if bool(attrs.get('role_id')) == bool(attrs.get('role_name')):
            raise serializers.ValidationError("Provide exactly one of role_id or role_name.")
        return attrs


class AuditRecordSerializer(serializers.ModelSerializer):
    """Serializer for AuditRecord model."""

    class Meta:
        model = AuditRecord
        fields = [
            'id', 'tenant_id', 'performed_by', 'action',
            'details', 'request_id', 'created_at',
        ]
        read_only_fields = fields
