"""
Serializers for tenant and principal endpoints.
"""
from rest_framework import serializers

from apps.tenants.models import Principal, Tenant


class TenantSerializer(serializers.ModelSerializer):
    """Tenant with its derived provisioning status."""

    status = serializers.CharField(read_only=True)
    admin_user_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Tenant
        fields = [
            'id', 'name', 'contact_email', 'tenant_type', 'status',
            'admin_user_id', 'created_by', 'settings', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TenantCreateSerializer(serializers.Serializer):
    """Input for CreateTenant."""

    tenant_name = serializers.CharField(max_length=255)
    tenant_email = serializers.EmailField()
    tenant_type = serializers.ChoiceField(choices=Tenant.TYPE_CHOICES, default=Tenant.TYPE_REGULAR)
    admin_email = serializers.EmailField()
    admin_display_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    auto_generate_password = serializers.BooleanField(default=True)
    settings = serializers.JSONField(required=False, default=dict)

    def validate_tenant_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Tenant name cannot be empty.")
        return value.strip()

    def validate_settings(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Settings must be a JSON object.")
        return value


class TenantResumeSerializer(serializers.Serializer):
    """Input for ResumeTenantProvisioning."""

    admin_email = serializers.EmailField()
    admin_display_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    auto_generate_password = serializers.BooleanField(default=True)
    reset_password = serializers.BooleanField(
        default=False,
        help_text="Issue a new administrator password when the identity already exists"
    )


class TenantUpdateSerializer(serializers.Serializer):
    """Input for UpdateTenant. Only the supplied fields change."""

    name = serializers.CharField(max_length=255, required=False)
    contact_email = serializers.EmailField(required=False)
    tenant_type = serializers.ChoiceField(choices=Tenant.TYPE_CHOICES, required=False)
    settings = serializers.JSONField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field is required.")
        return attrs


class TenantProvisioningResultSerializer(serializers.Serializer):
    """Output of CreateTenant and ResumeTenantProvisioning."""

    tenant_id = serializers.UUIDField()
    tenant_name = serializers.CharField()
    admin_email = serializers.EmailField()
    admin_user_id = serializers.UUIDField()
    password = serializers.CharField(allow_null=True)
    resumed = serializers.BooleanField()


class PrincipalSerializer(serializers.ModelSerializer):
    """Principal profile with the names of its roles."""

    client_id = serializers.UUIDField(read_only=True, allow_null=True)
    roles = serializers.SerializerMethodField()

    class Meta:
        model = Principal
        fields = [
            'id', 'email', 'display_name', 'client_id', 'tenant_level',
            'roles', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_roles(self, obj):
        return sorted(assignment.role.name for assignment in obj.role_assignments.all())


class UserCreateSerializer(serializers.Serializer):
    """Input for CreateUser."""

    email = serializers.EmailField()
    tenant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    tenant_level = serializers.ChoiceField(choices=Principal.LEVEL_CHOICES, default=Principal.LEVEL_USER)
    role_names = serializers.ListField(
        child=serializers.CharField(max_length=100),
        required=False,
        default=list
    )
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    auto_generate_password = serializers.BooleanField(default=True)


class UserProvisioningResultSerializer(serializers.Serializer):
    """Output of CreateUser."""

    principal_id = serializers.UUIDField()
    email = serializers.EmailField()
    display_name = serializers.CharField()
    tenant_id = serializers.UUIDField(allow_null=True)
    tenant_level = serializers.CharField()
    roles = serializers.ListField(child=serializers.CharField())
    password = serializers.CharField(allow_null=True)
    resumed = serializers.BooleanField()


class PrincipalUpdateSerializer(serializers.Serializer):
    """Input for UpdateProfile. Only the supplied fields change."""

    display_name = serializers.CharField(max_length=255, required=False)
    email = serializers.EmailField(required=False)
    tenant_level = serializers.ChoiceField(choices=Principal.LEVEL_CHOICES, required=False)
    client_id = serializers.UUIDField(required=False, allow_null=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("At least one field is required.")
        return attrs
