"""
Tenant and user REST API views.

Implements endpoints for:
- Tenant provisioning (create, resume, discard)
- Tenant reads and updates
- User creation, listing and profile updates

Every view passes the authenticated principal's id explicitly into the
services; authorization decisions are made there, not here.
"""
import uuid

from django.conf import settings
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import ValidationError
from apps.core.pagination import StandardResultsSetPagination
from apps.core.permissions import IsPrincipal
from apps.rbac.services import RBACService
from apps.tenants.serializers import (
    PrincipalSerializer,
    PrincipalUpdateSerializer,
    TenantCreateSerializer,
    TenantProvisioningResultSerializer,
    TenantResumeSerializer,
    TenantSerializer,
    TenantUpdateSerializer,
    UserCreateSerializer,
    UserProvisioningResultSerializer,
)
from apps.tenants.services import ProvisioningService, TenantUserStore


def tenant_create_rate(group, request):
    """Rate for CreateTenant, read on every request."""
    return settings.TENANT_CREATE_RATE


def _request_id(request):
    return getattr(request, 'request_id', None)


def _credential_response(data, status_code):
    """Responses carrying a plaintext password must never be cached."""
    response = Response(data, status=status_code)
    response['Cache-Control'] = 'no-store'
    return response


def parse_uuid_param(request, name):
    """Optional UUID query parameter."""
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError(f'{name} must be a UUID', details={name: value})


@extend_schema_view(
    get=extend_schema(
        tags=['Tenants'],
        summary='List tenants',
        description='Tenants visible to the caller: every tenant for super admins, the own tenant otherwise.',
        responses={200: TenantSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['Tenants'],
        summary='Create tenant with administrator',
        description='''
Create a tenant and its first administrator. **Super admins only.**

The response carries the administrator's password exactly once. It is
never stored or logged. When `password` is omitted and
`auto_generate_password` is true, a strong password is generated.

A failure after the tenant row exists returns `partial_provisioning` with the
step reached; resume with `POST /v1/tenants/{id}/resume-provisioning/`.
        ''',
        request=TenantCreateSerializer,
        responses={
            201: TenantProvisioningResultSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
            429: OpenApiTypes.OBJECT,
            500: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Create Acme Corp',
                value={
                    'tenant_name': 'Acme Corp',
                    'tenant_email': 'ops@acme.test',
                    'admin_email': 'a@acme.test',
                    'tenant_type': 'regular',
                    'auto_generate_password': True,
                },
                request_only=True
            )
        ]
    ),
)
class TenantListCreateView(APIView):
    """
    GET /v1/tenants/
    POST /v1/tenants/
    """
    permission_classes = [IsPrincipal]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        tenants = TenantUserStore.list_tenants(request.user.id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(tenants, request)
        serializer = TenantSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @method_decorator(ratelimit(key='user_or_ip', rate=tenant_create_rate, method='POST', block=True))
    def post(self, request):
        serializer = TenantCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = ProvisioningService.create_tenant_with_admin(
            request.user.id,
            tenant_name=data['tenant_name'],
            tenant_email=data['tenant_email'],
            admin_email=data['admin_email'],
            admin_display_name=data.get('admin_display_name') or None,
            tenant_type=data['tenant_type'],
            password=data.get('password') or None,
            auto_generate=data['auto_generate_password'],
            settings=data.get('settings'),
            request_id=_request_id(request),
        )
        return _credential_response(result.to_dict(), status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Tenants'],
        summary='Get tenant',
        responses={200: TenantSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['Tenants'],
        summary='Update tenant',
        description='Update name, contact e-mail, type or settings. **Super admins only.**',
        request=TenantUpdateSerializer,
        responses={200: TenantSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['Tenants'],
        summary='Discard provisional tenant',
        description='''
Delete a tenant whose provisioning did not complete. **Super admins only.**

Active tenants cannot be discarded (`409 conflict`).
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
class TenantDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/tenants/{tenant_id}/
    """
    permission_classes = [IsPrincipal]

    def get(self, request, tenant_id):
        tenant = TenantUserStore.get_tenant(request.user.id, tenant_id)
        return Response(TenantSerializer(tenant).data)

    def patch(self, request, tenant_id):
        serializer = TenantUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        tenant = RBACService.update_tenant(
            request.user.id,
            tenant_id,
            request_id=_request_id(request),
            **serializer.validated_data
        )
        return Response(TenantSerializer(tenant).data)

    def delete(self, request, tenant_id):
        ProvisioningService.discard_provisional_tenant(
            request.user.id,
            tenant_id,
            request_id=_request_id(request),
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=['Tenants'],
    summary='Resume tenant provisioning',
    description='''
Continue provisioning of a tenant that is still provisional. Every step is
idempotent: an identity created by the failed run is reused, and the
returned `password` is null in that case because the existing credential
stands. Send `reset_password: true` to have the directory issue a fresh
administrator password, returned once like on creation. **Super admins only.**
    ''',
    request=TenantResumeSerializer,
    responses={
        200: TenantProvisioningResultSerializer,
        403: OpenApiTypes.OBJECT,
        409: OpenApiTypes.OBJECT,
        500: OpenApiTypes.OBJECT,
    },
)
class TenantResumeProvisioningView(APIView):
    """
    POST /v1/tenants/{tenant_id}/resume-provisioning/
    """
    permission_classes = [IsPrincipal]

    def post(self, request, tenant_id):
        serializer = TenantResumeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = ProvisioningService.resume_tenant_provisioning(
            request.user.id,
            tenant_id,
            admin_email=data['admin_email'],
            admin_display_name=data.get('admin_display_name') or None,
            password=data.get('password') or None,
            auto_generate=data['auto_generate_password'],
            reset_password=data['reset_password'],
            request_id=_request_id(request),
        )
        return _credential_response(result.to_dict(), status.HTTP_200_OK)


@extend_schema(
    tags=['Users'],
    summary='List tenant users',
    description='Principals of one tenant. Callers outside the tenant get `403 forbidden`.',
    responses={200: PrincipalSerializer(many=True), 403: OpenApiTypes.OBJECT},
)
class TenantUserListView(APIView):
    """
    GET /v1/tenants/{tenant_id}/users/
    """
    permission_classes = [IsPrincipal]
    pagination_class = StandardResultsSetPagination

    def get(self, request, tenant_id):
        principals = TenantUserStore.list_principals(request.user.id, tenant_id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(principals, request)
        serializer = PrincipalSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)


@extend_schema_view(
    get=extend_schema(
        tags=['Users'],
        summary='List users',
        description='Principals visible to the caller, optionally narrowed to one tenant.',
        parameters=[
            OpenApiParameter(
                name='tenant_id',
                type=OpenApiTypes.UUID,
                location=OpenApiParameter.QUERY,
                required=False,
                description='Only principals of this tenant'
            ),
        ],
        responses={200: PrincipalSerializer(many=True), 403: OpenApiTypes.OBJECT},
    ),
    post=extend_schema(
        tags=['Users'],
        summary='Create user',
        description='''
Create a principal in a tenant. Super admins may create any level and assign
any role; other callers may create `user` principals in their own tenant and
assign non-privileged roles when they hold `manage_users` or `manage_roles`.
        ''',
        request=UserCreateSerializer,
        responses={
            201: UserProvisioningResultSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            409: OpenApiTypes.OBJECT,
            500: OpenApiTypes.OBJECT,
            503: OpenApiTypes.OBJECT,
        },
    ),
)
class UserListCreateView(APIView):
    """
    GET /v1/users/
    POST /v1/users/
    """
    permission_classes = [IsPrincipal]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        tenant_id = parse_uuid_param(request, 'tenant_id')
        principals = TenantUserStore.list_principals(request.user.id, tenant_id)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(principals, request)
        serializer = PrincipalSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        serializer = UserCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = ProvisioningService.create_user(
            request.user.id,
            email=data['email'],
            tenant_id=data.get('tenant_id'),
            display_name=data.get('display_name') or None,
            tenant_level=data['tenant_level'],
            role_names=data.get('role_names') or [],
            password=data.get('password') or None,
            auto_generate=data['auto_generate_password'],
            request_id=_request_id(request),
        )
        return _credential_response(result.to_dict(), status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['Users'],
        summary='Get user',
        responses={200: PrincipalSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['Users'],
        summary='Update profile',
        description='''
Super admins may change `display_name`, `email`, `tenant_level` and
`client_id`. Tenant admins and `manage_users` holders of the principal's
tenant may change `display_name` and `email`. A principal may change its own
`display_name`.
        ''',
        request=PrincipalUpdateSerializer,
        responses={200: PrincipalSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
class UserDetailView(APIView):
    """
    GET/PATCH /v1/users/{principal_id}/
    """
    permission_classes = [IsPrincipal]

    def get(self, request, principal_id):
        principal = TenantUserStore.get_principal(request.user.id, principal_id)
        return Response(PrincipalSerializer(principal).data)

    def patch(self, request, principal_id):
        serializer = PrincipalUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        principal = RBACService.update_profile(
            request.user.id,
            principal_id,
            request_id=_request_id(request),
            **serializer.validated_data
        )
        return Response(PrincipalSerializer(principal).data)
