"""
RBAC REST API views.

Implements endpoints for:
- Role catalog listing (optionally only the roles the caller may grant)
- Role assignments (assign, remove, list)
- Audit record viewing
"""
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.pagination import StandardResultsSetPagination
from apps.core.permissions import IsPrincipal
from apps.rbac.audit import AuditLog
from apps.rbac.serializers import (
    AssignRoleSerializer,
    AuditRecordSerializer,
    RoleAssignmentSerializer,
    RoleSerializer,
)
from apps.rbac.services import RBACService
from apps.tenants.services import TenantUserStore
from apps.tenants.views import parse_uuid_param


@extend_schema(
    tags=['RBAC - Roles'],
    summary='List roles',
    description='''
List the role catalog. With `assignable=true` only the roles the caller may
grant are returned: the whole catalog for super admins, the non-privileged
roles for everyone else.
    ''',
    parameters=[
        OpenApiParameter(
            name='assignable',
            type=OpenApiTypes.BOOL,
            location=OpenApiParameter.QUERY,
            required=False,
            description='Only roles the caller may assign'
        ),
    ],
    responses={200: RoleSerializer(many=True)},
)
class RoleListView(APIView):
    """
    GET /v1/roles/
    """
    permission_classes = [IsPrincipal]

    def get(self, request):
        assignable_only = request.query_params.get('assignable') == 'true'
        roles = TenantUserStore.list_roles(request.user.id, assignable_only=assignable_only)

        serializer = RoleSerializer(roles, many=True)
        return Response({
            'count': len(serializer.data),
            'roles': serializer.data
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Role Assignments'],
        summary='List role assignments of a user',
        responses={200: RoleAssignmentSerializer(many=True), 403: OpenApiTypes.OBJECT},
    ),
    post=extend_schema(
        tags=['RBAC - Role Assignments'],
        summary='Assign role',
        description='''
Assign a role to a principal. Assigning a role the principal already holds
succeeds with `200` and changes nothing.

Requires `manage_users` or `manage_roles` in the principal's tenant; only
super admins may grant privileged roles.
        ''',
        request=AssignRoleSerializer,
        responses={
            200: RoleAssignmentSerializer,
            201: RoleAssignmentSerializer,
            400: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
        },
    ),
)
class UserRoleListView(APIView):
    """
    GET/POST /v1/users/{principal_id}/roles/
    """
    permission_classes = [IsPrincipal]

    def get(self, request, principal_id):
        principal = TenantUserStore.get_principal(request.user.id, principal_id)
        assignments = principal.role_assignments.select_related('role')

        serializer = RoleAssignmentSerializer(assignments, many=True)
        return Response({
            'count': len(serializer.data),
            'assignments': serializer.data
        })

    def post(self, request, principal_id):
        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data.get('role_id'):
            role = RBACService.get_role(data['role_id'])
        else:
            (role,) = TenantUserStore.resolve_roles([data['role_name']])

        assignment, created = RBACService.assign_role(
            request.user.id,
            principal_id,
            role,
            request_id=getattr(request, 'request_id', None),
        )
        return Response(
            RoleAssignmentSerializer(assignment).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )


@extend_schema(
    tags=['RBAC - Role Assignments'],
    summary='Remove role',
    description='Remove a role from a principal. Removing a role that is not assigned succeeds and changes nothing.',
    responses={
        200: {'type': 'object', 'properties': {'removed': {'type': 'boolean'}}},
        403: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
    },
)
class UserRoleDetailView(APIView):
    """
    DELETE /v1/users/{principal_id}/roles/{role_id}/
    """
    permission_classes = [IsPrincipal]

    def delete(self, request, principal_id, role_id):
        role = RBACService.get_role(role_id)
        removed = RBACService.remove_role(
            request.user.id,
            principal_id,
            role,
            request_id=getattr(request, 'request_id', None),
        )
        return Response({'removed': removed})


@extend_schema(
    tags=['RBAC - Audit'],
    summary='List audit records',
    description='''
Audit records visible to the caller. Super admins see every record; other
principals see their own tenant's records. Filtering by a tenant the caller
cannot access returns `403 forbidden`.
    ''',
    parameters=[
        OpenApiParameter(
            name='tenant_id',
            type=OpenApiTypes.UUID,
            location=OpenApiParameter.QUERY,
            required=False,
            description='Only records of this tenant'
        ),
        OpenApiParameter(
            name='action',
            type=OpenApiTypes.STR,
            location=OpenApiParameter.QUERY,
            required=False,
            description='Filter by action (e.g. tenant_created, role_assigned)'
        ),
    ],
    responses={200: AuditRecordSerializer(many=True), 403: OpenApiTypes.OBJECT},
)
class AuditRecordListView(APIView):
    """
    GET /v1/audit-records/
    """
    permission_classes = [IsPrincipal]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        tenant_id = parse_uuid_param(request, 'tenant_id')
        records = AuditLog.list_for(tenant_id, request.user.id)

        action = request.query_params.get('action')
        if action:
            records = records.by_action(action)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(records, request)
        serializer = AuditRecordSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)
