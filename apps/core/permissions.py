"""
DRF permission classes.

Object-level authorization lives in the policy engine and the store; these
classes only gate on an authenticated principal.
"""
from rest_framework.permissions import BasePermission

from apps.tenants.models import Principal


class IsPrincipal(BasePermission):
    """Allow requests authenticated as a platform Principal."""

    message = 'Authentication credentials were not provided.'

    def has_permission(self, request, view):
        return isinstance(request.user, Principal)
