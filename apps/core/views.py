"""
Core API views.
"""
import logging

from django.core.cache import cache
from django.db import connection
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def _check_role_catalog():
    from apps.rbac.models import Role, SystemRole

    present = set(Role.objects.filter(name__in=SystemRole.ALL).values_list('name', flat=True))
    missing = SystemRole.ALL - present
    if missing:
        raise LookupError(f"missing system roles: {', '.join(sorted(missing))}")


def _check_cache():
    cache.set('health_check', 'ok', timeout=10)
    if cache.get('health_check') != 'ok':
        raise LookupError('unable to read test key')


def _check_identity_directory():
    from apps.identity.directory import get_identity_directory

    get_identity_directory().check_health()


class HealthCheckView(APIView):
    """
    GET /v1/health/

    Reports each dependency the authorization and provisioning paths rely on.
    The role catalog counts as a dependency: without the system roles no
    caller can be authorized and no tenant can be provisioned.
    """
    authentication_classes = []
    permission_classes = []

    CHECKS = (
        ('database', _check_database),
        ('role_catalog', _check_role_catalog),
        ('cache', _check_cache),
        ('identity_directory', _check_identity_directory),
    )

    @extend_schema(
        tags=['Health'],
        summary="Health check",
        description="Database, role catalog, cache and identity directory status. 503 when any is unhealthy.",
        responses={
            200: {'type': 'object', 'additionalProperties': {'type': 'string'}},
            503: {'type': 'object'},
        }
    )
    def get(self, request):
        report = {'status': 'healthy'}
        errors = []

        for name, check in self.CHECKS:
            try:
                check()
                report[name] = 'healthy'
            except Exception as e:
                report[name] = 'unhealthy'
                errors.append(f"{name}: {e.__class__.__name__}")
                logger.error(
                    "Health check failed",
                    extra={'dependency': name, 'error_type': e.__class__.__name__},
                    exc_info=True
                )

        if errors:
            report['status'] = 'unhealthy'
            report['errors'] = errors
            return Response(report, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response(report, status=status.HTTP_200_OK)
