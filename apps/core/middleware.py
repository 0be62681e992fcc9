"""
Core middleware for request processing.
"""
import uuid
import logging
import threading
from django.db import connection
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_context = threading.local()


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        _request_context.request_id = request_id
        _request_context.principal_id = None

    def process_response(self, request, response):
        """Add request_id to response headers and clear the thread context."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _request_context.request_id = None
        _request_context.principal_id = None
        return response


def bind_principal(principal_id):
    """
    Record the authenticated principal for log records and row security.

    On PostgreSQL the id is also written to the ``app.principal_id`` session
    setting read by the row-level security policies, scoped to the current
    transaction when one is open.
    """
    _request_context.principal_id = str(principal_id) if principal_id else None
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(
                "SELECT set_config('app.principal_id', %s, %s)",
                [_request_context.principal_id or '', connection.in_atomic_block],
            )


class RequestContextFilter(logging.Filter):
    """
    Add request_id and principal_id to log records from thread-local storage.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = getattr(_request_context, 'request_id', None)
        if not hasattr(record, 'principal_id'):
            record.principal_id = getattr(_request_context, 'principal_id', None)
        return True
