"""
Custom DRF authentication classes.
"""
import logging

from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

from apps.core.logging import SecurityLogger
from apps.core.middleware import bind_principal

logger = logging.getLogger(__name__)


class BearerTokenAuthentication(BaseAuthentication):
    """
    Resolve ``Authorization: Bearer <token>`` through the identity directory.

    The authenticated user is the caller's Principal profile. A token that
    the directory accepts but that has no profile is rejected: every caller
    must belong to the platform before it can be authorized.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        from apps.core.exceptions import Unauthorized
        from apps.identity.directory import get_identity_directory
        from apps.tenants.models import Principal

        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid Authorization header. Expected "Bearer <token>".')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise AuthenticationFailed('Invalid token encoding.')

        ip_address = request.META.get('REMOTE_ADDR')
        try:
            principal_id = get_identity_directory().get_caller_identity(token)
        except Unauthorized as e:
            SecurityLogger.log_failed_authentication(reason=e.message, ip_address=ip_address)
            raise AuthenticationFailed(e.message)

        principal = Principal.objects.filter(id=principal_id).select_related('client').first()
        if principal is None:
            SecurityLogger.log_failed_authentication(reason='no_principal_profile', ip_address=ip_address)
            raise AuthenticationFailed('No principal profile for this identity.')

        bind_principal(principal.id)
        return (principal, token)

    def authenticate_header(self, request):
        return self.keyword
