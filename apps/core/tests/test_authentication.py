"""
Tests for bearer token authentication.
"""
import os
import subprocess
import sys
from pathlib import Path

import pytest
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIRequestFactory

from apps.core.authentication import BearerTokenAuthentication
from apps.identity.directory import DatabaseIdentityDirectory


PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _import_in_fresh_interpreter(*modules):
    code = 'import django; django.setup()\n' + '\n'.join(f'import {name}' for name in modules)
    env = dict(os.environ, DJANGO_SETTINGS_MODULE='config.test_settings')
    return subprocess.run(
        [sys.executable, '-c', code],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=60,
    )


class TestImportOrder:

    @pytest.mark.parametrize('modules', [
        ('apps.core.exceptions',),
        ('rest_framework.views',),
        ('apps.core.authentication', 'apps.core.exceptions'),
        ('apps.tenants.views', 'apps.rbac.views'),
    ])
    def test_modules_import_in_any_order(self, modules):
        completed = _import_in_fresh_interpreter(*modules)

        assert completed.returncode == 0, completed.stderr


@pytest.mark.django_db
class TestBearerTokenAuthentication:

    def _request(self, header=None):
        extra = {'HTTP_AUTHORIZATION': header} if header is not None else {}
        return APIRequestFactory().get('/v1/tenants/', **extra)

    def test_no_header_is_anonymous(self):
        assert BearerTokenAuthentication().authenticate(self._request()) is None

    def test_other_scheme_is_ignored(self):
        assert BearerTokenAuthentication().authenticate(self._request('Basic abc')) is None

    def test_valid_token_resolves_principal(self, tenant_user):
        token = DatabaseIdentityDirectory.issue_token(tenant_user.id, tenant_user.email)

        principal, returned_token = BearerTokenAuthentication().authenticate(self._request(f'Bearer {token}'))

        assert principal == tenant_user
        assert returned_token == token

    def test_rejected_token_raises(self):
        with pytest.raises(AuthenticationFailed):
            BearerTokenAuthentication().authenticate(self._request('Bearer not-a-token'))
