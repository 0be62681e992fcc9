"""
Tests for the identity directory implementations.
"""
import uuid
from unittest import mock

import jwt
import pytest
import requests
from django.conf import settings
from django.db import DatabaseError

from apps.core.exceptions import (
    DependencyUnavailable,
    DuplicateEmailError,
    NotFound,
    Unauthorized,
    ValidationError,
)
from apps.identity.directory import (
    DatabaseIdentityDirectory,
    RemoteIdentityDirectory,
    get_identity_directory,
)
from apps.identity.models import Identity


@pytest.mark.django_db
class TestDatabaseIdentityDirectory:

    def test_create_principal_hashes_password(self):
        directory = DatabaseIdentityDirectory()
        principal_id = directory.create_principal('a@acme.test', 'Str0ng!Passw0rd', {'client_id': 't-1'})

        identity = Identity.objects.get(id=principal_id)
        assert identity.email == 'a@acme.test'
        assert identity.password_hash != 'Str0ng!Passw0rd'
        assert identity.check_password('Str0ng!Passw0rd')
        assert identity.metadata == {'client_id': 't-1'}

    def test_create_principal_without_password_is_unusable(self):
        principal_id = DatabaseIdentityDirectory().create_principal('b@acme.test', None, {})
        assert not Identity.objects.get(id=principal_id).check_password('')

    def test_duplicate_email(self):
        directory = DatabaseIdentityDirectory()
        directory.create_principal('a@acme.test', 'Str0ng!Passw0rd', {})

        with pytest.raises(DuplicateEmailError):
            directory.create_principal('a@ACME.test', 'Str0ng!Passw0rd', {})

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            DatabaseIdentityDirectory().create_principal('not-an-email', 'Str0ng!Passw0rd', {})

    def test_store_failure_is_dependency_unavailable(self):
        with mock.patch.object(Identity.objects, 'create_user', side_effect=DatabaseError('timeout')):
            with pytest.raises(DependencyUnavailable):
                DatabaseIdentityDirectory().create_principal('a@acme.test', 'Str0ng!Passw0rd', {})

    def test_find_by_email(self):
        directory = DatabaseIdentityDirectory()
        principal_id = directory.create_principal('a@acme.test', None, {'tenant_level': 'user'})

        found = directory.find_by_email('a@acme.test')
        assert found.id == principal_id
        assert found.metadata == {'tenant_level': 'user'}
        assert directory.find_by_email('missing@acme.test') is None

    def test_reset_credential(self):
        directory = DatabaseIdentityDirectory()
        principal_id = directory.create_principal('a@acme.test', 'Str0ng!Passw0rd', {})

        directory.reset_credential(principal_id, 'N3w!Passw0rd-ok')

        identity = Identity.objects.get(id=principal_id)
        assert identity.check_password('N3w!Passw0rd-ok')
        assert not identity.check_password('Str0ng!Passw0rd')

    def test_reset_credential_unknown_principal(self):
        with pytest.raises(NotFound):
            DatabaseIdentityDirectory().reset_credential(uuid.uuid4(), 'N3w!Passw0rd-ok')

    def test_check_health(self):
        DatabaseIdentityDirectory().check_health()

    def test_token_round_trip(self):
        directory = DatabaseIdentityDirectory()
        principal_id = directory.create_principal('a@acme.test', None, {})

        token = DatabaseIdentityDirectory.issue_token(principal_id, 'a@acme.test')
        assert directory.get_caller_identity(token) == principal_id

    def test_invalid_token(self):
        with pytest.raises(Unauthorized):
            DatabaseIdentityDirectory().get_caller_identity('not-a-token')

    def test_token_signed_with_other_key(self):
        token = jwt.encode({'sub': str(uuid.uuid4())}, 'x' * 40, algorithm='HS256')
        with pytest.raises(Unauthorized):
            DatabaseIdentityDirectory().get_caller_identity(token)

    def test_token_for_inactive_identity(self):
        directory = DatabaseIdentityDirectory()
        principal_id = directory.create_principal('a@acme.test', None, {})
        Identity.objects.filter(id=principal_id).update(is_active=False)

        with pytest.raises(Unauthorized):
            directory.get_caller_identity(DatabaseIdentityDirectory.issue_token(principal_id))

    def test_token_for_unknown_identity(self):
        token = DatabaseIdentityDirectory.issue_token(uuid.uuid4())
        with pytest.raises(Unauthorized):
            DatabaseIdentityDirectory().get_caller_identity(token)


def _response(status_code, body=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


class TestRemoteIdentityDirectory:

    @pytest.fixture
    def directory(self):
        return RemoteIdentityDirectory(
            base_url='https://auth.example.test/auth/v1/',
            service_key='service-key',
            timeout=3,
        )

    @mock.patch('apps.identity.directory.requests.post')
    def test_create_principal(self, post, directory):
        principal_id = uuid.uuid4()
        post.return_value = _response(200, {'id': str(principal_id)})

        assert directory.create_principal('a@acme.test', 'Str0ng!Passw0rd', {'client_id': 't-1'}) == principal_id

        args, kwargs = post.call_args
        assert args[0] == 'https://auth.example.test/auth/v1/admin/users'
        assert kwargs['timeout'] == 3
        assert kwargs['json']['user_metadata'] == {'client_id': 't-1'}
        assert kwargs['json']['password'] == 'Str0ng!Passw0rd'
        assert kwargs['headers']['apikey'] == 'service-key'

    @mock.patch('apps.identity.directory.requests.post')
    def test_duplicate_email(self, post, directory):
        post.return_value = _response(422, {'msg': 'A user with this email address has already been registered'})

        with pytest.raises(DuplicateEmailError):
            directory.create_principal('a@acme.test', None, {})

    @mock.patch('apps.identity.directory.requests.post')
    def test_conflict_status_is_duplicate(self, post, directory):
        post.return_value = _response(409, {})

        with pytest.raises(DuplicateEmailError):
            directory.create_principal('a@acme.test', None, {})

    @mock.patch('apps.identity.directory.requests.post')
    def test_rejected_input(self, post, directory):
        post.return_value = _response(400, {'msg': 'Password should be at least 6 characters'})

        with pytest.raises(ValidationError):
            directory.create_principal('a@acme.test', 'short', {})

    @mock.patch('apps.identity.directory.requests.post')
    def test_timeout_is_dependency_unavailable(self, post, directory):
        post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(DependencyUnavailable):
            directory.create_principal('a@acme.test', None, {})

    @mock.patch('apps.identity.directory.requests.post')
    def test_server_error_is_dependency_unavailable(self, post, directory):
        post.return_value = _response(503)

        with pytest.raises(DependencyUnavailable):
            directory.create_principal('a@acme.test', None, {})

    @mock.patch('apps.identity.directory.requests.get')
    def test_get_caller_identity(self, get, directory):
        principal_id = uuid.uuid4()
        get.return_value = _response(200, {'id': str(principal_id)})

        assert directory.get_caller_identity('caller-token') == principal_id
        assert get.call_args[1]['headers']['Authorization'] == 'Bearer caller-token'

    @mock.patch('apps.identity.directory.requests.get')
    def test_rejected_token(self, get, directory):
        get.return_value = _response(401)

        with pytest.raises(Unauthorized):
            directory.get_caller_identity('expired')

    def test_missing_token(self, directory):
        with pytest.raises(Unauthorized):
            directory.get_caller_identity('')

    @mock.patch('apps.identity.directory.requests.get')
    def test_find_by_email(self, get, directory):
        principal_id = uuid.uuid4()
        get.return_value = _response(200, {'users': [
            {'id': str(uuid.uuid4()), 'email': 'other@acme.test'},
            {'id': str(principal_id), 'email': 'a@acme.test', 'user_metadata': {'client_id': 't-1'}},
        ]})

        found = directory.find_by_email('a@acme.test')
        assert found.id == principal_id
        assert found.metadata == {'client_id': 't-1'}

    @mock.patch('apps.identity.directory.requests.get')
    def test_find_by_email_missing(self, get, directory):
        get.return_value = _response(200, [])
        assert directory.find_by_email('a@acme.test') is None

    @mock.patch('apps.identity.directory.requests.put')
    def test_reset_credential(self, put, directory):
        principal_id = uuid.uuid4()
        put.return_value = _response(200, {'id': str(principal_id)})

        directory.reset_credential(principal_id, 'N3w!Passw0rd-ok')

        args, kwargs = put.call_args
        assert args[0] == f'https://auth.example.test/auth/v1/admin/users/{principal_id}'
        assert kwargs['json'] == {'password': 'N3w!Passw0rd-ok'}
        assert kwargs['timeout'] == 3

    @mock.patch('apps.identity.directory.requests.put')
    def test_reset_credential_unknown_principal(self, put, directory):
        put.return_value = _response(404)

        with pytest.raises(NotFound):
            directory.reset_credential(uuid.uuid4(), 'N3w!Passw0rd-ok')

    @mock.patch('apps.identity.directory.requests.put')
    def test_reset_credential_server_error(self, put, directory):
        put.return_value = _response(502)

        with pytest.raises(DependencyUnavailable):
            directory.reset_credential(uuid.uuid4(), 'N3w!Passw0rd-ok')

    @mock.patch('apps.identity.directory.requests.get')
    def test_check_health(self, get, directory):
        get.return_value = _response(200, {'name': 'GoTrue'})

        directory.check_health()

        assert get.call_args[0][0] == 'https://auth.example.test/auth/v1/health'
        assert get.call_args[1]['timeout'] == 3

    @mock.patch('apps.identity.directory.requests.get')
    def test_check_health_unreachable(self, get, directory):
        get.side_effect = requests.exceptions.ConnectionError()

        with pytest.raises(DependencyUnavailable):
            directory.check_health()

    @mock.patch('apps.identity.directory.requests.get')
    def test_find_by_email_non_json_body(self, get, directory):
        response = _response(200)
        response.json.side_effect = ValueError('Expecting value: line 1 column 1 (char 0)')
        get.return_value = response

        with pytest.raises(DependencyUnavailable):
            directory.find_by_email('a@acme.test')

    @mock.patch('apps.identity.directory.requests.get')
    def test_find_by_email_malformed_user(self, get, directory):
        get.return_value = _response(200, {'users': [{'email': 'a@acme.test', 'id': 'not-a-uuid'}]})

        with pytest.raises(DependencyUnavailable):
            directory.find_by_email('a@acme.test')


def test_get_identity_directory_uses_setting():
    assert settings.IDENTITY_DIRECTORY_CLASS.endswith('DatabaseIdentityDirectory')
    assert isinstance(get_identity_directory(), DatabaseIdentityDirectory)
