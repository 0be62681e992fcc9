"""
Provisioning workflow.

Creates a tenant together with its first administrator, and standalone users
inside an existing tenant. The steps span the identity directory, the profile
store, the role store and the audit log, none of which share a transaction.

Steps run forward only. A failure after the provisional tenant exists raises
PartialProvisioningError naming the step reached; nothing is rolled back and
nothing is retried. Calling again with ``resume_tenant_id`` continues from the
committed state (every step is idempotent), and
``discard_provisional_tenant`` removes a tenant that will not be resumed.
"""
import logging
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import List, Optional

from django.conf import settings as django_settings

from apps.core.exceptions import (
    ConflictError,
    DuplicateEmailError,
    Forbidden,
    PartialProvisioningError,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.core.validators import InputValidator, PasswordPolicy
from apps.identity.directory import get_identity_directory
from apps.rbac.audit import AuditLog
from apps.rbac.models import AuditRecord, SystemRole
from apps.rbac.policy import PolicyEngine
from apps.tenants.models import Principal, Tenant
from apps.tenants.services.store import TenantUserStore

logger = logging.getLogger(__name__)


class TenantProvisioningStep(IntEnum):
    AUTHORIZE = 1
    CREATE_TENANT = 2
    RESOLVE_PASSWORD = 3
    CREATE_IDENTITY = 4
    WRITE_PROFILE = 5
    ASSIGN_ROLE = 6
    ACTIVATE_TENANT = 7
    RECORD_AUDIT = 8
    RETURN_CREDENTIALS = 9


class UserProvisioningStep(IntEnum):
    AUTHORIZE = 1
    RESOLVE_PASSWORD = 2
    CREATE_IDENTITY = 3
    WRITE_PROFILE = 4
    ASSIGN_ROLES = 5
    RECORD_AUDIT = 6


@dataclass(frozen=True)
class TenantProvisioningResult:
    """
    Outcome of a completed tenant provisioning.

    ``password`` is the plaintext credential for the new administrator. It
    is returned exactly once and never stored or logged. It is None when the
    run resumed onto an existing identity whose credential still stands and
    no reset was requested.
    """
    tenant_id: str
    tenant_name: str
    admin_email: str
    admin_user_id: str
    password: Optional[str]
    resumed: bool = False

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class UserProvisioningResult:
    principal_id: str
    email: str
    display_name: str
    tenant_id: Optional[str]
    tenant_level: str
    roles: List[str] = field(default_factory=list)
    password: Optional[str] = None
    resumed: bool = False

    def to_dict(self):
        return asdict(self)


def _same_tenant(owner_id, tenant_id) -> bool:
    owner = str(owner_id) if owner_id else None
    target = str(tenant_id) if tenant_id else None
    return owner == target


class ProvisioningService:
    """
    Saga over the identity directory and the tenant/user store.
    """

    TENANT_CREATED_VIA = 'provisioning_workflow'

    @staticmethod
    def _resolve_password(password: Optional[str], auto_generate: bool) -> str:
        """
        Validate a custom password or generate one.

        Raises:
            ValidationError: custom password fails the policy, or no password
                was supplied while generation is disabled
        """
        if password:
            result = PasswordPolicy.validate(password)
            if not result['valid']:
                raise ValidationError(
                    'Password does not meet the password policy',
                    details={'password': result['errors']},
                )
            return password
        if not auto_generate:
            raise ValidationError(
                'A password is required when auto-generation is disabled',
                details={'password': ['This field is required.']},
            )
        return PasswordPolicy.generate()

    @staticmethod
    def _require_email(email: str, field_name: str) -> str:
        email = InputValidator.normalize_email(email)
        if not InputValidator.validate_email(email):
            raise ValidationError('Invalid email address', details={field_name: email})
        return email

    @classmethod
    def _create_or_reuse_identity(cls, caller_id, directory, email, password, metadata, tenant_id):
        """
        Create the directory principal, or reuse an existing one that already
        belongs to ``tenant_id``.

        Ownership is read from the principal's profile when one exists, and
        from the directory metadata otherwise. An existing profile is only
        reused when the caller could edit it directly and its tenant level is
        the one requested; a super admin may always reuse.

        Returns:
            (principal_id, resumed)

        Raises:
            ConflictError: the e-mail belongs to a principal of another tenant,
                or to a profile the caller may not rewrite
        """
        try:
            return directory.create_principal(email, password, metadata), False
        except DuplicateEmailError:
            existing = directory.find_by_email(email)
            if existing is None:
                raise

            duplicate = ConflictError(
                f"A user with email '{email}' already exists",
                details={'email': email},
            )

            profile = Principal.objects.filter(id=existing.id).first()
            if profile is not None:
                owner = profile.client_id
            else:
                owner = (existing.metadata or {}).get('client_id')

            if not _same_tenant(owner, tenant_id):
                raise duplicate

            if profile is not None and not PolicyEngine.is_super_admin(caller_id):
                if (
                    profile.tenant_level != metadata.get('tenant_level')
                    or not PolicyEngine.can_manage_principal(caller_id, profile)
                ):
                    SecurityLogger.log_permission_denied(
                        caller_id, 'reuse_principal', tenant_id=profile.client_id, reason='can_manage_principal'
                    )
                    raise duplicate

            logger.info(
                "Reusing existing directory principal",
                extra={'principal_id': str(existing.id), 'tenant_id': str(tenant_id) if tenant_id else None}
            )
            return existing.id, True

    @classmethod
    def _partial_failure(cls, step, caller_id, tenant_id, principal_id, cause):
        logger.error(
            f"Provisioning stopped at step {int(step)} ({step.name.lower()})",
            extra={
                'step_reached': int(step),
                'tenant_id': str(tenant_id) if tenant_id else None,
                'error_type': cause.__class__.__name__,
            },
            exc_info=True
        )
        SecurityLogger.log_partial_provisioning(
            step=step.name.lower(),
            tenant_id=tenant_id,
            principal_id=principal_id,
            performed_by=caller_id,
        )
        return PartialProvisioningError(step, tenant_id=tenant_id, principal_id=principal_id)

    @classmethod
    def create_tenant_with_admin(
        cls,
        caller_id,
        tenant_name: str = None,
        tenant_email: str = None,
        admin_email: str = None,
        admin_display_name: str = None,
        tenant_type: str = Tenant.TYPE_REGULAR,
        password: str = None,
        auto_generate: bool = True,
        settings: dict = None,
        resume_tenant_id=None,
        reset_password: bool = False,
        request_id: str = None,
        directory=None,
    ) -> TenantProvisioningResult:
        """
        Create a tenant and its first administrator.

        With ``resume_tenant_id`` the existing provisional tenant is used in
        place of step 2 and the name, contact e-mail, type and settings
        arguments are ignored. When the failed run already created the
        administrator identity its credential stands and ``password`` is None,
        unless ``reset_password`` asks the directory for a fresh one.

        Raises:
            Forbidden: caller is not a super admin (no side effects)
            ValidationError: invalid input (no side effects)
            ConflictError: duplicate tenant name, or resuming an active tenant
            PartialProvisioningError: a step after tenant creation failed
            AuditWriteFailed: tenant is active but the audit append failed
        """
        directory = directory or get_identity_directory()

        # Step 1: authorize and validate everything before any write
        if not PolicyEngine.is_super_admin(caller_id):
            SecurityLogger.log_permission_denied(
                caller_id, 'create_tenant_with_admin', reason='is_super_admin'
            )
            raise Forbidden('Only super admins can create tenants')

        admin_email = cls._require_email(admin_email, 'admin_email')
        if resume_tenant_id is None:
            tenant_name = (tenant_name or '').strip()
            if not tenant_name:
                raise ValidationError('Tenant name is required', details={'tenant_name': tenant_name})
            tenant_email = cls._require_email(tenant_email, 'tenant_email')
            if tenant_type not in dict(Tenant.TYPE_CHOICES):
                raise ValidationError('Unknown tenant type', details={'tenant_type': tenant_type})
        if password or not auto_generate:
            cls._resolve_password(password, auto_generate)
        (tenant_admin_role,) = TenantUserStore.resolve_roles([SystemRole.TENANT_ADMIN])

        # Step 2: provisional tenant
        if resume_tenant_id is not None:
            tenant = TenantUserStore.get_tenant(caller_id, resume_tenant_id)
            if tenant.is_active:
                raise ConflictError(
                    'Tenant is already active',
                    details={'tenant_id': str(tenant.id)},
                )
        else:
            tenant_settings = dict(settings or {})
            tenant_settings.update({'status': 'active', 'created_via': cls.TENANT_CREATED_VIA})
            tenant = TenantUserStore.create_tenant(
                caller_id,
                name=tenant_name,
                contact_email=tenant_email,
                tenant_type=tenant_type,
                settings=tenant_settings,
            )

        # Step 3: credential
        plaintext = cls._resolve_password(password, auto_generate)
        display_name = admin_display_name or admin_email.split('@')[0]

        step = TenantProvisioningStep.CREATE_IDENTITY
        principal_id = None
        try:
            # Step 4: directory principal
            principal_id, resumed = cls._create_or_reuse_identity(
                caller_id,
                directory,
                admin_email,
                plaintext,
                {
                    'client_id': str(tenant.id),
                    'tenant_level': Principal.LEVEL_TENANT_ADMIN,
                    'display_name': display_name,
                },
                tenant.id,
            )
            credential_issued = not resumed
            if resumed and reset_password:
                directory.reset_credential(principal_id, plaintext)
                credential_issued = True
                logger.info(
                    "Administrator credential reset on resume",
                    extra={'tenant_id': str(tenant.id), 'admin_user_id': str(principal_id)}
                )

            # Step 5: profile
            step = TenantProvisioningStep.WRITE_PROFILE
            TenantUserStore.write_principal(
                caller_id,
                principal_id,
                email=admin_email,
                display_name=display_name,
                client_id=tenant.id,
                tenant_level=Principal.LEVEL_TENANT_ADMIN,
            )

            # Step 6: role
            step = TenantProvisioningStep.ASSIGN_ROLE
            TenantUserStore.assign_role(caller_id, principal_id, tenant_admin_role)

            # Step 7: activation
            step = TenantProvisioningStep.ACTIVATE_TENANT
            TenantUserStore.activate_tenant(caller_id, tenant.id, principal_id)
        except Exception as e:
            raise cls._partial_failure(step, caller_id, tenant.id, principal_id, e) from e

        result = TenantProvisioningResult(
            tenant_id=str(tenant.id),
            tenant_name=tenant.name,
            admin_email=admin_email,
            admin_user_id=str(principal_id),
            password=plaintext if credential_issued else None,
            resumed=resumed or resume_tenant_id is not None,
        )

        # Step 8: audit
        AuditLog.record(
            tenant_id=tenant.id,
            performed_by=caller_id,
            action=AuditRecord.ACTION_TENANT_CREATED,
            details={
                'tenant_name': tenant.name,
                'admin_email': admin_email,
                'admin_name': display_name,
                'resumed': result.resumed,
            },
            request_id=request_id,
            result={'tenant_id': result.tenant_id, 'admin_user_id': result.admin_user_id},
        )

        logger.info(
            "Tenant provisioned",
            extra={
                'tenant_id': result.tenant_id,
                'admin_user_id': result.admin_user_id,
                'resumed': result.resumed,
            }
        )

        # Step 9: credentials go back to the caller only
        return result

    @classmethod
    def resume_tenant_provisioning(cls, caller_id, tenant_id, admin_email, **kwargs) -> TenantProvisioningResult:
        """Continue provisioning of a provisional tenant."""
        return cls.create_tenant_with_admin(
            caller_id,
            admin_email=admin_email,
            resume_tenant_id=tenant_id,
            **kwargs
        )

    @classmethod
    def discard_provisional_tenant(cls, caller_id, tenant_id, request_id: str = None):
        """
        Delete a provisional tenant left behind by a failed provisioning.

        Principal profiles attached to the tenant are removed with it.
        Directory identities are left in place.
        """
        tenant = TenantUserStore.discard_tenant(caller_id, tenant_id)

        AuditLog.record(
            tenant_id=tenant_id,
            performed_by=caller_id,
            action=AuditRecord.ACTION_TENANT_DISCARDED,
            details={'tenant_name': tenant.name},
            request_id=request_id,
            result={'tenant_id': str(tenant_id)},
        )

        logger.info(
            "Provisional tenant discarded",
            extra={'tenant_id': str(tenant_id)}
        )
        return tenant

    @classmethod
    def create_user(
        cls,
        caller_id,
        email: str,
        tenant_id=None,
        display_name: str = None,
        tenant_level: str = Principal.LEVEL_USER,
        role_names: List[str] = None,
        password: str = None,
        auto_generate: bool = True,
        request_id: str = None,
        directory=None,
    ) -> UserProvisioningResult:
        """
        Create a principal inside a tenant (or a super admin with no tenant).

        Raises:
            Forbidden: caller may not create users in the tenant, or requested
                a level or role beyond its authority (no side effects)
            ValidationError: invalid input or unknown role names (no side effects)
            ConflictError: e-mail belongs to a principal of another tenant
            DependencyUnavailable: directory unreachable (no side effects)
            PartialProvisioningError: profile or role write failed after the
                identity was created
            AuditWriteFailed: user exists but the audit append failed
        """
        directory = directory or get_identity_directory()

        # Step 1: authorize
        is_super = PolicyEngine.is_super_admin(caller_id)
        if not is_super and not PolicyEngine.can_access_client(caller_id, tenant_id):
            SecurityLogger.log_permission_denied(
                caller_id, 'create_user', tenant_id=tenant_id, reason='can_access_client'
            )
            raise Forbidden('You do not have access to this tenant')

        if tenant_level not in dict(Principal.LEVEL_CHOICES):
            raise ValidationError('Unknown tenant level', details={'tenant_level': tenant_level})
        if (tenant_level == Principal.LEVEL_SUPER_ADMIN) != (tenant_id is None):
            raise ValidationError(
                'Super admins have no tenant; every other principal belongs to exactly one tenant',
                details={'tenant_level': tenant_level, 'tenant_id': str(tenant_id) if tenant_id else None},
            )
        if tenant_id is not None and not Tenant.objects.filter(id=tenant_id).exists():
            raise ValidationError('Tenant does not exist', details={'tenant_id': str(tenant_id)})

        roles = TenantUserStore.resolve_roles(role_names)

        if not is_super:
            assignable = {role.id for role in PolicyEngine.assignable_roles(caller_id)}
            escalated = [role.name for role in roles if role.id not in assignable]
            if tenant_level != Principal.LEVEL_USER:
                escalated.append(tenant_level)
            if escalated:
                SecurityLogger.log_privilege_escalation_attempt(caller_id, escalated, tenant_id=tenant_id)
                raise Forbidden(
                    'You may not grant these roles or levels',
                    details={'denied': escalated},
                )
            if roles and not PolicyEngine.can_manage_role_assignments(caller_id):
                SecurityLogger.log_permission_denied(
                    caller_id, 'create_user', tenant_id=tenant_id, reason='manage_users'
                )
                raise Forbidden('You do not have permission to assign roles')

        email = cls._require_email(email, 'email')
        display_name = display_name or email.split('@')[0]

        # Step 2: credential
        plaintext = cls._resolve_password(password, auto_generate)

        # Step 3: directory principal; failures here leave nothing behind
        principal_id, resumed = cls._create_or_reuse_identity(
            caller_id,
            directory,
            email,
            plaintext,
            {
                'client_id': str(tenant_id) if tenant_id else None,
                'tenant_level': tenant_level,
                'display_name': display_name,
            },
            tenant_id,
        )

        step = UserProvisioningStep.WRITE_PROFILE
        try:
            # Step 4: profile
            TenantUserStore.write_principal(
                caller_id,
                principal_id,
                email=email,
                display_name=display_name,
                client_id=tenant_id,
                tenant_level=tenant_level,
            )

            # Step 5: roles
            step = UserProvisioningStep.ASSIGN_ROLES
            for role in roles:
                TenantUserStore.assign_role(caller_id, principal_id, role)
        except Exception as e:
            raise cls._partial_failure(step, caller_id, tenant_id, principal_id, e) from e

        result = UserProvisioningResult(
            principal_id=str(principal_id),
            email=email,
            display_name=display_name,
            tenant_id=str(tenant_id) if tenant_id else None,
            tenant_level=tenant_level,
            roles=[role.name for role in roles],
            password=None if resumed else plaintext,
            resumed=resumed,
        )

        # Step 6: audit
        if django_settings.AUDIT_USER_CREATION:
            AuditLog.record(
                tenant_id=tenant_id,
                performed_by=caller_id,
                action=AuditRecord.ACTION_USER_CREATED,
                details={
                    'email': email,
                    'tenant_level': tenant_level,
                    'roles': result.roles,
                },
                request_id=request_id,
                result={'principal_id': result.principal_id, 'tenant_id': result.tenant_id},
            )

        logger.info(
            "User provisioned",
            extra={
                'created_principal_id': result.principal_id,
                'tenant_id': result.tenant_id,
                'resumed': resumed,
            }
        )
        return result
