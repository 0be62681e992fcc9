"""
Services for tenant and principal management.
"""
from .store import TenantUserStore
from .provisioning_service import (
    ProvisioningService,
    TenantProvisioningResult,
    TenantProvisioningStep,
    UserProvisioningResult,
    UserProvisioningStep,
)

__all__ = [
    'TenantUserStore',
    'ProvisioningService',
    'TenantProvisioningResult',
    'TenantProvisioningStep',
    'UserProvisioningResult',
    'UserProvisioningStep',
]
