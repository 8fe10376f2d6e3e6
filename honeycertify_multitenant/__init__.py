from .app import create_app
from .cache import TenantCache
from .config import Settings, get_settings
from .context import TenantContext, TenantContextManager, run_with_tenant_context
from .db_pool import TenantDBPool, TenantHandle
from .dependencies import get_tenant_id, require_tenant_id, get_tenant_handle, get_tenant_session
from .directory import TenantDirectory
from .exceptions import (
    ConnectionFailure,
    MultitenantError,
    ProvisioningFailure,
    TenantAlreadyExists,
    TenantNotFound,
    TenantNotResolved,
)
from .middleware import MultitenantMiddleware
from .provisioning import MigrationRunner, PostgresStoreAdmin, TenantProvisioner
from .registry import TenantRegistryStore
from .resolver import TenantResolver, JwtSessionClaims
from .router import MultitenantRouter
from .schemas import TenantConfig, ProvisioningState

__version__ = "0.1.0"
__all__ = [
    "create_app",
    "Settings",
    "get_settings",
    "TenantResolver",
    "JwtSessionClaims",
    "MultitenantMiddleware",
    "MultitenantRouter",
    "TenantContext",
    "TenantContextManager",
    "run_with_tenant_context",
    "TenantCache",
    "TenantDirectory",
    "TenantRegistryStore",
    "TenantDBPool",
    "TenantHandle",
    "TenantProvisioner",
    "PostgresStoreAdmin",
    "MigrationRunner",
    "get_tenant_id",
    "require_tenant_id",
    "get_tenant_handle",
    "get_tenant_session",
    "TenantConfig",
    "ProvisioningState",
    "MultitenantError",
    "TenantNotResolved",
    "TenantNotFound",
    "TenantAlreadyExists",
    "ProvisioningFailure",
    "ConnectionFailure",
]
