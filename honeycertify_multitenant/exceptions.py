"""
Eccezioni per risoluzione, routing e provisioning dei tenant.
"""
from typing import Any, Dict, Optional


class MultitenantError(Exception):
    """Base per tutti gli errori multitenant"""

    error_code = "MULTITENANT_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class TenantNotResolved(MultitenantError):
    """Nessun identificativo tenant ricavabile dalla richiesta"""

    error_code = "TENANT_NOT_RESOLVED"

    def __init__(self, message: str = "No tenant could be resolved from the request"):
        super().__init__(message)


class TenantNotFound(MultitenantError):
    """Identificativo ricavato ma nessun tenant attivo corrispondente"""

    error_code = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str, reason: str = "not registered"):
        super().__init__(
            f"Tenant {tenant_id} not found ({reason})",
            {"tenant_id": tenant_id, "reason": reason},
        )
        self.tenant_id = tenant_id


class ProvisioningFailure(MultitenantError):
    """Uno step del provisioning e' fallito"""

    error_code = "PROVISIONING_FAILURE"

    def __init__(self, step: str, tenant_id: Optional[str], message: str):
        super().__init__(
            f"Provisioning step '{step}' failed for tenant {tenant_id}: {message}",
            {"step": step, "tenant_id": tenant_id},
        )
        self.step = step
        self.tenant_id = tenant_id


class ConnectionFailure(MultitenantError):
    """Impossibile stabilire un handle per un tenant esistente (retryable)"""

    error_code = "CONNECTION_FAILURE"
    retryable = True

    def __init__(self, tenant_id: Optional[str], message: str):
        super().__init__(
            f"Connection failure for tenant {tenant_id}: {message}",
            {"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class TenantAlreadyExists(MultitenantError):
    """Subdomain gia' assegnato a un altro tenant"""

    error_code = "TENANT_ALREADY_EXISTS"

    def __init__(self, subdomain: str):
        super().__init__(
            f"Subdomain {subdomain} already registered",
            {"subdomain": subdomain},
        )
        self.subdomain = subdomain
