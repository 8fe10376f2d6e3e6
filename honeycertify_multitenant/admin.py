"""
API Admin per gestione tenant.
Provisioning, attivazione/disattivazione, rotazione connection descriptor.
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from typing import Callable, List, Optional
import logging
import secrets

from .db_pool import TenantDBPool
from .directory import TenantDirectory
from .provisioning import TenantProvisioner
from .schemas import (
    ProvisioningJobInfo,
    ProvisioningState,
    TenantCreate,
    TenantRegistryProtocol,
    TenantResponse,
    TenantUpdate,
)

logger = logging.getLogger(__name__)


def admin_token_dependency(admin_token: str) -> Callable:
    """Dependency che verifica l'header X-Admin-Token (admin disabilitato se token vuoto)"""

    async def require_admin_auth(x_admin_token: Optional[str] = Header(None)):
        if not admin_token:
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin API disabled")
        if not x_admin_token or not secrets.compare_digest(x_admin_token, admin_token):
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid admin token")

    return require_admin_auth


def create_admin_router(
    provisioner: TenantProvisioner,
    registry: TenantRegistryProtocol,
    directory: TenantDirectory,
    db_pool: TenantDBPool,
    require_admin_auth: Callable
) -> APIRouter:
    """
    Router admin per i tenant.
    IMPORTANTE: proteggere sempre con require_admin_auth.
    """

    router = APIRouter(
        prefix="/admin",
        tags=["admin", "tenants"],
        dependencies=[Depends(require_admin_auth)]
    )

    @router.post("/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
    async def create_tenant(tenant_data: TenantCreate):
        """Provisioning completo: database, registry, migrations"""
        config = await provisioner.create_tenant(tenant_data.company_name, tenant_data.subdomain)
        return TenantResponse.from_config(config)

    @router.get("/tenants", response_model=List[TenantResponse])
    async def list_tenants(skip: int = 0, limit: int = 100, active_only: bool = False):
        tenants = await registry.list(skip=skip, limit=limit, active_only=active_only)
        return [TenantResponse.from_config(t) for t in tenants]

    @router.get("/tenants/{tenant_id}", response_model=TenantResponse)
    async def get_tenant(tenant_id: str):
        config = await directory.get_record(tenant_id)
        return TenantResponse.from_config(config)

    @router.patch("/tenants/{tenant_id}", response_model=TenantResponse)
    async def update_tenant(tenant_id: str, update_data: TenantUpdate):
        """Attiva/disattiva o ruota il connection descriptor; chiude l'handle esistente"""
        config = await directory.get_record(tenant_id)
        if update_data.database_url is not None:
            config = await directory.rotate_database_url(tenant_id, update_data.database_url)
        if update_data.is_active is not None:
            config = await directory.set_active(tenant_id, update_data.is_active)

        await db_pool.evict(tenant_id)
        return TenantResponse.from_config(config)

    @router.get("/provisioning", response_model=List[ProvisioningJobInfo])
    async def list_provisioning_jobs(state: Optional[ProvisioningState] = None):
        return [job.to_info() for job in provisioner.list_jobs(state)]

    @router.get("/provisioning/{tenant_id}", response_model=ProvisioningJobInfo)
    async def get_provisioning_job(tenant_id: str):
        job = provisioner.get_job(tenant_id)
        if job is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, f"No provisioning job for tenant {tenant_id}")
        return job.to_info()

    @router.post("/provisioning/{tenant_id}/resume", response_model=TenantResponse)
    async def resume_provisioning(tenant_id: str):
        config = await provisioner.resume(tenant_id)
        return TenantResponse.from_config(config)

    @router.delete("/provisioning/{tenant_id}/store", status_code=status.HTTP_204_NO_CONTENT)
    async def teardown_store(tenant_id: str):
        """Elimina il database di un provisioning bloccato prima della registrazione"""
        await provisioner.teardown(tenant_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router
