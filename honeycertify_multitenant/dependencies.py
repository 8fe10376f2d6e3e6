from fastapi import Depends, Request
from typing import AsyncIterator, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from .db_pool import TenantDBPool, TenantHandle
from .directory import TenantDirectory
from .exceptions import TenantNotResolved
from .schemas import TenantConfig


async def get_tenant_id(request: Request) -> Optional[str]:
    """ID del tenant risolto dal middleware (None se non scopata)"""
    return getattr(request.state, "tenant_id", None)


async def require_tenant_id(tenant_id: Optional[str] = Depends(get_tenant_id)) -> str:
    if not tenant_id:
        raise TenantNotResolved()
    return tenant_id


def get_directory(request: Request) -> TenantDirectory:
    return request.app.state.directory


def get_db_pool(request: Request) -> TenantDBPool:
    return request.app.state.db_pool


async def get_tenant_config(
    tenant_id: str = Depends(require_tenant_id),
    directory: TenantDirectory = Depends(get_directory)
) -> TenantConfig:
    return await directory.resolve_config(tenant_id)


async def get_tenant_handle(
    tenant_id: str = Depends(require_tenant_id),
    db_pool: TenantDBPool = Depends(get_db_pool)
) -> TenantHandle:
    return await db_pool.get_handle(tenant_id)


async def get_tenant_session(
    handle: TenantHandle = Depends(get_tenant_handle)
) -> AsyncIterator[AsyncSession]:
    """Sessione ORM sul database del tenant corrente"""
    async with handle.session() as session:
        yield session
