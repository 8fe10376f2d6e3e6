"""
Directory dei tenant: identificativo -> TenantConfig.
Cache in memoria davanti al registry master; solo i lookup riusciti vengono cachati.
"""
from typing import Awaitable, Optional, TypeVar
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from .cache import TenantCache
from .exceptions import ConnectionFailure, TenantNotFound
from .schemas import TenantConfig, TenantRegistryProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TenantDirectory:

    def __init__(
        self,
        registry: TenantRegistryProtocol,
        cache: Optional[TenantCache] = None,
        lookup_timeout: float = 5.0
    ):
        self.registry = registry
        self.cache = cache if cache is not None else TenantCache()
        self.lookup_timeout = lookup_timeout

    async def _call_registry(self, tenant_id: Optional[str], call: Awaitable[T]) -> T:
        """Esegue una chiamata al registry con timeout; errori I/O -> ConnectionFailure"""
        try:
            return await asyncio.wait_for(call, timeout=self.lookup_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Registry lookup timed out for tenant: {tenant_id}")
            raise ConnectionFailure(tenant_id, "registry lookup timed out")
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Registry lookup failed for tenant {tenant_id}: {e}")
            raise ConnectionFailure(tenant_id, "registry unavailable") from e

    @staticmethod
    def _ensure_routable(tenant_id: str, config: Optional[TenantConfig]) -> TenantConfig:
        if config is None:
            raise TenantNotFound(tenant_id)
        if not config.is_active:
            raise TenantNotFound(tenant_id, "inactive")
        if not config.is_ready:
            raise TenantNotFound(tenant_id, f"provisioning {config.status.value}")
        return config

    async def resolve_config(self, identifier: str) -> TenantConfig:
        """
        Config di un tenant pronto e attivo, cercato per id e poi per subdomain.
        Solleva TenantNotFound se assente, disattivato o non ancora Ready.
        """
        cached = await self.cache.get(identifier)
        if cached is not None:
            return cached

        config = await self._call_registry(identifier, self.registry.get(identifier))
        if config is None:
            config = await self._call_registry(identifier, self.registry.get_by_subdomain(identifier))
        config = self._ensure_routable(identifier, config)

        await self.cache.set(identifier, config)
        logger.debug(f"Directory resolved {identifier} -> tenant {config.id}")
        return config

    async def get_record(self, tenant_id: str) -> TenantConfig:
        """Config in qualsiasi stato (uso admin), senza cache"""
        config = await self._call_registry(tenant_id, self.registry.get(tenant_id))
        if config is None:
            raise TenantNotFound(tenant_id)
        return config

    async def set_active(self, tenant_id: str, is_active: bool) -> TenantConfig:
        config = await self._call_registry(tenant_id, self.registry.set_active(tenant_id, is_active))
        if config is None:
            raise TenantNotFound(tenant_id)
        await self.invalidate(tenant_id, config.subdomain)
        if not is_active:
            logger.warning(f"Tenant deactivated: {tenant_id}")
        return config

    async def rotate_database_url(self, tenant_id: str, database_url: str) -> TenantConfig:
        config = await self._call_registry(
            tenant_id, self.registry.rotate_database_url(tenant_id, database_url)
        )
        if config is None:
            raise TenantNotFound(tenant_id)
        await self.invalidate(tenant_id, config.subdomain)
        logger.info(f"Connection descriptor rotated for tenant: {tenant_id}")
        return config

    async def invalidate(self, tenant_id: str, subdomain: Optional[str] = None):
        """Rimuove le entry cachate per id e subdomain"""
        await self.cache.delete(tenant_id)
        if subdomain:
            await self.cache.delete(subdomain)
