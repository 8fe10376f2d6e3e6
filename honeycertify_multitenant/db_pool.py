"""
Cache degli handle database per tenant.
Al piu' un handle (engine + sessionmaker) vivo per tenant, creato al primo accesso.
"""
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional
import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .directory import TenantDirectory
from .exceptions import ConnectionFailure, MultitenantError
from .schemas import TenantConfig

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str], AsyncEngine]


class TenantHandle:
    """Canale riusabile verso il database di un tenant"""

    def __init__(self, tenant_id: str, config: TenantConfig, engine: AsyncEngine):
        self.tenant_id = tenant_id
        self.config = config
        self.engine = engine
        self.sessionmaker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def dispose(self):
        await self.engine.dispose()

    def stats(self) -> Dict[str, Any]:
        pool = self.engine.pool
        stats: Dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "pool_class": type(pool).__name__,
        }
        # Non tutti i pool (es. NullPool, StaticPool) espongono i contatori
        for name in ("size", "checkedin", "checkedout", "overflow"):
            method = getattr(pool, name, None)
            if callable(method):
                stats[name] = method()
        return stats


class TenantDBPool:
    """
    Registry esplicito degli handle per tenant.
    Ciclo di vita: init() all'avvio, shutdown() chiude tutti gli handle.
    """

    def __init__(
        self,
        directory: TenantDirectory,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
        capacity: Optional[int] = None,
        verify_connections: bool = True,
        connect_timeout: float = 5.0,
        engine_factory: Optional[EngineFactory] = None
    ):
        """
        Args:
            directory: Directory usata per risolvere i TenantConfig
            capacity: Numero massimo di handle (LRU); None = illimitato
            verify_connections: Esegue SELECT 1 prima di cachare un nuovo handle
            connect_timeout: Timeout in secondi per la verifica della connessione
            engine_factory: Costruttore engine alternativo (test)
        """
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.directory = directory
        self.capacity = capacity
        self.verify_connections = verify_connections
        self.connect_timeout = connect_timeout

        self.pool_config = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
            "pool_pre_ping": True,
        }
        self.echo = echo
        self.engine_factory = engine_factory or self._default_engine_factory

        self.handles: "OrderedDict[str, TenantHandle]" = OrderedDict()
        self._aliases: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

        logger.info(f"TenantDBPool initialized with config: {self.pool_config}, capacity={capacity}")

    def _default_engine_factory(self, database_url: str) -> AsyncEngine:
        if make_url(database_url).get_backend_name() == "sqlite":
            return create_async_engine(database_url, echo=self.echo)
        return create_async_engine(database_url, echo=self.echo, **self.pool_config)

    async def init(self, warm_tenant_ids: Iterable[str] = ()):
        """Avvio processo; opzionalmente apre subito gli handle indicati"""
        logger.info("TenantDBPool started")
        for tenant_id in warm_tenant_ids:
            try:
                await self.get_handle(tenant_id)
            except MultitenantError as e:
                logger.warning(f"Skipping warm-up for tenant {tenant_id}: {e}")

    async def get_handle(self, identifier: str) -> TenantHandle:
        """
        Handle del tenant, creato al primo accesso.
        L'identificativo puo' essere l'id o il subdomain: l'handle e' unico per tenant.
        TenantNotFound e ConnectionFailure propagano e non vengono cachati.
        """
        handle = self._cached(identifier)
        if handle is not None:
            return handle

        lock = self._locks.setdefault(identifier, asyncio.Lock())
        self._lock_users[identifier] = self._lock_users.get(identifier, 0) + 1
        try:
            async with lock:
                handle = self._cached(identifier)
                if handle is not None:
                    return handle

                config = await self.directory.resolve_config(identifier)
                handle = self._cached(config.id)
                if handle is None:
                    handle = await self._store(await self._open_handle(config))
                if identifier != handle.tenant_id:
                    self._aliases[identifier] = handle.tenant_id
                return handle
        finally:
            # il lock resta finche' c'e' qualcuno in coda
            self._lock_users[identifier] -= 1
            if self._lock_users[identifier] == 0:
                del self._lock_users[identifier]
                self._locks.pop(identifier, None)

    async def get_session(self, identifier: str) -> AsyncSession:
        handle = await self.get_handle(identifier)
        return handle.session()

    def _cached(self, identifier: str) -> Optional[TenantHandle]:
        tenant_id = self._aliases.get(identifier, identifier)
        handle = self.handles.get(tenant_id)
        if handle is not None:
            self.handles.move_to_end(tenant_id)
        return handle

    async def _open_handle(self, config: TenantConfig) -> TenantHandle:
        logger.info(f"Creating new DB handle for tenant: {config.id}")
        try:
            engine = self.engine_factory(config.database_url)
        except (SQLAlchemyError, ImportError, ValueError) as e:
            logger.error(f"Cannot build engine for tenant {config.id}: {e}")
            raise ConnectionFailure(config.id, "invalid connection descriptor") from e

        if self.verify_connections:
            try:
                await asyncio.wait_for(self._ping(engine), timeout=self.connect_timeout)
            except asyncio.TimeoutError:
                await engine.dispose()
                logger.error(f"Connection check timed out for tenant: {config.id}")
                raise ConnectionFailure(config.id, "connection timed out")
            except (SQLAlchemyError, OSError) as e:
                await engine.dispose()
                logger.error(f"Connection check failed for tenant {config.id}: {e}")
                raise ConnectionFailure(config.id, "cannot connect to tenant store") from e

        return TenantHandle(config.id, config, engine)

    @staticmethod
    async def _ping(engine: AsyncEngine):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def _store(self, handle: TenantHandle) -> TenantHandle:
        # check-then-insert senza await in mezzo: vince il primo handle salvato
        existing = self.handles.get(handle.tenant_id)
        if existing is not None:
            await handle.dispose()
            return existing

        self.handles[handle.tenant_id] = handle
        logger.info(f"DB handle created successfully for tenant: {handle.tenant_id}")

        if self.capacity is not None:
            while len(self.handles) > self.capacity:
                lru_tenant = next(iter(self.handles))
                logger.info(f"Evicting LRU DB handle for tenant: {lru_tenant}")
                await self.evict(lru_tenant)
        return handle

    async def evict(self, tenant_id: str):
        """Chiude e rimuove l'handle di un tenant (e i suoi alias)"""
        handle = self.handles.pop(tenant_id, None)
        self._aliases = {
            alias: target for alias, target in self._aliases.items() if target != tenant_id
        }
        if handle is not None:
            logger.info(f"Closing DB handle for tenant: {tenant_id}")
            await handle.dispose()

    async def shutdown(self):
        logger.info("Closing all tenant DB handles")
        for tenant_id in list(self.handles.keys()):
            await self.evict(tenant_id)

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self.handles

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {tenant_id: handle.stats() for tenant_id, handle in self.handles.items()}


# Esempio di utilizzo
"""
directory = TenantDirectory(TenantRegistryStore(settings.master_database_url))
db_pool = TenantDBPool(directory, capacity=500)
await db_pool.init()

@app.get("/batches")
async def list_batches(tenant_id: str = Depends(require_tenant_id)):
    async with await db_pool.get_session(tenant_id) as session:
        result = await session.execute(select(Batch))
        return result.scalars().all()

# shutdown
await db_pool.shutdown()
"""
