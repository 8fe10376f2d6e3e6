"""
Registry master dei tenant.
Tabella `tenants` sul database master, accesso via SQLAlchemy async.
"""
from datetime import datetime
from typing import Any, List, Optional
import logging

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .schemas import ProvisioningState, TenantConfig

logger = logging.getLogger(__name__)

metadata = MetaData()

tenants_table = Table(
    "tenants",
    metadata,
    Column("id", String(50), primary_key=True),
    Column("company_name", String(100), nullable=False),
    Column("subdomain", String(63), nullable=False, unique=True),
    Column("database_url", String(512), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("status", String(32), nullable=False),
)


class SubdomainTaken(ValueError):
    pass


class TenantRegistryStore:
    """
    Persistenza dei TenantConfig sul database master.
    Ogni metodo apre una connessione dal pool dell'engine.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[AsyncEngine] = None,
        echo: bool = False
    ):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        self.engine = engine

    async def create_schema(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Tenant registry schema ready")

    @staticmethod
    def _to_config(row: Any) -> TenantConfig:
        return TenantConfig(
            id=row["id"],
            company_name=row["company_name"],
            subdomain=row["subdomain"],
            database_url=row["database_url"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_active=row["is_active"],
            status=ProvisioningState(row["status"]),
        )

    async def _fetch_one(self, where) -> Optional[TenantConfig]:
        async with self.engine.connect() as conn:
            result = await conn.execute(select(tenants_table).where(where))
            row = result.mappings().first()
        return self._to_config(row) if row else None

    async def get(self, tenant_id: str) -> Optional[TenantConfig]:
        return await self._fetch_one(tenants_table.c.id == tenant_id)

    async def get_by_subdomain(self, subdomain: str) -> Optional[TenantConfig]:
        return await self._fetch_one(tenants_table.c.subdomain == subdomain)

    async def upsert(self, config: TenantConfig) -> TenantConfig:
        """
        Registra il tenant o aggiorna quello esistente con lo stesso id.
        Solleva SubdomainTaken se il subdomain appartiene a un altro tenant.
        """
        values = config.model_dump()
        values["status"] = config.status.value

        async with self.engine.begin() as conn:
            owner = (await conn.execute(
                select(tenants_table.c.id).where(tenants_table.c.subdomain == config.subdomain)
            )).scalar_one_or_none()
            if owner is not None and owner != config.id:
                raise SubdomainTaken(f"Subdomain {config.subdomain} already registered")

            exists = (await conn.execute(
                select(tenants_table.c.id).where(tenants_table.c.id == config.id)
            )).scalar_one_or_none()
            if exists is None:
                await conn.execute(insert(tenants_table).values(**values))
            else:
                values.pop("id")
                values["updated_at"] = datetime.utcnow()
                await conn.execute(
                    update(tenants_table).where(tenants_table.c.id == config.id).values(**values)
                )

        logger.debug(f"Registry upsert: {config.id} ({config.status.value})")
        return await self.get(config.id)

    async def _update(self, tenant_id: str, **values) -> Optional[TenantConfig]:
        values["updated_at"] = datetime.utcnow()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(tenants_table).where(tenants_table.c.id == tenant_id).values(**values)
            )
        if result.rowcount == 0:
            return None
        return await self.get(tenant_id)

    async def update_status(self, tenant_id: str, status: ProvisioningState) -> Optional[TenantConfig]:
        return await self._update(tenant_id, status=status.value)

    async def set_active(self, tenant_id: str, is_active: bool) -> Optional[TenantConfig]:
        return await self._update(tenant_id, is_active=is_active)

    async def rotate_database_url(self, tenant_id: str, database_url: str) -> Optional[TenantConfig]:
        return await self._update(tenant_id, database_url=database_url)

    async def list(
        self,
        skip: int = 0,
        limit: int = 100,
        active_only: bool = False
    ) -> List[TenantConfig]:
        query = select(tenants_table).order_by(tenants_table.c.created_at)
        if active_only:
            query = query.where(tenants_table.c.is_active.is_(True))
        query = query.offset(skip).limit(limit)

        async with self.engine.connect() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [self._to_config(row) for row in rows]

    async def dispose(self):
        await self.engine.dispose()
