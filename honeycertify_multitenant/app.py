"""
Application factory HoneyCertify multitenant.
Compone resolver, directory, pool handle, provisioning e API admin.
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .admin import admin_token_dependency, create_admin_router
from .cache import TenantCache
from .config import Settings, configure_logging, get_settings
from .db_pool import EngineFactory, TenantDBPool, TenantHandle
from .dependencies import get_tenant_handle, get_tenant_session
from .directory import TenantDirectory
from .errors import register_exception_handlers
from .middleware import MultitenantMiddleware
from .provisioning import MigrationRunner, PostgresStoreAdmin, StoreAdmin, TenantProvisioner
from .registry import TenantRegistryStore
from .resolver import ClaimsReader, TenantResolver
from .router import MultitenantRouter

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[TenantRegistryStore] = None,
    store_admin: Optional[StoreAdmin] = None,
    migration_runner: Optional[MigrationRunner] = None,
    claims_reader: Optional[ClaimsReader] = None,
    engine_factory: Optional[EngineFactory] = None
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    registry = registry or TenantRegistryStore(
        settings.master_database_url, echo=settings.database_echo
    )
    directory = TenantDirectory(
        registry,
        cache=TenantCache(
            max_size=settings.directory_cache_size,
            ttl_seconds=settings.directory_cache_ttl_seconds,
        ),
        lookup_timeout=settings.directory_lookup_timeout_seconds,
    )
    db_pool = TenantDBPool(
        directory,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        echo=settings.database_echo,
        capacity=settings.handle_cache_capacity,
        verify_connections=settings.verify_connections,
        connect_timeout=settings.directory_lookup_timeout_seconds,
        engine_factory=engine_factory,
    )
    provisioner = TenantProvisioner(
        registry,
        store_admin or PostgresStoreAdmin(settings.postgres_admin_url),
        migration_runner or MigrationRunner(settings.migration_command),
        settings.database_base_url,
        directory=directory,
        tenant_id_length=settings.tenant_id_length,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} multitenant app...")
        await registry.create_schema()
        await db_pool.init()

        yield

        logger.info("Shutting down...")
        await db_pool.shutdown()
        await registry.dispose()
        dispose = getattr(provisioner.store_admin, "dispose", None)
        if dispose is not None:
            await dispose()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.directory = directory
    app.state.db_pool = db_pool
    app.state.provisioner = provisioner

    app.add_middleware(
        MultitenantMiddleware,
        resolver=TenantResolver.from_settings(settings, claims_reader),
        header_name=settings.tenant_header_name,
    )
    register_exception_handlers(app, settings.retry_after_seconds)

    @app.get("/health")
    async def health():
        return {"status": "ok", "open_handles": len(db_pool.handles)}

    company = MultitenantRouter(prefix="/api/company", tags=["company"])

    @company.get("/database-info")
    async def database_info(
        handle: TenantHandle = Depends(get_tenant_handle),
        session: AsyncSession = Depends(get_tenant_session)
    ):
        """Info sul database dedicato del tenant corrente"""
        await session.execute(text("SELECT 1"))
        config = handle.config
        return {
            "tenant_id": config.id,
            "company_name": config.company_name,
            "database_name": config.database_name,
            "status": "active" if config.is_active else "inactive",
            "created_at": config.created_at,
        }

    app.include_router(company.router)
    app.include_router(create_admin_router(
        provisioner,
        registry,
        directory,
        db_pool,
        admin_token_dependency(settings.admin_token.get_secret_value()),
    ))

    return app
