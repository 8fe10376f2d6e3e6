"""
Provisioning dei tenant come macchina a stati esplicita.

Requested -> StoreCreated -> Registered -> MigrationsApplied -> Ready

Ogni step e' idempotente e ripetibile con resume(); un tenant bloccato
prima di Registered puo' essere smontato con teardown().
"""
from typing import Dict, List, Optional, Protocol
from datetime import datetime
import asyncio
import logging
import os
import re
import shlex

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .directory import TenantDirectory
from .exceptions import ProvisioningFailure, TenantAlreadyExists
from .schemas import (
    ProvisioningJobInfo,
    ProvisioningState,
    TenantConfig,
    TenantRegistryProtocol,
)
from .utils import build_database_url, create_tenant_database_name, generate_tenant_id

logger = logging.getLogger(__name__)

STATE_ORDER = [
    ProvisioningState.REQUESTED,
    ProvisioningState.STORE_CREATED,
    ProvisioningState.REGISTERED,
    ProvisioningState.MIGRATIONS_APPLIED,
    ProvisioningState.READY,
]

DATABASE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_]{1,63}$')


class StoreAdmin(Protocol):
    async def exists(self, database_name: str) -> bool: ...
    async def create(self, database_name: str) -> None: ...
    async def drop(self, database_name: str) -> None: ...


class PostgresStoreAdmin:
    """Crea ed elimina database PostgreSQL via connessione admin in AUTOCOMMIT"""

    def __init__(self, admin_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        if engine is None:
            if not admin_url:
                raise ValueError("admin_url or engine is required")
            # CREATE/DROP DATABASE non possono girare in una transazione
            engine = create_async_engine(admin_url, isolation_level="AUTOCOMMIT")
        self.engine = engine

    @staticmethod
    def _check_name(database_name: str):
        if not DATABASE_NAME_PATTERN.match(database_name):
            raise ValueError(f"Invalid database name: {database_name!r}")

    async def exists(self, database_name: str) -> bool:
        async with self.engine.connect() as conn:
            result = await conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name}
            )
            return result.scalar() is not None

    async def create(self, database_name: str):
        self._check_name(database_name)
        if await self.exists(database_name):
            logger.info(f"Database already exists, skipping create: {database_name}")
            return
        async with self.engine.connect() as conn:
            await conn.execute(text(f'CREATE DATABASE "{database_name}"'))
        logger.info(f"Database created: {database_name}")

    async def drop(self, database_name: str):
        self._check_name(database_name)
        async with self.engine.connect() as conn:
            await conn.execute(text(f'DROP DATABASE IF EXISTS "{database_name}"'))
        logger.warning(f"Database dropped: {database_name}")

    async def dispose(self):
        await self.engine.dispose()


class MigrationRunner:
    """
    Esegue le migration come processo esterno.
    DATABASE_URL viene impostata al connection descriptor del tenant.
    """

    def __init__(
        self,
        command: str = "alembic upgrade head",
        timeout_seconds: float = 300,
        cwd: Optional[str] = None
    ):
        self.command = shlex.split(command)
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd

    async def run(self, database_url: str):
        env = {**os.environ, "DATABASE_URL": database_url}
        process = await asyncio.create_subprocess_exec(
            *self.command,
            env=env,
            cwd=self.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeError(f"Migration command timed out after {self.timeout_seconds}s")

        if process.returncode != 0:
            tail = stderr.decode(errors="replace").strip()[-500:]
            raise RuntimeError(f"Migration command exited with {process.returncode}: {tail}")


class ProvisioningJob:
    """Traccia lo stato di provisioning di un tenant"""

    def __init__(
        self,
        tenant_id: str,
        company_name: str,
        subdomain: str,
        database_name: str,
        database_url: str
    ):
        self.tenant_id = tenant_id
        self.company_name = company_name
        self.subdomain = subdomain
        self.database_name = database_name
        self.database_url = database_url

        self.state = ProvisioningState.REQUESTED
        self.last_completed = ProvisioningState.REQUESTED
        self.created_at = datetime.utcnow()
        self.updated_at = self.created_at
        self.errors: List[Dict[str, str]] = []
        self.lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: TenantConfig) -> "ProvisioningJob":
        """Job ricostruito da un record del registry (almeno Registered)"""
        job = cls(
            config.id,
            config.company_name,
            config.subdomain,
            config.database_name,
            config.database_url,
        )
        reached = config.status
        if reached not in STATE_ORDER or STATE_ORDER.index(reached) < STATE_ORDER.index(ProvisioningState.REGISTERED):
            reached = ProvisioningState.REGISTERED
        job.state = reached
        job.last_completed = reached
        job.created_at = config.created_at
        job.updated_at = config.updated_at or config.created_at
        return job

    def has_completed(self, state: ProvisioningState) -> bool:
        return STATE_ORDER.index(self.last_completed) >= STATE_ORDER.index(state)

    def advance(self, state: ProvisioningState):
        self.state = state
        self.last_completed = state
        self.updated_at = datetime.utcnow()
        logger.info(f"Tenant {self.tenant_id} provisioning -> {state.value}")

    def fail(self, step: str, error: str):
        self.state = ProvisioningState.FAILED
        self.updated_at = datetime.utcnow()
        self.errors.append({
            "step": step,
            "error": error,
            "at": self.updated_at.isoformat(),
        })

    def config(self, status: ProvisioningState) -> TenantConfig:
        return TenantConfig(
            id=self.tenant_id,
            company_name=self.company_name,
            database_url=self.database_url,
            subdomain=self.subdomain,
            created_at=self.created_at,
            is_active=True,
            status=status,
        )

    def to_info(self) -> ProvisioningJobInfo:
        return ProvisioningJobInfo(
            tenant_id=self.tenant_id,
            company_name=self.company_name,
            subdomain=self.subdomain,
            state=self.state,
            last_completed_state=self.last_completed,
            created_at=self.created_at,
            updated_at=self.updated_at,
            errors=list(self.errors),
        )


class TenantProvisioner:
    """
    Crea tenant con database dedicato.

    Steps:
    1. Crea database fisico tenant_<id>
    2. Registra TenantConfig nel registry master (status registered)
    3. Esegue migrations sul nuovo database
    4. Marca il tenant ready
    """

    def __init__(
        self,
        registry: TenantRegistryProtocol,
        store_admin: StoreAdmin,
        migration_runner: MigrationRunner,
        database_base_url: str,
        directory: Optional[TenantDirectory] = None,
        tenant_id_length: int = 8
    ):
        self.registry = registry
        self.store_admin = store_admin
        self.migration_runner = migration_runner
        self.database_base_url = database_base_url
        self.directory = directory
        self.tenant_id_length = tenant_id_length

        self.jobs: Dict[str, ProvisioningJob] = {}

    async def create_tenant(self, company_name: str, subdomain: str) -> TenantConfig:
        if await self.registry.get_by_subdomain(subdomain) is not None:
            raise TenantAlreadyExists(subdomain)

        tenant_id = generate_tenant_id(company_name, self.tenant_id_length)
        database_name = create_tenant_database_name(tenant_id)
        job = ProvisioningJob(
            tenant_id,
            company_name,
            subdomain,
            database_name,
            build_database_url(self.database_base_url, database_name),
        )
        self.jobs[tenant_id] = job

        logger.info(f"Provisioning tenant {tenant_id} for company: {company_name}")
        return await self._run(job)

    async def resume(self, tenant_id: str) -> TenantConfig:
        """Riprende un provisioning fallito dall'ultimo stato completato"""
        job = await self._find_job("resume", tenant_id)
        if job.state == ProvisioningState.TORN_DOWN:
            raise ProvisioningFailure("resume", tenant_id, "tenant store was torn down")
        return await self._run(job)

    async def teardown(self, tenant_id: str):
        """Elimina il database di un tenant bloccato prima di Registered"""
        job = await self._find_job("teardown", tenant_id)

        async with job.lock:
            if job.has_completed(ProvisioningState.REGISTERED):
                raise ProvisioningFailure(
                    "teardown", tenant_id, "tenant already registered; deactivate it instead"
                )
            await self.store_admin.drop(job.database_name)
            job.state = ProvisioningState.TORN_DOWN
            job.updated_at = datetime.utcnow()

        logger.warning(f"Tenant {tenant_id} torn down before registration")

    async def _find_job(self, step: str, tenant_id: str) -> ProvisioningJob:
        """
        Job in memoria o, dopo un riavvio, ricostruito dal record nel registry.
        Il record esiste solo da Registered in poi: quello e' l'ultimo stato sicuro.
        """
        job = self.jobs.get(tenant_id)
        if job is not None:
            return job

        try:
            config = await self.registry.get(tenant_id)
        except Exception as e:
            raise ProvisioningFailure(step, tenant_id, f"registry unavailable: {e}") from e
        if config is None:
            raise ProvisioningFailure(step, tenant_id, "no provisioning job")

        job = ProvisioningJob.from_config(config)
        self.jobs[tenant_id] = job
        logger.info(f"Provisioning job for tenant {tenant_id} restored at {job.last_completed.value}")
        return job

    def get_job(self, tenant_id: str) -> Optional[ProvisioningJob]:
        return self.jobs.get(tenant_id)

    def list_jobs(self, state: Optional[ProvisioningState] = None) -> List[ProvisioningJob]:
        jobs = list(self.jobs.values())
        if state is not None:
            jobs = [j for j in jobs if j.state == state]
        return jobs

    async def _run(self, job: ProvisioningJob) -> TenantConfig:
        steps = [
            (ProvisioningState.STORE_CREATED, "create_store", self._create_store),
            (ProvisioningState.REGISTERED, "register", self._register),
            (ProvisioningState.MIGRATIONS_APPLIED, "migrate", self._migrate),
            (ProvisioningState.READY, "activate", self._activate),
        ]

        async with job.lock:
            for target, step, action in steps:
                if job.has_completed(target):
                    continue
                try:
                    await action(job)
                except Exception as e:
                    job.fail(step, str(e))
                    logger.error(f"Provisioning step {step} failed for tenant {job.tenant_id}: {e}")
                    raise ProvisioningFailure(step, job.tenant_id, str(e)) from e
                job.advance(target)

        logger.info(f"Tenant provisioned successfully: {job.tenant_id}")
        return job.config(ProvisioningState.READY)

    async def _create_store(self, job: ProvisioningJob):
        await self.store_admin.create(job.database_name)

    async def _register(self, job: ProvisioningJob):
        await self.registry.upsert(job.config(ProvisioningState.REGISTERED))

    async def _migrate(self, job: ProvisioningJob):
        await self.migration_runner.run(job.database_url)
        await self.registry.update_status(job.tenant_id, ProvisioningState.MIGRATIONS_APPLIED)

    async def _activate(self, job: ProvisioningJob):
        await self.registry.update_status(job.tenant_id, ProvisioningState.READY)
        if self.directory is not None:
            await self.directory.invalidate(job.tenant_id, job.subdomain)
