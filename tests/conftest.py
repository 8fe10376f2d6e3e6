"""Pytest fixtures: registry master su SQLite (aiosqlite) e fake per store admin e migration."""

import asyncio
from datetime import datetime
from typing import List, Optional, Set

import pytest

from honeycertify_multitenant.registry import TenantRegistryStore
from honeycertify_multitenant.schemas import ProvisioningState, TenantConfig


class FakeStoreAdmin:
    """Registra i database creati/eliminati; SQLite crea il file alla prima connessione."""

    def __init__(self, fail_create: bool = False):
        self.databases: Set[str] = set()
        self.dropped: List[str] = []
        self.fail_create = fail_create

    async def exists(self, database_name: str) -> bool:
        return database_name in self.databases

    async def create(self, database_name: str) -> None:
        if self.fail_create:
            raise RuntimeError("permission denied to create database")
        self.databases.add(database_name)

    async def drop(self, database_name: str) -> None:
        self.databases.discard(database_name)
        self.dropped.append(database_name)


class FakeMigrationRunner:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def run(self, database_url: str) -> None:
        self.calls.append(database_url)
        if self.fail:
            raise RuntimeError("migration 0002_batches failed")


class CountingRegistry:
    """Wrapper che conta i lookup e puo' rallentarli."""

    def __init__(self, inner: TenantRegistryStore, delay: float = 0.0):
        self.inner = inner
        self.delay = delay
        self.get_calls = 0
        self.subdomain_calls = 0

    async def get(self, tenant_id: str) -> Optional[TenantConfig]:
        self.get_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return await self.inner.get(tenant_id)

    async def get_by_subdomain(self, subdomain: str) -> Optional[TenantConfig]:
        self.subdomain_calls += 1
        return await self.inner.get_by_subdomain(subdomain)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def make_config(
    tenant_id: str,
    database_url: str,
    subdomain: Optional[str] = None,
    status: ProvisioningState = ProvisioningState.READY,
    is_active: bool = True,
) -> TenantConfig:
    return TenantConfig(
        id=tenant_id,
        company_name=f"Company {tenant_id}",
        database_url=database_url,
        subdomain=subdomain or f"sub-{tenant_id}",
        created_at=datetime(2024, 5, 1, 12, 0, 0),
        is_active=is_active,
        status=status,
    )


@pytest.fixture
def sqlite_base_url(tmp_path) -> str:
    """Base URL per i database tenant: <base>/<nome> diventa un file in tmp_path."""
    return f"sqlite+aiosqlite:///{tmp_path}"


@pytest.fixture
async def registry(tmp_path) -> TenantRegistryStore:
    store = TenantRegistryStore(f"sqlite+aiosqlite:///{tmp_path / 'master.db'}")
    await store.create_schema()
    yield store
    await store.dispose()


@pytest.fixture
async def ready_tenant(registry, sqlite_base_url) -> TenantConfig:
    return await registry.upsert(
        make_config("acme01", f"{sqlite_base_url}/tenant_acme01", subdomain="acme")
    )
