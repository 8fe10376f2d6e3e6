"""Integration tests per TenantRegistryStore su SQLite."""

import pytest

from honeycertify_multitenant.registry import SubdomainTaken
from honeycertify_multitenant.schemas import ProvisioningState

from .conftest import make_config


async def test_upsert_and_get(registry) -> None:
    config = make_config("t1", "sqlite+aiosqlite:///t1.db", subdomain="one")
    stored = await registry.upsert(config)

    assert stored.id == "t1"
    assert stored.status == ProvisioningState.READY
    assert (await registry.get("t1")).subdomain == "one"
    assert (await registry.get_by_subdomain("one")).id == "t1"
    assert await registry.get("missing") is None


async def test_upsert_is_idempotent(registry) -> None:
    config = make_config("t1", "sqlite+aiosqlite:///t1.db", status=ProvisioningState.REGISTERED)
    await registry.upsert(config)
    again = await registry.upsert(config)

    assert again.status == ProvisioningState.REGISTERED
    assert again.updated_at is not None
    assert len(await registry.list()) == 1


async def test_subdomain_must_be_unique(registry) -> None:
    await registry.upsert(make_config("t1", "sqlite+aiosqlite:///t1.db", subdomain="shared"))
    with pytest.raises(SubdomainTaken):
        await registry.upsert(make_config("t2", "sqlite+aiosqlite:///t2.db", subdomain="shared"))


async def test_status_active_and_rotation(registry) -> None:
    await registry.upsert(make_config("t1", "sqlite+aiosqlite:///t1.db", status=ProvisioningState.REGISTERED))

    assert (await registry.update_status("t1", ProvisioningState.READY)).status == ProvisioningState.READY
    assert (await registry.set_active("t1", False)).is_active is False
    rotated = await registry.rotate_database_url("t1", "sqlite+aiosqlite:///t1-new.db")
    assert rotated.database_url == "sqlite+aiosqlite:///t1-new.db"

    assert await registry.set_active("missing", True) is None


async def test_list_filters_and_pages(registry) -> None:
    await registry.upsert(make_config("t1", "sqlite+aiosqlite:///t1.db"))
    await registry.upsert(make_config("t2", "sqlite+aiosqlite:///t2.db", is_active=False))
    await registry.upsert(make_config("t3", "sqlite+aiosqlite:///t3.db"))

    assert {t.id for t in await registry.list()} == {"t1", "t2", "t3"}
    assert {t.id for t in await registry.list(active_only=True)} == {"t1", "t3"}
    assert len(await registry.list(skip=1, limit=1)) == 1
