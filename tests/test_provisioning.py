"""Tests per la macchina a stati di provisioning e il MigrationRunner."""

import shlex
import sys

import pytest

from honeycertify_multitenant.db_pool import TenantDBPool
from honeycertify_multitenant.directory import TenantDirectory
from honeycertify_multitenant.exceptions import (
    ProvisioningFailure,
    TenantAlreadyExists,
    TenantNotFound,
)
from honeycertify_multitenant.provisioning import MigrationRunner, TenantProvisioner
from honeycertify_multitenant.schemas import ProvisioningState

from .conftest import FakeMigrationRunner, FakeStoreAdmin


class FailingUpsertRegistry:
    """Registry che fallisce la registrazione (es. master DB giu')."""

    def __init__(self, inner):
        self.inner = inner

    async def upsert(self, config):
        raise ConnectionError("master registry unreachable")

    def __getattr__(self, name):
        return getattr(self.inner, name)


def make_provisioner(registry, base_url, store_admin=None, runner=None, directory=None):
    return TenantProvisioner(
        registry,
        store_admin or FakeStoreAdmin(),
        runner or FakeMigrationRunner(),
        base_url,
        directory=directory,
    )


async def test_create_tenant_reaches_ready(registry, sqlite_base_url) -> None:
    store_admin = FakeStoreAdmin()
    runner = FakeMigrationRunner()
    provisioner = make_provisioner(registry, sqlite_base_url, store_admin, runner)

    config = await provisioner.create_tenant("Acme Honey", "acme")

    assert len(config.id) == 8
    assert config.status == ProvisioningState.READY
    assert store_admin.databases == {f"tenant_{config.id}"}
    assert runner.calls == [f"{sqlite_base_url}/tenant_{config.id}"]

    stored = await registry.get(config.id)
    assert stored.status == ProvisioningState.READY
    assert stored.subdomain == "acme"

    job = provisioner.get_job(config.id)
    assert job.state == ProvisioningState.READY
    assert job.to_info().errors == []


async def test_ready_tenant_is_reachable_through_pool(registry, sqlite_base_url) -> None:
    directory = TenantDirectory(registry)
    pool = TenantDBPool(directory)
    provisioner = make_provisioner(registry, sqlite_base_url, directory=directory)

    config = await provisioner.create_tenant("Acme Honey", "acme")

    assert (await pool.get_handle(config.id)).tenant_id == config.id
    assert (await pool.get_handle("acme")).tenant_id == config.id
    await pool.shutdown()


async def test_migration_failure_never_becomes_ready(registry, sqlite_base_url) -> None:
    directory = TenantDirectory(registry)
    pool = TenantDBPool(directory)
    provisioner = make_provisioner(
        registry, sqlite_base_url, runner=FakeMigrationRunner(fail=True), directory=directory
    )

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.create_tenant("Acme Honey", "acme")

    tenant_id = exc_info.value.tenant_id
    assert exc_info.value.step == "migrate"
    assert (await registry.get(tenant_id)).status == ProvisioningState.REGISTERED

    job = provisioner.get_job(tenant_id)
    assert job.state == ProvisioningState.FAILED
    assert job.last_completed == ProvisioningState.REGISTERED
    assert job.errors[0]["step"] == "migrate"

    for identifier in (tenant_id, "acme"):
        with pytest.raises(TenantNotFound):
            await pool.get_handle(identifier)
    assert len(pool.handles) == 0


async def test_resume_after_migration_failure(registry, sqlite_base_url) -> None:
    store_admin = FakeStoreAdmin()
    runner = FakeMigrationRunner(fail=True)
    directory = TenantDirectory(registry)
    provisioner = make_provisioner(registry, sqlite_base_url, store_admin, runner, directory)

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.create_tenant("Acme Honey", "acme")
    tenant_id = exc_info.value.tenant_id

    with pytest.raises(TenantNotFound):
        await directory.resolve_config(tenant_id)

    runner.fail = False
    config = await provisioner.resume(tenant_id)

    assert config.status == ProvisioningState.READY
    assert len(runner.calls) == 2
    assert (await directory.resolve_config(tenant_id)).is_ready
    assert (await directory.resolve_config("acme")).id == tenant_id


async def test_resume_after_restart_rebuilds_job_from_registry(registry, sqlite_base_url) -> None:
    first = make_provisioner(registry, sqlite_base_url, runner=FakeMigrationRunner(fail=True))
    with pytest.raises(ProvisioningFailure) as exc_info:
        await first.create_tenant("Acme Honey", "acme")
    tenant_id = exc_info.value.tenant_id

    # nuovo processo: nessun job in memoria, stesso registry
    runner = FakeMigrationRunner()
    directory = TenantDirectory(registry)
    restarted = make_provisioner(registry, sqlite_base_url, runner=runner, directory=directory)
    assert restarted.get_job(tenant_id) is None

    config = await restarted.resume(tenant_id)

    assert config.status == ProvisioningState.READY
    assert runner.calls == [f"{sqlite_base_url}/tenant_{tenant_id}"]
    assert restarted.get_job(tenant_id).state == ProvisioningState.READY
    assert (await directory.resolve_config("acme")).id == tenant_id


async def test_teardown_after_restart_still_refused_for_registered_tenant(registry, sqlite_base_url) -> None:
    first = make_provisioner(registry, sqlite_base_url, runner=FakeMigrationRunner(fail=True))
    with pytest.raises(ProvisioningFailure) as exc_info:
        await first.create_tenant("Acme Honey", "acme")

    store_admin = FakeStoreAdmin()
    restarted = make_provisioner(registry, sqlite_base_url, store_admin)
    with pytest.raises(ProvisioningFailure) as teardown_info:
        await restarted.teardown(exc_info.value.tenant_id)

    assert "already registered" in str(teardown_info.value)
    assert store_admin.dropped == []


async def test_resume_ready_tenant_is_noop(registry, sqlite_base_url) -> None:
    runner = FakeMigrationRunner()
    provisioner = make_provisioner(registry, sqlite_base_url, runner=runner)
    config = await provisioner.create_tenant("Acme Honey", "acme")

    again = await provisioner.resume(config.id)

    assert again.status == ProvisioningState.READY
    assert len(runner.calls) == 1


async def test_duplicate_subdomain_rejected_before_any_step(registry, sqlite_base_url) -> None:
    store_admin = FakeStoreAdmin()
    provisioner = make_provisioner(registry, sqlite_base_url, store_admin)
    await provisioner.create_tenant("Acme Honey", "acme")

    with pytest.raises(TenantAlreadyExists):
        await provisioner.create_tenant("Other Honey", "acme")
    assert len(store_admin.databases) == 1
    assert len(provisioner.jobs) == 1


async def test_store_creation_failure(registry, sqlite_base_url) -> None:
    provisioner = make_provisioner(registry, sqlite_base_url, FakeStoreAdmin(fail_create=True))

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.create_tenant("Acme Honey", "acme")

    assert exc_info.value.step == "create_store"
    assert await registry.get(exc_info.value.tenant_id) is None


async def test_teardown_store_stuck_before_registration(registry, sqlite_base_url) -> None:
    store_admin = FakeStoreAdmin()
    provisioner = make_provisioner(FailingUpsertRegistry(registry), sqlite_base_url, store_admin)

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.create_tenant("Acme Honey", "acme")
    tenant_id = exc_info.value.tenant_id
    assert exc_info.value.step == "register"
    assert provisioner.get_job(tenant_id).last_completed == ProvisioningState.STORE_CREATED

    await provisioner.teardown(tenant_id)

    assert store_admin.dropped == [f"tenant_{tenant_id}"]
    assert provisioner.get_job(tenant_id).state == ProvisioningState.TORN_DOWN
    with pytest.raises(ProvisioningFailure):
        await provisioner.resume(tenant_id)


async def test_teardown_refused_after_registration(registry, sqlite_base_url) -> None:
    store_admin = FakeStoreAdmin()
    provisioner = make_provisioner(
        registry, sqlite_base_url, store_admin, FakeMigrationRunner(fail=True)
    )
    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.create_tenant("Acme Honey", "acme")

    with pytest.raises(ProvisioningFailure) as teardown_info:
        await provisioner.teardown(exc_info.value.tenant_id)
    assert teardown_info.value.step == "teardown"
    assert store_admin.dropped == []


async def test_unknown_job_operations_fail(registry, sqlite_base_url) -> None:
    provisioner = make_provisioner(registry, sqlite_base_url)
    with pytest.raises(ProvisioningFailure):
        await provisioner.resume("nope")
    with pytest.raises(ProvisioningFailure):
        await provisioner.teardown("nope")


async def test_list_jobs_by_state(registry, sqlite_base_url) -> None:
    runner = FakeMigrationRunner()
    provisioner = make_provisioner(registry, sqlite_base_url, runner=runner)
    await provisioner.create_tenant("Acme Honey", "acme")
    runner.fail = True
    with pytest.raises(ProvisioningFailure):
        await provisioner.create_tenant("Beta Honey", "beta")

    assert len(provisioner.list_jobs()) == 2
    failed = provisioner.list_jobs(ProvisioningState.FAILED)
    assert [j.subdomain for j in failed] == ["beta"]


def _python_command(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


async def test_migration_runner_passes_database_url() -> None:
    runner = MigrationRunner(_python_command(
        "import os, sys; sys.exit(0 if os.environ['DATABASE_URL'] == 'sqlite:///x' else 1)"
    ))
    await runner.run("sqlite:///x")


async def test_migration_runner_reports_non_zero_exit() -> None:
    runner = MigrationRunner(_python_command("import sys; sys.stderr.write('boom'); sys.exit(3)"))
    with pytest.raises(RuntimeError, match="exited with 3: boom"):
        await runner.run("sqlite:///x")


async def test_migration_runner_times_out() -> None:
    runner = MigrationRunner(_python_command("import time; time.sleep(5)"), timeout_seconds=0.2)
    with pytest.raises(RuntimeError, match="timed out"):
        await runner.run("sqlite:///x")
