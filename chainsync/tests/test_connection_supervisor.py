"""
Tests for the connection supervisor, wired through the composition root
with in-memory storage and a fake gateway.
"""

import asyncio

import pytest

from chainsync.errors import StorageUnavailableError
from chainsync.pipeline import build_pipeline
from chainsync.services import discoverers
from chainsync.services.connection_supervisor import SupervisorState
from chainsync.tests.fakes import FakeChainGateway, InMemoryStorage, make_settings


def make_pipeline(storage=None, **settings_overrides):
    storage = storage or InMemoryStorage()
    return build_pipeline(make_settings(**settings_overrides), FakeChainGateway(height=100), storage)


# =============================================================================
# Startup
# =============================================================================

@pytest.mark.asyncio
async def test_initialize_brings_everything_up():
    pipeline = make_pipeline()
    supervisor = pipeline.supervisor
    try:
        await supervisor.initialize()

        status = supervisor.get_status()
        assert status['initialized'] is True
        assert status['state'] == SupervisorState.RUNNING.value
        assert status['storage_connected'] is True
        assert status['event_watchers_running'] is True
        assert status['reconciliation_running'] is True
        assert status['watchers'] == {
            'domain_registration': True,
            'nft_minter': True,
            'token_minter': True,
        }

        # Second initialize is a warning, not a second connect
        await supervisor.initialize()
        assert pipeline.storage.connect_calls == 1
    finally:
        await pipeline.stop()

    assert supervisor.state is SupervisorState.UNINITIALIZED
    assert not pipeline.watchers.any_running
    assert not pipeline.reconciliation.is_running
    assert pipeline.gateway.closed


@pytest.mark.asyncio
async def test_connect_retries_until_storage_comes_up():
    pipeline = make_pipeline(InMemoryStorage(connect_failures=2))
    try:
        await pipeline.supervisor.initialize()
        assert pipeline.storage.connect_calls == 3
        assert pipeline.supervisor.state is SupervisorState.RUNNING
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_retry_exhaustion_is_fatal_then_recoverable():
    storage = InMemoryStorage(connect_failures=100)
    pipeline = make_pipeline(storage, retry_max_attempts=2)
    supervisor = pipeline.supervisor
    try:
        with pytest.raises(StorageUnavailableError):
            await supervisor.initialize()

        assert storage.connect_calls == 3
        assert supervisor.state is SupervisorState.FAILED
        assert supervisor.initialized is False

        # A later initialize gets a fresh attempt
        storage.connect_failures = 0
        await supervisor.initialize()
        assert supervisor.state is SupervisorState.RUNNING
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_listeners_disabled_still_reconciles():
    pipeline = make_pipeline(event_listeners_enabled=False)
    try:
        await pipeline.supervisor.initialize()
        assert not pipeline.watchers.any_running
        assert pipeline.reconciliation.is_running
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_session_mode_starts_a_timed_session():
    pipeline = make_pipeline(listening_mode="session")
    try:
        await pipeline.supervisor.initialize()
        assert pipeline.session.is_active
        assert pipeline.watchers.any_running
    finally:
        await pipeline.stop()
    assert not pipeline.session.is_active


@pytest.mark.asyncio
async def test_on_demand_mode_waits_for_admin():
    pipeline = make_pipeline(listening_mode="on_demand")
    try:
        await pipeline.supervisor.initialize()
        assert not pipeline.watchers.any_running

        status = await pipeline.admin.start_timed_session("operator")
        assert status['is_active'] is True
        assert pipeline.admin.get_watcher_status('nft_minter') is True
    finally:
        await pipeline.stop()


# =============================================================================
# Error handling / reconnect
# =============================================================================

@pytest.mark.asyncio
async def test_non_network_error_is_only_logged():
    pipeline = make_pipeline()
    try:
        await pipeline.supervisor.initialize()
        handled = await pipeline.supervisor.handle_connection_error(ValueError("execution reverted"))
        assert handled is False
        assert pipeline.supervisor.reconnects == 0
        assert pipeline.storage.connect_calls == 1
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_network_error_triggers_reconnect():
    pipeline = make_pipeline()
    supervisor = pipeline.supervisor
    try:
        await supervisor.initialize()
        handled = await supervisor.handle_connection_error(ConnectionError("connection reset"), "test")

        assert handled is True
        assert supervisor.reconnects == 1
        assert supervisor.state is SupervisorState.RUNNING
        assert pipeline.storage.connect_calls == 2
        assert pipeline.watchers.any_running
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_concurrent_network_errors_coalesce():
    pipeline = make_pipeline()
    supervisor = pipeline.supervisor
    try:
        await supervisor.initialize()
        results = await asyncio.gather(
            supervisor.handle_connection_error(TimeoutError("timed out")),
            supervisor.handle_connection_error(ConnectionError("econnrefused")),
        )
        assert results == [True, True]
        assert supervisor.reconnects == 1
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_report_error_is_non_blocking():
    pipeline = make_pipeline()
    supervisor = pipeline.supervisor
    try:
        await supervisor.initialize()
        task = supervisor.report_error(ConnectionError("network error"), "watcher")
        assert isinstance(task, asyncio.Task)
        assert await task is True
        assert supervisor.reconnects == 1
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_polling_network_error_reconnects_without_stalling(monkeypatch, caplog):
    monkeypatch.setattr(discoverers, "STOP_TIMEOUT_SECONDS", 2)
    pipeline = make_pipeline(polling_interval_ms=50)
    supervisor = pipeline.supervisor
    try:
        await supervisor.initialize()
        loop = asyncio.get_running_loop()
        started = loop.time()

        with caplog.at_level("WARNING"):
            pipeline.gateway.height = 200
            pipeline.gateway.get_logs_error = ConnectionError("connection refused")
            for _ in range(200):
                if supervisor.reconnects:
                    break
                await asyncio.sleep(0.01)
            assert supervisor.reconnects >= 1

            # Healthy again: the restarted watchers must not trigger another reconnect
            pipeline.gateway.get_logs_error = None
            await asyncio.wait_for(supervisor._reconnect_task, timeout=1.5)

        assert loop.time() - started < 1.5
        assert "did not finish" not in caplog.text
        assert supervisor.state is SupervisorState.RUNNING
        assert pipeline.watchers.any_running
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_retry():
    storage = InMemoryStorage(connect_failures=1)
    pipeline = make_pipeline(storage, retry_base_delay_ms=10_000, retry_max_delay_ms=60_000)
    supervisor = pipeline.supervisor
    try:
        attempt = asyncio.create_task(supervisor.connect_with_retry(0))
        for _ in range(100):
            if supervisor._retry_task is not None:
                break
            await asyncio.sleep(0)
        assert supervisor._retry_task is not None

        await supervisor.disconnect()

        assert await asyncio.wait_for(attempt, timeout=1) is False
        assert storage.connect_calls == 1
    finally:
        await pipeline.stop()


def test_update_retry_config():
    pipeline = make_pipeline()
    config = pipeline.supervisor.update_retry_config(max_attempts=3, base_delay_ms=250)

    assert config.max_attempts == 3
    assert config.base_delay_ms == 250
    assert config.max_delay_ms == 5

    with pytest.raises(ValueError):
        pipeline.supervisor.update_retry_config(jitter=True)
