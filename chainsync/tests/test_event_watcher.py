"""
Tests for EventWatcher and its discovery strategies.

Polling invariants:
- first tick without a persisted watermark scans the last backfill window
- the watermark only moves forward, and not at all when a fetch fails
- logs of all kinds are dispatched in (block, log index) order
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainsync.config.chains import SUPPORTED_CHAINS, ChainCapability, ChainConfig
from chainsync.errors import ConfigurationError
from chainsync.services.discoverers import PollingDiscoverer
from chainsync.services.event_watcher import EventKind, EventWatcher, WatcherGroup
from chainsync.tests.fakes import FakeChainGateway, make_log, make_settings


def polling(gateway, dispatch, storage=None, on_error=None, event_names=("A", "B"), **kwargs):
    return PollingDiscoverer(
        watcher_id="test_watcher",
        address="0xcontract",
        abi=[],
        event_names=list(event_names),
        gateway=gateway,
        dispatch=dispatch,
        on_error=on_error,
        chain_id=747,
        storage=storage,
        **kwargs
    )


class Recorder:
    def __init__(self):
        self.seen = []

    async def __call__(self, log):
        self.seen.append(log)


# =============================================================================
# Polling
# =============================================================================

@pytest.mark.asyncio
async def test_first_tick_backfills_last_window():
    gateway = FakeChainGateway(height=5000)
    discoverer = polling(gateway, Recorder(), event_names=["A"], backfill_blocks=1000)

    await discoverer.tick()

    assert gateway.get_logs_calls == [("A", 4001, 5000)]
    assert discoverer.last_processed_block == 5000


@pytest.mark.asyncio
async def test_first_tick_on_young_chain_starts_at_genesis():
    gateway = FakeChainGateway(height=500)
    discoverer = polling(gateway, Recorder(), event_names=["A"], backfill_blocks=1000)

    await discoverer.tick()

    assert gateway.get_logs_calls == [("A", 0, 500)]


@pytest.mark.asyncio
async def test_logs_dispatched_in_block_then_index_order():
    gateway = FakeChainGateway(height=5000)
    gateway.logs = [
        make_log("B", 4500, 3),
        make_log("A", 4600, 0),
        make_log("A", 4500, 1),
        make_log("B", 4200, 9),
    ]
    recorder = Recorder()
    discoverer = polling(gateway, recorder)

    dispatched = await discoverer.tick()

    assert dispatched == 4
    assert [(log.block_number, log.log_index) for log in recorder.seen] == [
        (4200, 9), (4500, 1), (4500, 3), (4600, 0)
    ]


@pytest.mark.asyncio
async def test_watermark_is_monotonic_and_skips_stale_heights():
    gateway = FakeChainGateway(height=5000)
    discoverer = polling(gateway, Recorder(), event_names=["A"])

    await discoverer.tick()
    calls_after_first = len(gateway.get_logs_calls)

    # Same height, then a lagging node: nothing fetched, watermark unchanged
    await discoverer.tick()
    gateway.height = 4990
    await discoverer.tick()
    assert len(gateway.get_logs_calls) == calls_after_first
    assert discoverer.last_processed_block == 5000

    gateway.height = 5010
    await discoverer.tick()
    assert gateway.get_logs_calls[-1] == ("A", 5001, 5010)
    assert discoverer.last_processed_block == 5010


@pytest.mark.asyncio
async def test_failed_fetch_keeps_watermark_and_reports(storage):
    gateway = FakeChainGateway(height=5000)
    on_error = AsyncMock()
    discoverer = polling(gateway, Recorder(), storage=storage, on_error=on_error, event_names=["A"])
    await discoverer.tick()

    gateway.height = 5100
    gateway.get_logs_error = ConnectionError("connection reset")
    await discoverer.tick()

    assert discoverer.last_processed_block == 5000
    assert await storage.watermarks.get("test_watcher", 747) == 5000
    on_error.assert_awaited_once_with(gateway.get_logs_error)

    # Next successful tick retries the whole range
    gateway.get_logs_error = None
    await discoverer.tick()
    assert gateway.get_logs_calls[-1] == ("A", 5001, 5100)


@pytest.mark.asyncio
async def test_error_callback_task_is_not_awaited():
    gateway = FakeChainGateway(height=5000)
    gateway.get_logs_error = ConnectionError("connection refused")
    never = asyncio.Event()
    scheduled = []

    def on_error(error):
        task = asyncio.create_task(never.wait())
        scheduled.append(task)
        return task

    discoverer = polling(gateway, Recorder(), on_error=on_error, event_names=["A"])
    try:
        assert await asyncio.wait_for(discoverer.tick(), timeout=1) == 0
        [task] = scheduled
        assert not task.done()
    finally:
        never.set()


@pytest.mark.asyncio
async def test_resumes_from_persisted_watermark(storage):
    await storage.watermarks.save("test_watcher", 747, 4800)
    gateway = FakeChainGateway(height=5000)
    discoverer = polling(gateway, Recorder(), storage=storage, event_names=["A"])

    discoverer.last_processed_block = await discoverer._load_watermark()
    await discoverer.tick()

    assert gateway.get_logs_calls == [("A", 4801, 5000)]
    assert await storage.watermarks.get("test_watcher", 747) == 5000


@pytest.mark.asyncio
async def test_watermark_persist_failure_does_not_block_progress(storage):
    storage.watermarks.save_error = RuntimeError("disk full")
    gateway = FakeChainGateway(height=5000)
    discoverer = polling(gateway, Recorder(), storage=storage, event_names=["A"])

    await discoverer.tick()

    assert discoverer.last_processed_block == 5000


@pytest.mark.asyncio
async def test_large_ranges_are_chunked():
    gateway = FakeChainGateway(height=5000)
    discoverer = polling(gateway, Recorder(), event_names=["A"], backfill_blocks=1000, max_block_range=400)

    await discoverer.tick()

    assert gateway.get_logs_calls == [("A", 4001, 4400), ("A", 4401, 4800), ("A", 4801, 5000)]


# =============================================================================
# EventWatcher
# =============================================================================

def make_watcher(gateway, settings, kinds, storage=None, on_error=None, **kwargs):
    return EventWatcher(
        "domain_registration", [], kinds, gateway, settings,
        storage=storage, on_error=on_error, **kwargs
    )


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_dispatch():
    """Handler isolation: the first log's handler fails, the second is still handled."""
    gateway = FakeChainGateway(height=5000)
    gateway.logs = [make_log("A", 4900, 0), make_log("A", 4901, 0)]

    calls = []

    async def flaky(log):
        calls.append(log.block_number)
        if log.block_number == 4900:
            raise KeyError("domainName")

    watcher = make_watcher(gateway, make_settings(), [EventKind("A", flaky)])
    discoverer = polling(gateway, watcher._dispatch, event_names=["A"])

    await discoverer.tick()

    assert calls == [4900, 4901]
    assert watcher.handler_failures == 1
    assert watcher.events_handled == 1


@pytest.mark.asyncio
async def test_polling_watcher_lifecycle(storage):
    gateway = FakeChainGateway(height=5000)
    recorder = Recorder()
    watcher = make_watcher(gateway, make_settings(), [EventKind("A", recorder)], storage=storage)

    await watcher.start()
    assert watcher.is_running
    assert watcher.mode == "polling"
    assert watcher.address == SUPPORTED_CHAINS[747].addresses["domain_registration"]

    # Let the immediate first tick run
    for _ in range(5):
        await asyncio.sleep(0)

    await watcher.stop()
    assert not watcher.is_running
    assert watcher.last_processed_block == 5000
    assert watcher.status()['running'] is False

    # Stopping again is harmless
    await watcher.stop()


@pytest.mark.asyncio
async def test_start_twice_keeps_one_discoverer(storage):
    gateway = FakeChainGateway(height=10)
    watcher = make_watcher(gateway, make_settings(), [EventKind("A", Recorder())], storage=storage)

    await watcher.start()
    first = watcher._discoverer
    await watcher.start()

    assert watcher._discoverer is first
    await watcher.stop()


@pytest.mark.asyncio
async def test_subscription_mode_dispatches_batches_in_order():
    gateway = FakeChainGateway(supports_subscriptions=True)
    recorder = Recorder()
    on_error = AsyncMock()
    watcher = make_watcher(
        gateway, make_settings(chain_id=11155111),
        [EventKind("A", recorder), EventKind("B", recorder)],
        on_error=on_error,
    )

    await watcher.start()
    assert watcher.mode == "subscription"
    assert set(gateway.subscriptions) == {"A", "B"}

    batch = [make_log("A", 10, 2), make_log("A", 9, 0), make_log("A", 11, 0)]
    await gateway.emit("A", batch)
    assert [log.block_number for log in recorder.seen] == [10, 9, 11]
    assert watcher.last_processed_block == 11

    error = ConnectionError("connection closed")
    await gateway.fail_subscription("B", error)
    on_error.assert_awaited_once_with(error)

    await watcher.stop()
    assert gateway.subscriptions == {}


@pytest.mark.asyncio
async def test_start_rejects_disabled_watching():
    watcher = make_watcher(FakeChainGateway(), make_settings(event_listeners_enabled=False), [])
    with pytest.raises(ConfigurationError, match="disabled"):
        await watcher.start()
    assert not watcher.is_running


@pytest.mark.asyncio
async def test_start_rejects_unknown_chain():
    watcher = make_watcher(FakeChainGateway(), make_settings(chain_id=1), [])
    with pytest.raises(ConfigurationError):
        await watcher.start()


@pytest.mark.asyncio
async def test_start_rejects_missing_address_and_dark_chains(monkeypatch):
    monkeypatch.setitem(SUPPORTED_CHAINS, 999, ChainConfig(
        chain_id=999, name="No contracts", capabilities=frozenset({ChainCapability.LOG_QUERY})
    ))
    monkeypatch.setitem(SUPPORTED_CHAINS, 998, ChainConfig(
        chain_id=998, name="No capabilities", addresses={"domain_registration": "0x1"}
    ))

    with pytest.raises(ConfigurationError, match="not configured"):
        await make_watcher(FakeChainGateway(), make_settings(chain_id=999), []).start()
    with pytest.raises(ConfigurationError, match="cannot be watched"):
        await make_watcher(FakeChainGateway(), make_settings(chain_id=998), []).start()


@pytest.mark.asyncio
async def test_restart_stops_then_starts():
    gateway = FakeChainGateway(height=10)
    watcher = make_watcher(gateway, make_settings(), [EventKind("A", Recorder())])
    watcher.stop = AsyncMock()
    watcher.start = AsyncMock()

    await watcher.restart()

    watcher.stop.assert_awaited_once()
    watcher.start.assert_awaited_once()


# =============================================================================
# WatcherGroup
# =============================================================================

@pytest.mark.asyncio
async def test_group_skips_misconfigured_watchers():
    good = MagicMock(contract_id="good")
    good.start = AsyncMock()
    good.is_running = True
    bad = MagicMock(contract_id="bad")
    bad.start = AsyncMock(side_effect=ConfigurationError("no address"))
    bad.is_running = False

    group = WatcherGroup([bad, good])
    running = await group.start_all()

    assert running == 1
    good.start.assert_awaited_once()
    assert group.any_running
    assert group.get("bad") is bad
    assert group.get("missing") is None
