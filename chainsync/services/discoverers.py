"""
Log discovery strategies for EventWatcher.

A chain advertises capability tags; select_discoverer() maps them to one of:
- SubscriptionDiscoverer: node pushes logs, one subscription per event kind
- PollingDiscoverer: periodic eth_getLogs over [last_processed_block + 1, height]

Both hand every discovered log to the watcher's dispatch coroutine, which
never raises. Transport failures go to on_error (the supervisor), they are
never retried here.
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Type

from chainsync.config.chains import ChainCapability, ChainConfig
from chainsync.errors import ConfigurationError
from chainsync.models.log_entry import LogEntry
from .chain_gateway import ChainGateway, OnError, Unsubscribe

logger = logging.getLogger(__name__)

Dispatch = Callable[[LogEntry], Awaitable[None]]

# Upper bound on how long stop() waits for an in-flight polling tick
STOP_TIMEOUT_SECONDS = 30


class Discoverer(ABC):
    """Base class: feeds logs of a fixed set of events on one contract to dispatch"""

    mode = "none"

    def __init__(
        self,
        watcher_id: str,
        address: str,
        abi: list,
        event_names: Sequence[str],
        gateway: ChainGateway,
        dispatch: Dispatch,
        on_error: Optional[OnError] = None
    ):
        self.watcher_id = watcher_id
        self.address = address
        self.abi = abi
        self.event_names = list(event_names)
        self.gateway = gateway
        self.dispatch = dispatch
        self.on_error = on_error
        self.last_processed_block: Optional[int] = None

    @property
    @abstractmethod
    def is_running(self) -> bool:
        ...

    @abstractmethod
    async def start(self):
        ...

    @abstractmethod
    async def stop(self):
        ...

    async def _report(self, error: BaseException):
        if self.on_error is None:
            return
        try:
            result = self.on_error(error)
            # Only coroutines are awaited; a scheduled task must not block the watcher
            if inspect.isawaitable(result) and not isinstance(result, asyncio.Future):
                await result
        except Exception as e:
            logger.error(f"[{self.watcher_id}] Error callback failed: {e}", exc_info=True)


class SubscriptionDiscoverer(Discoverer):
    """Push mode: one gateway subscription per event kind"""

    mode = "subscription"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._unsubscribes: List[Unsubscribe] = []

    @property
    def is_running(self) -> bool:
        return bool(self._unsubscribes)

    async def start(self):
        try:
            for event_name in self.event_names:
                unsubscribe = await self.gateway.watch_event(
                    self.address, self.abi, event_name, self._on_logs, self._report
                )
                self._unsubscribes.append(unsubscribe)
        except Exception:
            # Don't leave half a watcher subscribed
            await self.stop()
            raise

        logger.info(
            f"[{self.watcher_id}] Subscribed to {len(self.event_names)} events on {self.address}"
        )

    async def _on_logs(self, logs: List[LogEntry]):
        # Delivery order within a batch is preserved
        for log in logs:
            await self.dispatch(log)
            if self.last_processed_block is None or log.block_number > self.last_processed_block:
                self.last_processed_block = log.block_number

    async def stop(self):
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning(f"[{self.watcher_id}] Unsubscribe failed: {e}")


class PollingDiscoverer(Discoverer):
    """
    Pull mode: block-range polling with a persisted high-water mark.

    Each tick covers [last_processed_block + 1, current_height]. Logs of all
    event kinds are merged and dispatched in (block_number, log_index) order,
    then the watermark moves to current_height and is persisted. A failed
    fetch leaves the watermark untouched so the next tick retries the range.
    """

    mode = "polling"

    def __init__(
        self,
        *args,
        chain_id: int,
        storage=None,
        polling_interval_ms: int = 60000,
        backfill_blocks: int = 1000,
        max_block_range: int = 2000,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.chain_id = chain_id
        self.storage = storage
        self.polling_interval = polling_interval_ms / 1000
        self.backfill_blocks = backfill_blocks
        self.max_block_range = max(1, max_block_range)
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        self._stop_event = asyncio.Event()
        if self.last_processed_block is None:
            self.last_processed_block = await self._load_watermark()

        self._task = asyncio.create_task(self._run(), name=f"poll:{self.watcher_id}")
        logger.info(
            f"[{self.watcher_id}] Polling {self.address} every {self.polling_interval:.0f}s "
            f"(resume after block {self.last_processed_block})"
        )

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return

        self._stop_event.set()
        # Let an in-flight tick finish, but don't hang on a stuck RPC call
        done, _ = await asyncio.wait({task}, timeout=STOP_TIMEOUT_SECONDS)
        if not done:
            logger.warning(f"[{self.watcher_id}] Polling tick did not finish, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.watcher_id}] Polling tick error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.polling_interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> int:
        """
        Run one polling cycle.

        Returns:
            Number of logs dispatched
        """
        try:
            current_height = await self.gateway.get_block_number()
        except Exception as e:
            logger.error(f"[{self.watcher_id}] Failed to read block height: {e}")
            await self._report(e)
            return 0

        if self.last_processed_block is None:
            # No persisted watermark: backfill a bounded window, else from genesis
            if current_height >= self.backfill_blocks:
                self.last_processed_block = current_height - self.backfill_blocks
            else:
                self.last_processed_block = -1

        if current_height <= self.last_processed_block:
            logger.debug(f"[{self.watcher_id}] No new blocks (height {current_height})")
            return 0

        from_block = self.last_processed_block + 1
        try:
            logs = await self._fetch_logs(from_block, current_height)
        except Exception as e:
            logger.error(
                f"[{self.watcher_id}] Failed to fetch logs for blocks {from_block}-{current_height}: {e}"
            )
            await self._report(e)
            return 0

        logs.sort(key=lambda log: log.sort_key)
        for log in logs:
            await self.dispatch(log)

        self.last_processed_block = current_height
        await self._save_watermark(current_height)

        if logs:
            logger.info(
                f"[{self.watcher_id}] Dispatched {len(logs)} logs from blocks {from_block}-{current_height}"
            )
        return len(logs)

    async def _fetch_logs(self, from_block: int, to_block: int) -> List[LogEntry]:
        logs: List[LogEntry] = []
        for chunk_start in range(from_block, to_block + 1, self.max_block_range):
            chunk_end = min(chunk_start + self.max_block_range - 1, to_block)
            for event_name in self.event_names:
                logs.extend(await self.gateway.get_logs(
                    self.address, self.abi, event_name, chunk_start, chunk_end
                ))
        return logs

    async def _load_watermark(self) -> Optional[int]:
        if self.storage is None:
            return None
        try:
            return await self.storage.watermarks.get(self.watcher_id, self.chain_id)
        except Exception as e:
            logger.warning(f"[{self.watcher_id}] Could not load watermark, starting fresh: {e}")
            return None

    async def _save_watermark(self, block_number: int):
        if self.storage is None:
            return
        try:
            await self.storage.watermarks.save(self.watcher_id, self.chain_id, block_number)
        except Exception as e:
            # In-memory watermark already advanced; next successful save catches up
            logger.warning(f"[{self.watcher_id}] Failed to persist watermark {block_number}: {e}")


def select_discoverer(chain: ChainConfig, gateway: ChainGateway) -> Type[Discoverer]:
    """
    Pick the discovery strategy for a chain.

    Raises:
        ConfigurationError: the chain has no capability the gateway can serve
    """
    if chain.supports(ChainCapability.SUBSCRIPTION) and gateway.supports_subscriptions:
        return SubscriptionDiscoverer
    if chain.supports(ChainCapability.LOG_QUERY):
        return PollingDiscoverer
    raise ConfigurationError(
        f"Chain {chain.chain_id} ({chain.name}) has no usable event discovery capability"
    )
