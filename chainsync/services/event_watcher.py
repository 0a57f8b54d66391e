"""
EventWatcher - one generic watcher, parametrized per contract.

A watcher owns:
- contract id + ABI + ordered event kinds (name -> handler)
- a Discoverer chosen from the chain's capability tags

Handlers are always wrapped: a failing handler is logged as a HandlerError
and discovery continues with the next log.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, List, Optional

from chainsync.config.chains import get_chain_config, resolve_contract_address
from chainsync.config.settings import Settings
from chainsync.errors import ConfigurationError, HandlerError
from chainsync.models.log_entry import LogEntry
from .chain_gateway import ChainGateway, OnError
from .discoverers import Discoverer, PollingDiscoverer, select_discoverer

logger = logging.getLogger(__name__)

Handler = Callable[[LogEntry], Awaitable[None]]


@dataclass
class EventKind:
    """One contract event and the coroutine that handles its logs"""
    name: str
    handler: Handler


class EventWatcher:
    """
    Watches one contract on the configured chain.

    start() raises ConfigurationError when watching is disabled, the chain
    can't be watched, or the contract has no address on the chain.
    """

    def __init__(
        self,
        contract_id: str,
        abi: list,
        kinds: List[EventKind],
        gateway: ChainGateway,
        settings: Settings,
        storage=None,
        address_override: Optional[str] = None,
        on_error: Optional[OnError] = None
    ):
        self.contract_id = contract_id
        self.abi = abi
        self.kinds = list(kinds)
        self._handlers: Dict[str, Handler] = {kind.name: kind.handler for kind in self.kinds}
        self.gateway = gateway
        self.settings = settings
        self.storage = storage
        self.address_override = address_override
        self.on_error = on_error

        self.address: Optional[str] = None
        self._discoverer: Optional[Discoverer] = None
        self._last_processed_block: Optional[int] = None
        self.events_handled = 0
        self.handler_failures = 0

    @property
    def is_running(self) -> bool:
        return self._discoverer is not None

    @property
    def mode(self) -> Optional[str]:
        return self._discoverer.mode if self._discoverer else None

    @property
    def last_processed_block(self) -> Optional[int]:
        if self._discoverer is not None:
            return self._discoverer.last_processed_block
        return self._last_processed_block

    async def start(self):
        if self._discoverer is not None:
            logger.warning(f"[{self.contract_id}] Watcher already running")
            return

        if not self.settings.event_listeners_enabled:
            raise ConfigurationError(f"Event watching is disabled ({self.contract_id})")

        chain = get_chain_config(self.settings.chain_id)
        if not chain.is_watchable:
            raise ConfigurationError(f"Chain {chain.chain_id} ({chain.name}) cannot be watched")

        self.address = resolve_contract_address(chain, self.contract_id, self.address_override)
        discoverer_cls = select_discoverer(chain, self.gateway)

        common = dict(
            watcher_id=self.contract_id,
            address=self.address,
            abi=self.abi,
            event_names=[kind.name for kind in self.kinds],
            gateway=self.gateway,
            dispatch=self._dispatch,
            on_error=self.on_error,
        )
        if discoverer_cls is PollingDiscoverer:
            discoverer = PollingDiscoverer(
                chain_id=chain.chain_id,
                storage=self.storage,
                polling_interval_ms=self.settings.polling_interval_ms,
                backfill_blocks=self.settings.backfill_blocks,
                max_block_range=self.settings.max_block_range,
                **common
            )
            # Resume from the in-memory watermark of a previous run if we have one
            discoverer.last_processed_block = self._last_processed_block
        else:
            discoverer = discoverer_cls(**common)

        await discoverer.start()
        self._discoverer = discoverer
        logger.info(
            f"✅ [{self.contract_id}] Watching {self.address} on {chain.name} ({discoverer.mode})"
        )

    async def stop(self):
        """Stop discovery. Safe to call at any time, including when not running."""
        discoverer, self._discoverer = self._discoverer, None
        if discoverer is None:
            logger.info(f"[{self.contract_id}] Watcher not running")
            return

        await discoverer.stop()
        self._last_processed_block = discoverer.last_processed_block
        logger.info(f"[{self.contract_id}] Watcher stopped")

    async def restart(self):
        await self.stop()
        await asyncio.sleep(self.settings.watcher_restart_delay_ms / 1000)
        await self.start()

    async def _dispatch(self, log: LogEntry):
        handler = self._handlers.get(log.event_name)
        if handler is None:
            logger.debug(f"[{self.contract_id}] No handler for {log.event_name}")
            return

        try:
            await handler(log)
            self.events_handled += 1
        except Exception as e:
            self.handler_failures += 1
            error = HandlerError(log.event_name, log.transaction_hash, e)
            logger.error(f"[{self.contract_id}] {error}", exc_info=True)

    def status(self) -> dict:
        return {
            'contract_id': self.contract_id,
            'running': self.is_running,
            'mode': self.mode,
            'address': self.address,
            'last_processed_block': self.last_processed_block,
            'events_handled': self.events_handled,
            'handler_failures': self.handler_failures,
        }


class WatcherGroup:
    """The set of watchers the supervisor and session manager start and stop together"""

    def __init__(self, watchers: List[EventWatcher]):
        self._watchers: Dict[str, EventWatcher] = {w.contract_id: w for w in watchers}

    def __iter__(self) -> Iterator[EventWatcher]:
        return iter(self._watchers.values())

    def __len__(self) -> int:
        return len(self._watchers)

    def get(self, contract_id: str) -> Optional[EventWatcher]:
        return self._watchers.get(contract_id)

    @property
    def any_running(self) -> bool:
        return any(w.is_running for w in self)

    def set_error_callback(self, on_error: Optional[OnError]):
        """Route transport errors of every watcher (takes effect on next start)"""
        for watcher in self:
            watcher.on_error = on_error

    async def start_all(self) -> int:
        """
        Start every watcher. A misconfigured watcher is logged and skipped.

        Returns:
            Number of watchers running afterwards
        """
        for watcher in self:
            try:
                await watcher.start()
            except ConfigurationError as e:
                logger.error(f"❌ [{watcher.contract_id}] Not started: {e}")

        running = sum(1 for w in self if w.is_running)
        logger.info(f"Event watchers running: {running}/{len(self)}")
        return running

    async def stop_all(self):
        for watcher in self:
            try:
                await watcher.stop()
            except Exception as e:
                logger.error(f"[{watcher.contract_id}] Error stopping watcher: {e}", exc_info=True)

    def status(self) -> Dict[str, dict]:
        return {contract_id: w.status() for contract_id, w in self._watchers.items()}
