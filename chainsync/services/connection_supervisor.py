"""
Connection Supervisor - brings the pipeline up and keeps it up.

State machine:
    UNINITIALIZED -> CONNECTING -> RUNNING <-> RECONNECTING -> RUNNING
    CONNECTING -> FAILED (retries exhausted)

Connect sequence: storage connect, schema init, watchers (per listening mode),
reconciliation timer. Failed attempts back off exponentially:
    delay(attempt) = min(base * multiplier ** attempt, max)

Network errors reported by watchers trigger a full reconnect; concurrent
reports are coalesced into one reconnect.
"""
import asyncio
import logging
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Optional, Set

from chainsync.config.settings import Settings
from chainsync.errors import StorageUnavailableError, is_network_error
from .event_watcher import WatcherGroup
from .listening_session import ListeningSessionManager
from .reconciliation import ReconciliationProcessor

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class RetryConfig:
    max_attempts: int = 10
    base_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> 'RetryConfig':
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )


def compute_backoff_delay(
    attempt: int,
    base_delay_ms: int = 1000,
    multiplier: float = 2.0,
    max_delay_ms: int = 60000
) -> int:
    """Delay before retry number `attempt` (0-based), in milliseconds"""
    return int(min(base_delay_ms * multiplier ** attempt, max_delay_ms))


class ConnectionSupervisor:
    """
    Owns pipeline lifecycle: storage, watchers, session and reconciliation timer.

    Constructed explicitly by the composition root; nothing here is global.
    """

    def __init__(
        self,
        storage,
        watchers: WatcherGroup,
        reconciliation: ReconciliationProcessor,
        settings: Settings,
        session: Optional[ListeningSessionManager] = None,
        retry_config: Optional[RetryConfig] = None
    ):
        self.storage = storage
        self.watchers = watchers
        self.reconciliation = reconciliation
        self.settings = settings
        self.session = session
        self.retry_config = retry_config or RetryConfig.from_settings(settings)

        self.state = SupervisorState.UNINITIALIZED
        self.initialized = False
        self.reconnects = 0

        # Bumped by disconnect(); a connect attempt from an older generation is superseded
        self._generation = 0
        self._retry_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._error_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self):
        if self.initialized:
            logger.warning("Connection supervisor already initialized")
            return

        self.state = SupervisorState.CONNECTING
        if await self.connect_with_retry(0):
            self.initialized = True

    async def connect_with_retry(self, attempt: int = 0) -> bool:
        """
        Connect, retrying with exponential backoff.

        Returns:
            True when connected, False when superseded by a disconnect

        Raises:
            StorageUnavailableError: all attempts failed
        """
        generation = self._generation

        while True:
            try:
                await self._connect_once()
                self.state = SupervisorState.RUNNING
                logger.info("✅ Pipeline connected")
                return True
            except Exception as e:
                if generation != self._generation:
                    logger.info(f"Connection attempt superseded: {e}")
                    return False

                await self._teardown()

                if attempt >= self.retry_config.max_attempts:
                    self.state = SupervisorState.FAILED
                    logger.error(f"❌ Giving up after {attempt + 1} connection attempts: {e}")
                    raise StorageUnavailableError(
                        f"Storage unavailable after {attempt + 1} attempts: {e}"
                    ) from e

                delay_ms = compute_backoff_delay(
                    attempt,
                    self.retry_config.base_delay_ms,
                    self.retry_config.backoff_multiplier,
                    self.retry_config.max_delay_ms,
                )
                logger.warning(
                    f"Connection attempt {attempt + 1} failed: {e}. Retrying in {delay_ms}ms"
                )

            retry_task = asyncio.create_task(asyncio.sleep(delay_ms / 1000))
            self._retry_task = retry_task
            await asyncio.wait({retry_task})
            if retry_task.cancelled() or generation != self._generation:
                logger.info("Pending connection retry cancelled")
                return False
            self._retry_task = None
            attempt += 1

    async def _connect_once(self):
        await self.storage.connect()
        await self.storage.initialize()

        if self.settings.event_listeners_enabled:
            await self._start_listening()
        else:
            logger.info("Event listeners disabled, skipping watchers")

        self.reconciliation.start()

    async def _start_listening(self):
        mode = self.settings.listening_mode
        if mode == "session" and self.session is not None:
            await self.session.start_timed_listening("startup")
        elif mode == "on_demand":
            logger.info("Listening mode on_demand: watchers start on admin request")
        else:
            await self.watchers.start_all()

    async def disconnect(self):
        """Tear everything down. Cancels a pending retry wait."""
        self._generation += 1

        retry_task, self._retry_task = self._retry_task, None
        if retry_task is not None and not retry_task.done():
            retry_task.cancel()

        await self._teardown()

    async def _teardown(self):
        if self.session is not None:
            await self.session.force_reset()
        if self.watchers.any_running:
            await self.watchers.stop_all()
        await self.reconciliation.stop()
        await self._close_storage()

    async def shutdown(self):
        reconnect_task = self._reconnect_task
        if reconnect_task is not None and reconnect_task is not asyncio.current_task():
            reconnect_task.cancel()
        for task in list(self._error_tasks):
            if task is not asyncio.current_task():
                task.cancel()

        await self.disconnect()
        self.initialized = False
        self.state = SupervisorState.UNINITIALIZED
        logger.info("Connection supervisor shut down")

    async def _close_storage(self):
        try:
            await self.storage.close()
        except Exception as e:
            logger.warning(f"Error closing storage: {e}")

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    async def handle_connection_error(self, error: BaseException, context: Optional[str] = None) -> bool:
        """
        Reconnect on network errors, log anything else.

        Returns:
            True if the error triggered (or joined) a reconnect
        """
        where = f" ({context})" if context else ""
        if not is_network_error(error):
            logger.error(f"Non-network error{where}: {error}")
            return False

        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.info(f"Reconnect already in progress{where}")
        else:
            logger.warning(f"🔌 Network error{where}: {error}. Reconnecting")
            self._reconnect_task = asyncio.create_task(self.reconnect(), name="reconnect")

        await asyncio.shield(self._reconnect_task)
        return True

    def report_error(self, error: BaseException, context: Optional[str] = None) -> asyncio.Task:
        """Non-blocking handle_connection_error, used as the watchers' error callback"""
        task = asyncio.create_task(self.handle_connection_error(error, context))
        self._error_tasks.add(task)
        task.add_done_callback(self._error_tasks.discard)
        return task

    async def reconnect(self):
        self.state = SupervisorState.RECONNECTING
        self.reconnects += 1
        await self.disconnect()
        try:
            await self.connect_with_retry(0)
        except Exception as e:
            logger.error(f"Reconnection failed: {e}", exc_info=True)

    # =========================================================================
    # STATUS / CONFIG
    # =========================================================================

    def get_status(self) -> dict:
        return {
            'initialized': self.initialized,
            'storage_connected': self.storage.is_connected,
            'event_watchers_running': self.watchers.any_running,
            'state': self.state.value,
            'watchers': {w.contract_id: w.is_running for w in self.watchers},
            'event_listeners_enabled': self.settings.event_listeners_enabled,
            'reconciliation_running': self.reconciliation.is_running,
            'session': self.session.get_status().to_dict() if self.session else None,
        }

    def update_retry_config(self, **changes) -> RetryConfig:
        known = {f.name for f in fields(RetryConfig)}
        for key, value in changes.items():
            if value is None:
                continue
            if key not in known:
                raise ValueError(f"Unknown retry setting: {key}")
            setattr(self.retry_config, key, value)
        logger.info(f"Retry config updated: {asdict(self.retry_config)}")
        return self.retry_config
