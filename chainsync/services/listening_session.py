"""
Listening Session Manager - watchers running for a bounded time.

A session starts every watcher and schedules a stop after duration_ms.
Starting while active extends the countdown instead of starting watchers twice.
When the countdown expires and auto_restart is on, a new session is started
until max_restarts is reached.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from chainsync.models.session import ListeningSessionConfig, ListeningSessionStatus
from .event_watcher import WatcherGroup

logger = logging.getLogger(__name__)

MANUAL_STOP = "manual_stop"
TIMEOUT_REACHED = "timeout_reached"


class ListeningSessionManager:
    """Owns the one in-memory listening session"""

    def __init__(self, watchers: WatcherGroup, config: Optional[ListeningSessionConfig] = None):
        self.watchers = watchers
        self.config = config or ListeningSessionConfig()

        self.is_active = False
        self.started_at: Optional[datetime] = None
        self.restart_count = 0
        self._countdown_started: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None

    async def start_timed_listening(self, reason: Optional[str] = None) -> bool:
        if self.is_active:
            logger.info("Listening session already active, extending")
            self._schedule_stop()
            return True

        await self.watchers.start_all()
        self.is_active = True
        self.started_at = datetime.now(timezone.utc)
        self._schedule_stop()

        logger.info(
            f"🎧 Listening session started ({reason or 'manual'}), "
            f"duration {self.config.duration_ms / 1000:.0f}s"
        )
        return True

    async def stop_timed_listening(self, reason: str = MANUAL_STOP):
        if not self.is_active:
            logger.warning("No active listening session to stop")
            return

        self._cancel_timer()
        elapsed_ms = self._elapsed_ms()
        await self.watchers.stop_all()
        self.is_active = False
        self.started_at = None
        self._countdown_started = None
        logger.info(f"Listening session stopped ({reason}) after {elapsed_ms / 1000:.1f}s")

        if (
            reason == TIMEOUT_REACHED
            and self.config.auto_restart
            and self.restart_count < self.config.max_restarts
        ):
            self.restart_count += 1
            logger.info(f"Auto-restarting session ({self.restart_count}/{self.config.max_restarts})")
            await self.start_timed_listening(f"auto_restart_{self.restart_count}")
        else:
            self.restart_count = 0

    def extend_duration(self) -> bool:
        if not self.is_active:
            logger.warning("No active listening session to extend")
            return False

        self._schedule_stop()
        logger.info(f"Listening session extended by {self.config.duration_ms / 1000:.0f}s")
        return True

    def get_remaining_time(self) -> int:
        """Milliseconds left in the current countdown (0 when inactive)"""
        if not self.is_active or self._countdown_started is None:
            return 0
        return max(0, self.config.duration_ms - self._elapsed_ms())

    async def force_reset(self):
        """Stop everything and zero the counters. Never raises."""
        self._cancel_timer()
        try:
            await self.watchers.stop_all()
        except Exception as e:
            logger.error(f"Error stopping watchers during session reset: {e}", exc_info=True)

        self.is_active = False
        self.started_at = None
        self._countdown_started = None
        self.restart_count = 0

    def update_config(self, **changes) -> ListeningSessionConfig:
        for key, value in changes.items():
            if value is None:
                continue
            if not hasattr(self.config, key):
                raise ValueError(f"Unknown session setting: {key}")
            setattr(self.config, key, value)
        logger.info(f"Session config updated: {self.config}")
        return self.config

    def get_status(self) -> ListeningSessionStatus:
        return ListeningSessionStatus(
            is_active=self.is_active,
            started_at=self.started_at,
            remaining_ms=self.get_remaining_time(),
            restart_count=self.restart_count,
            config=self.config,
        )

    def _elapsed_ms(self) -> int:
        if self._countdown_started is None:
            return 0
        return int((time.monotonic() - self._countdown_started) * 1000)

    def _schedule_stop(self):
        self._cancel_timer()
        self._countdown_started = time.monotonic()
        self._timer = asyncio.create_task(self._expire(), name="listening-session")

    def _cancel_timer(self):
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire(self):
        await asyncio.sleep(self.config.duration_ms / 1000)
        # Detach before stopping so the stop path doesn't cancel this task
        self._timer = None
        try:
            await self.stop_timed_listening(TIMEOUT_REACHED)
        except Exception as e:
            logger.error(f"Error ending listening session: {e}", exc_info=True)
