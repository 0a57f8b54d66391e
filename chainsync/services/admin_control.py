"""
Administrative control surface - the operations the event-control API exposes.

Thin facade over the supervisor, session manager, watchers and reconciliation
processor; holds no state of its own.
"""
import logging
from typing import List, Optional

from chainsync.models.pending_event import PendingEvent, PendingEventKind
from .connection_supervisor import ConnectionSupervisor
from .event_watcher import WatcherGroup
from .listening_session import ListeningSessionManager
from .reconciliation import ReconciliationProcessor

logger = logging.getLogger(__name__)


class AdminControl:

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        reconciliation: ReconciliationProcessor,
        watchers: WatcherGroup,
        session: ListeningSessionManager,
        storage
    ):
        self.supervisor = supervisor
        self.reconciliation = reconciliation
        self.watchers = watchers
        self.session = session
        self.storage = storage

    def get_connection_status(self) -> dict:
        return self.supervisor.get_status()

    async def trigger_reconciliation_now(self) -> dict:
        return await self.reconciliation.trigger_now()

    def get_watcher_status(self, contract_id: str) -> bool:
        """True if the watcher exists and is running"""
        watcher = self.watchers.get(contract_id)
        return watcher is not None and watcher.is_running

    async def start_timed_session(
        self,
        reason: Optional[str] = None,
        duration_override_ms: Optional[int] = None
    ) -> dict:
        if duration_override_ms is not None:
            self.session.update_config(duration_ms=duration_override_ms)
        await self.session.start_timed_listening(reason or "admin_request")
        return self.get_session_status()

    async def stop_timed_session(self, reason: Optional[str] = None) -> dict:
        await self.session.stop_timed_listening(reason or "manual_stop")
        return self.get_session_status()

    def extend_session(self) -> bool:
        return self.session.extend_duration()

    def get_session_status(self) -> dict:
        return self.session.get_status().to_dict()

    async def list_failed_events(self, kind: PendingEventKind, limit: int = 50) -> List[PendingEvent]:
        """Processed records carrying a processing_error, newest first"""
        return await self.storage.pending(kind).list_failed(limit)

    async def requeue_event(self, kind: PendingEventKind, transaction_hash: str) -> bool:
        requeued = await self.reconciliation.requeue(kind, transaction_hash)
        if not requeued:
            logger.warning(f"No failed {kind.value} record for tx {transaction_hash}")
        return requeued
