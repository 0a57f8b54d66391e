"""
Reconciliation Processor - drains pending records into domain state.

Runs on its own timer (default every 30s), independent of the watchers.

Registrations (batch of 30, oldest first):
1. Upsert DomainRecord (provisional owner = requester, expires in 365 days)
2. NFT minter follow-up: setDomainNameToOwner, then setIsDomainMintable(true)
3. Mark processed - always, with processing_error on failure

Ownership updates (batch of 10):
1. Missing DomainRecord -> processed with "domain not found"
2. Patch owner, then setDomainNameToOwner on-chain
3. Mark processed

Failures are terminal; operators can requeue() a failed record.
The database upsert is not rolled back when the on-chain write fails.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from chainsync.config.settings import Settings
from chainsync.models.pending_event import PendingEvent, PendingEventKind
from .nft_minter import NftMinterClient

logger = logging.getLogger(__name__)

DOMAIN_NOT_FOUND = "domain not found"


class ReconciliationProcessor:
    """
    Converts pending records into DomainRecords + on-chain writes.

    Each processing method holds its own asyncio.Lock; a call that finds the
    lock taken is skipped instead of processing the same batch twice.
    """

    def __init__(self, storage, nft_minter: NftMinterClient, settings: Settings):
        self.storage = storage
        self.nft_minter = nft_minter
        self.settings = settings
        self.interval = settings.reconciliation_interval_ms / 1000

        self._registration_lock = asyncio.Lock()
        self._ownership_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

        self.runs = 0
        self.records_processed = 0
        self.records_failed = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # TIMER
    # =========================================================================

    def start(self):
        if self.is_running:
            logger.warning("Reconciliation timer already running")
            return
        self._task = asyncio.create_task(self._run(), name="reconciliation")
        logger.info(f"Reconciliation timer started (every {self.interval:.0f}s)")

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Reconciliation timer stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Reconciliation run failed: {e}", exc_info=True)

    async def run_once(self) -> dict:
        """One pass over both queues"""
        self.runs += 1
        registrations = await self.process_pending_registrations()
        ownership_updates = await self.process_pending_ownership_updates()
        return {'registrations': registrations, 'ownership_updates': ownership_updates}

    async def trigger_now(self) -> dict:
        """Admin: run a pass immediately (overlap guard still applies)"""
        logger.info("Manual reconciliation triggered")
        return await self.run_once()

    # =========================================================================
    # REGISTRATIONS
    # =========================================================================

    async def process_pending_registrations(self) -> int:
        """
        Returns:
            Number of records marked processed in this call (-1 if skipped)
        """
        if self._registration_lock.locked():
            logger.info("Registration reconciliation already in progress, skipping")
            return -1

        async with self._registration_lock:
            repo = self.storage.pending(PendingEventKind.REGISTRATION)
            batch = await repo.fetch_unprocessed(self.settings.registration_batch_size)
            if not batch:
                return 0

            logger.info(f"Reconciling {len(batch)} pending registrations")
            processed = 0
            for event in batch:
                error = await self._reconcile_registration(event)
                if await self._mark(repo, event, error):
                    processed += 1
            return processed

    async def _reconcile_registration(self, event: PendingEvent) -> Optional[str]:
        expiration = datetime.now(timezone.utc) + timedelta(days=self.settings.domain_expiration_days)
        try:
            _, created = await self.storage.domains.upsert_owner(
                event.domain_name,
                event.requester_address,
                self.settings.chain_id,
                expiration,
            )
        except Exception as e:
            logger.error(f"Failed to upsert domain {event.domain_name}: {e}", exc_info=True)
            return f"database update failed: {e}"

        logger.info(
            f"{'Created' if created else 'Updated'} domain record {event.domain_name} "
            f"(owner {event.requester_address})"
        )

        try:
            await self.nft_minter.process_domain_registration(event.domain_name, event.requester_address)
        except Exception as e:
            # Record keeps the upserted owner; on-chain state diverges until requeued
            logger.error(f"On-chain follow-up failed for {event.domain_name}: {e}")
            return f"nft minter update failed: {e}"

        return None

    # =========================================================================
    # OWNERSHIP UPDATES
    # =========================================================================

    async def process_pending_ownership_updates(self) -> int:
        if self._ownership_lock.locked():
            logger.info("Ownership reconciliation already in progress, skipping")
            return -1

        async with self._ownership_lock:
            repo = self.storage.pending(PendingEventKind.OWNERSHIP_UPDATE)
            batch = await repo.fetch_unprocessed(self.settings.ownership_batch_size)
            if not batch:
                return 0

            logger.info(f"Reconciling {len(batch)} pending ownership updates")
            processed = 0
            for event in batch:
                error = await self._reconcile_ownership_update(event)
                if await self._mark(repo, event, error):
                    processed += 1
            return processed

    async def _reconcile_ownership_update(self, event: PendingEvent) -> Optional[str]:
        try:
            record = await self.storage.domains.get_by_name(event.domain_name)
            if record is None:
                logger.warning(f"Ownership update for unknown domain {event.domain_name}")
                return DOMAIN_NOT_FOUND

            await self.storage.domains.update_owner(event.domain_name, event.requester_address)
        except Exception as e:
            logger.error(f"Failed to update owner of {event.domain_name}: {e}", exc_info=True)
            return f"database update failed: {e}"

        if not self.settings.ownership_sync_on_chain:
            return None

        try:
            await self.nft_minter.set_domain_owner(event.domain_name, event.requester_address)
        except Exception as e:
            logger.error(f"On-chain owner update failed for {event.domain_name}: {e}")
            return f"nft minter update failed: {e}"

        return None

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _mark(self, repo, event: PendingEvent, error: Optional[str]) -> bool:
        try:
            marked = await repo.mark_processed(event.id, error)
        except Exception as e:
            # Left unprocessed; picked up again next run
            logger.error(f"Failed to mark {event.kind.value} {event.id} processed: {e}", exc_info=True)
            return False

        if error:
            self.records_failed += 1
        else:
            self.records_processed += 1
            logger.info(f"✅ Reconciled {event.kind.value} for {event.domain_name}")
        return marked

    async def requeue(self, kind: PendingEventKind, transaction_hash: str) -> bool:
        """Operator tool: make a failed record eligible again"""
        return await self.storage.pending(kind).requeue(transaction_hash)
