"""
PendingEvent Repository - PostgreSQL storage for observed request events

Storage strategy:
- PostgreSQL: pending_registrations / pending_ownership_updates (same shape)
- UNIQUE(source_transaction_hash) makes re-inserts of a redelivered log fail
  with UniqueViolationError, surfaced as DuplicateEventError
"""
import logging
from decimal import Decimal
from typing import Optional, List
import asyncpg

from chainsync.errors import DuplicateEventError
from chainsync.models.pending_event import PendingEvent, PendingEventKind

logger = logging.getLogger(__name__)


class PendingEventRepository:
    """
    Repository for PendingEvent domain model

    One instance per kind; the kind selects the table.
    """

    def __init__(self, db_pool: asyncpg.Pool, kind: PendingEventKind):
        self.db_pool = db_pool
        self.kind = kind
        self.table = kind.table_name

    async def initialize(self):
        """Create table and indexes if missing"""
        async with self.db_pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id BIGSERIAL PRIMARY KEY,
                    domain_name TEXT NOT NULL,
                    requester_address TEXT NOT NULL,
                    fee_amount NUMERIC(78, 0) NOT NULL DEFAULT 0,
                    source_transaction_hash TEXT NOT NULL,
                    source_block_number BIGINT NOT NULL,
                    received_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    processed BOOLEAN NOT NULL DEFAULT FALSE,
                    processed_at TIMESTAMPTZ,
                    processing_error TEXT
                )
            """)
            await conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS {self.table}_tx_hash_key
                ON {self.table} (source_transaction_hash)
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS {self.table}_domain_name_idx
                ON {self.table} (domain_name)
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS {self.table}_unprocessed_idx
                ON {self.table} (received_at) WHERE NOT processed
            """)

    def _from_row(self, row) -> PendingEvent:
        return PendingEvent(
            kind=self.kind,
            id=row['id'],
            domain_name=row['domain_name'],
            requester_address=row['requester_address'],
            fee_amount=int(row['fee_amount']),
            source_transaction_hash=row['source_transaction_hash'],
            source_block_number=row['source_block_number'],
            received_at=row['received_at'],
            processed=row['processed'],
            processed_at=row['processed_at'],
            processing_error=row['processing_error'],
        )

    # =========================================================================
    # CREATE OPERATION
    # =========================================================================

    async def insert(self, event: PendingEvent) -> PendingEvent:
        """
        Store a newly observed event.

        Raises:
            DuplicateEventError: a record with the same transaction hash exists
        """
        try:
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    INSERT INTO {self.table} (
                        domain_name, requester_address, fee_amount,
                        source_transaction_hash, source_block_number,
                        received_at, processed
                    )
                    VALUES ($1, $2, $3, $4, $5, NOW(), FALSE)
                    RETURNING id, received_at
                """,
                    event.domain_name,
                    event.requester_address,
                    Decimal(event.fee_amount),
                    event.source_transaction_hash,
                    event.source_block_number
                )
        except asyncpg.UniqueViolationError:
            raise DuplicateEventError(event.source_transaction_hash)

        event.id = row['id']
        event.received_at = row['received_at']
        event.processed = False
        return event

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def fetch_unprocessed(self, limit: int) -> List[PendingEvent]:
        """Oldest unprocessed records first, at most `limit`"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT * FROM {self.table}
                WHERE processed = FALSE
                ORDER BY received_at, id
                LIMIT $1
            """, limit)
            return [self._from_row(row) for row in rows]

    async def count_unprocessed(self) -> int:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(f"""
                SELECT COUNT(*) FROM {self.table} WHERE processed = FALSE
            """)

    async def list_failed(self, limit: int = 50) -> List[PendingEvent]:
        """Processed records that carry a processing error (audit view)"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT * FROM {self.table}
                WHERE processed = TRUE AND processing_error IS NOT NULL
                ORDER BY processed_at DESC
                LIMIT $1
            """, limit)
            return [self._from_row(row) for row in rows]

    # =========================================================================
    # UPDATE OPERATIONS
    # =========================================================================

    async def mark_processed(self, event_id: int, error: Optional[str] = None) -> bool:
        """
        Terminally mark a record processed.

        Only flips records that are still unprocessed, so a record is
        mutated at most once.
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(f"""
                UPDATE {self.table}
                SET processed = TRUE, processed_at = NOW(), processing_error = $2
                WHERE id = $1 AND processed = FALSE
            """, event_id, error)
            return result.endswith(" 1")

    async def requeue(self, transaction_hash: str) -> bool:
        """
        Operator action: make a failed record eligible for reconciliation again.
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(f"""
                UPDATE {self.table}
                SET processed = FALSE, processed_at = NULL, processing_error = NULL
                WHERE source_transaction_hash = $1
                  AND processed = TRUE
                  AND processing_error IS NOT NULL
            """, transaction_hash)

        requeued = result.endswith(" 1")
        if requeued:
            logger.info(f"Requeued {self.kind.value} event {transaction_hash} for reconciliation")
        return requeued
