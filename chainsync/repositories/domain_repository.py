"""
Domain Repository - PostgreSQL storage for canonical domain records

Storage: PostgreSQL (domain_records table, domain_name is the primary key)
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
import asyncpg

from chainsync.models.domain_record import DomainRecord

logger = logging.getLogger(__name__)


class DomainRepository:
    """
    Repository for DomainRecord domain model

    Records are created/upserted by reconciliation and patched by the
    NFT / token minter watchers. Nothing deletes them.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def initialize(self):
        """Create table and indexes if missing"""
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS domain_records (
                    domain_name TEXT PRIMARY KEY,
                    verified_owner_address TEXT NOT NULL,
                    associated_token_address TEXT,
                    nft_token_id NUMERIC(78, 0),
                    chain_id BIGINT NOT NULL,
                    expiration_timestamp TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS domain_records_owner_idx
                ON domain_records (verified_owner_address)
            """)

    @staticmethod
    def _from_row(row) -> DomainRecord:
        nft_token_id = row['nft_token_id']
        return DomainRecord(
            domain_name=row['domain_name'],
            verified_owner_address=row['verified_owner_address'],
            associated_token_address=row['associated_token_address'],
            nft_token_id=int(nft_token_id) if nft_token_id is not None else None,
            chain_id=row['chain_id'],
            expiration_timestamp=row['expiration_timestamp'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_by_name(self, domain_name: str) -> Optional[DomainRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM domain_records WHERE domain_name = $1
            """, domain_name)
            return self._from_row(row) if row else None

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def upsert_owner(
        self,
        domain_name: str,
        owner_address: str,
        chain_id: int,
        expiration_timestamp: datetime
    ) -> Tuple[DomainRecord, bool]:
        """
        Insert a record if absent, else patch ownership + updated_at.

        Returns:
            (record, created) - created is True when the row was inserted
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO domain_records (
                    domain_name, verified_owner_address, chain_id,
                    expiration_timestamp, created_at, updated_at
                )
                VALUES ($1, $2, $3, $4, NOW(), NOW())
                ON CONFLICT (domain_name) DO UPDATE
                SET verified_owner_address = EXCLUDED.verified_owner_address,
                    updated_at = NOW()
                RETURNING *, (xmax = 0) AS inserted
            """, domain_name, owner_address, chain_id, expiration_timestamp)

        return self._from_row(row), bool(row['inserted'])

    async def update_owner(self, domain_name: str, owner_address: str) -> bool:
        """Patch ownership on an existing record. Returns False if none matched."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE domain_records
                SET verified_owner_address = $2, updated_at = NOW()
                WHERE domain_name = $1
            """, domain_name, owner_address)
            return result.endswith(" 1")

    async def set_nft_token_id(self, domain_name: str, token_id: int) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE domain_records
                SET nft_token_id = $2, updated_at = NOW()
                WHERE domain_name = $1
            """, domain_name, Decimal(token_id))
            return result.endswith(" 1")

    async def set_token_address(self, domain_name: str, token_address: str) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE domain_records
                SET associated_token_address = $2, updated_at = NOW()
                WHERE domain_name = $1
            """, domain_name, token_address)
            return result.endswith(" 1")
