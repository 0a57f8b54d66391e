"""
Watermark Repository - persisted high-water-marks for polling watchers

Storage: PostgreSQL (watcher_watermarks table)
"""
import logging
from typing import Optional
import asyncpg

logger = logging.getLogger(__name__)


class WatermarkRepository:
    """Last fully scanned block per (watcher, chain)"""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def initialize(self):
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS watcher_watermarks (
                    watcher_id TEXT NOT NULL,
                    chain_id BIGINT NOT NULL,
                    last_processed_block BIGINT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (watcher_id, chain_id)
                )
            """)

    async def get(self, watcher_id: str, chain_id: int) -> Optional[int]:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT last_processed_block FROM watcher_watermarks
                WHERE watcher_id = $1 AND chain_id = $2
            """, watcher_id, chain_id)

    async def save(self, watcher_id: str, chain_id: int, block_number: int) -> int:
        """
        Persist a watermark. The stored value never decreases.

        Returns:
            The stored watermark after the write
        """
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval("""
                INSERT INTO watcher_watermarks (watcher_id, chain_id, last_processed_block, updated_at)
                VALUES ($1, $2, $3, NOW())
                ON CONFLICT (watcher_id, chain_id) DO UPDATE
                SET last_processed_block = GREATEST(
                        watcher_watermarks.last_processed_block,
                        EXCLUDED.last_processed_block
                    ),
                    updated_at = NOW()
                RETURNING last_processed_block
            """, watcher_id, chain_id, block_number)
