"""
Storage - owner of the asyncpg pool and the repositories bound to it.

Only the ConnectionSupervisor calls connect()/initialize()/close();
every other component reads repositories through this handle.
"""
import logging
from typing import Awaitable, Callable, Optional
import asyncpg

from chainsync.config.database import PostgresConfig, create_postgres_pool
from chainsync.errors import StorageNotConnectedError
from chainsync.models.pending_event import PendingEventKind
from .domain_repository import DomainRepository
from .pending_event_repository import PendingEventRepository
from .watermark_repository import WatermarkRepository

logger = logging.getLogger(__name__)

PoolFactory = Callable[[], Awaitable[asyncpg.Pool]]


class Storage:
    """
    Shared database handle.

    Repositories are created on connect() and dropped on close(); accessing
    them in between raises StorageNotConnectedError.
    """

    def __init__(
        self,
        config: Optional[PostgresConfig] = None,
        pool_factory: Optional[PoolFactory] = None
    ):
        self.config = config
        self._pool_factory = pool_factory or (lambda: create_postgres_pool(self.config))
        self.pool: Optional[asyncpg.Pool] = None
        self._domains: Optional[DomainRepository] = None
        self._pending = {}
        self._watermarks: Optional[WatermarkRepository] = None

    @property
    def is_connected(self) -> bool:
        return self.pool is not None

    async def connect(self):
        """Open the pool (no-op when already connected)"""
        if self.pool is not None:
            return

        self.pool = await self._pool_factory()
        self._domains = DomainRepository(self.pool)
        self._pending = {
            kind: PendingEventRepository(self.pool, kind)
            for kind in PendingEventKind
        }
        self._watermarks = WatermarkRepository(self.pool)
        logger.info("Connected to PostgreSQL")

    async def initialize(self):
        """Create tables and indexes (unique transaction-hash keys included)"""
        await self.domains.initialize()
        for repo in self._require_pending().values():
            await repo.initialize()
        await self.watermarks.initialize()
        logger.info("Database tables and indexes ready")

    async def close(self):
        if self.pool is None:
            return

        pool = self.pool
        self.pool = None
        self._domains = None
        self._pending = {}
        self._watermarks = None
        await pool.close()
        logger.info("Disconnected from PostgreSQL")

    def _require_pending(self) -> dict:
        if not self._pending:
            raise StorageNotConnectedError("Database connection not established. Call connect() first.")
        return self._pending

    @property
    def domains(self) -> DomainRepository:
        if self._domains is None:
            raise StorageNotConnectedError("Database connection not established. Call connect() first.")
        return self._domains

    @property
    def watermarks(self) -> WatermarkRepository:
        if self._watermarks is None:
            raise StorageNotConnectedError("Database connection not established. Call connect() first.")
        return self._watermarks

    def pending(self, kind: PendingEventKind) -> PendingEventRepository:
        return self._require_pending()[kind]

    @property
    def pending_registrations(self) -> PendingEventRepository:
        return self.pending(PendingEventKind.REGISTRATION)

    @property
    def pending_ownership_updates(self) -> PendingEventRepository:
        return self.pending(PendingEventKind.OWNERSHIP_UPDATE)
