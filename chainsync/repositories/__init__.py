"""
Repository Pattern - Storage abstraction layer

Repositories hide PostgreSQL details from the watchers and reconciliation.
Consumers work with domain models, not asyncpg records.

Tables:
- pending_registrations / pending_ownership_updates: PendingEventRepository
- domain_records: DomainRepository
- watcher_watermarks: WatermarkRepository

Storage owns the shared pool and hands out the repositories.
"""
from .storage import Storage
from .pending_event_repository import PendingEventRepository
from .domain_repository import DomainRepository
from .watermark_repository import WatermarkRepository

__all__ = [
    'Storage',
    'PendingEventRepository',
    'DomainRepository',
    'WatermarkRepository',
]
