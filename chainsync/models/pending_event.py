"""
Pending event domain model
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class PendingEventKind(str, Enum):
    """
    Kind of pending event - one table per kind, identical shape.
    """
    REGISTRATION = "registration"
    OWNERSHIP_UPDATE = "ownership_update"

    @property
    def table_name(self) -> str:
        if self is PendingEventKind.REGISTRATION:
            return "pending_registrations"
        return "pending_ownership_updates"


@dataclass
class PendingEvent:
    """
    A durable note that an on-chain request event was observed
    but not yet reconciled.

    Storage: PostgreSQL (pending_registrations / pending_ownership_updates)

    source_transaction_hash is unique per table; inserting the same hash
    twice is a no-op, which is what makes redelivery harmless.
    """
    kind: PendingEventKind
    domain_name: str
    requester_address: str
    fee_amount: int
    source_transaction_hash: str
    source_block_number: int

    id: Optional[int] = None
    received_at: Optional[datetime] = None

    # Set exactly once by the reconciliation processor
    processed: bool = False
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.processed and self.processing_error is None
