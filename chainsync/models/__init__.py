"""
Domain Models - Storage-agnostic data structures

These models represent the pipeline entities independent of storage layer.
Watchers, reconciliation and the supervisor operate on these models,
not raw database rows.
"""

from .pending_event import PendingEvent, PendingEventKind
from .domain_record import DomainRecord
from .log_entry import LogEntry
from .session import ListeningSessionConfig, ListeningSessionStatus

__all__ = [
    'PendingEvent',
    'PendingEventKind',
    'DomainRecord',
    'LogEntry',
    'ListeningSessionConfig',
    'ListeningSessionStatus',
]
