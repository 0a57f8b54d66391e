"""
Pipeline services: chain access, event watching, reconciliation,
connection supervision and listening sessions.
"""
from .chain_gateway import ChainGateway, Web3ChainGateway
from .discoverers import Discoverer, PollingDiscoverer, SubscriptionDiscoverer, select_discoverer
from .event_watcher import EventKind, EventWatcher, WatcherGroup
from .event_handlers import build_event_watchers
from .nft_minter import NftMinterClient
from .reconciliation import ReconciliationProcessor
from .listening_session import ListeningSessionManager
from .connection_supervisor import ConnectionSupervisor, RetryConfig, SupervisorState, compute_backoff_delay
from .admin_control import AdminControl

__all__ = [
    'ChainGateway',
    'Web3ChainGateway',
    'Discoverer',
    'PollingDiscoverer',
    'SubscriptionDiscoverer',
    'select_discoverer',
    'EventKind',
    'EventWatcher',
    'WatcherGroup',
    'build_event_watchers',
    'NftMinterClient',
    'ReconciliationProcessor',
    'ListeningSessionManager',
    'ConnectionSupervisor',
    'RetryConfig',
    'SupervisorState',
    'compute_backoff_delay',
    'AdminControl',
]
