"""
Error taxonomy for the ingestion / reconciliation pipeline.

- ConfigurationError: missing contract address, unsupported chain, watching disabled.
  Fatal to EventWatcher.start(), caught and logged by the caller.
- TransientNetworkError: RPC connectivity trouble. Triggers supervisor reconnection.
- HandlerError: one event's handler failed. Logged, discovery continues.
- ReconciliationError: on-chain follow-up failed for one pending record.
  Recorded on the record, which is then terminally processed.
- DuplicateEventError: unique transaction-hash collision. Treated as success.
- StorageUnavailableError: storage never came up after all retries (fatal at startup).
"""
import asyncio
from typing import Optional


class ChainSyncError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(ChainSyncError):
    """Invalid or missing configuration for a watcher or chain"""


class TransientNetworkError(ChainSyncError):
    """RPC / network failure that a reconnect may fix"""


class HandlerError(ChainSyncError):
    """An event handler raised while processing a single log"""

    def __init__(self, event_name: str, transaction_hash: Optional[str], cause: BaseException):
        self.event_name = event_name
        self.transaction_hash = transaction_hash
        self.cause = cause
        super().__init__(f"{event_name} handler failed for tx {transaction_hash}: {cause}")


class ReconciliationError(ChainSyncError):
    """On-chain follow-up write failed for a pending record"""


class DuplicateEventError(ChainSyncError):
    """Pending record with the same source transaction hash already stored"""

    def __init__(self, transaction_hash: str):
        self.transaction_hash = transaction_hash
        super().__init__(f"Event already stored for transaction {transaction_hash}")


class StorageUnavailableError(ChainSyncError):
    """Storage connection could not be established after all retry attempts"""


class StorageNotConnectedError(ChainSyncError, RuntimeError):
    """Storage accessed before connect() or after close()"""


# Common JSON-RPC error codes for unavailable / limited resources
NETWORK_ERROR_CODES = frozenset({-32001, -32002, -32003, -32005})

NETWORK_ERROR_MESSAGES = (
    'resource not found',
    'network error',
    'connection refused',
    'connection reset',
    'connection closed',
    'timeout',
    'timed out',
    'econnrefused',
    'etimedout',
    'enotfound',
)


def _error_code(error: BaseException) -> Optional[int]:
    code = getattr(error, 'code', None)
    if code is None and error.args and isinstance(error.args[0], dict):
        # web3 surfaces RPC errors as ValueError({'code': ..., 'message': ...})
        code = error.args[0].get('code')
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_network_error(error: BaseException) -> bool:
    """
    Classify an error as network-related (reconnect may help) or not.

    Checks, in order: explicit transient types, known RPC error codes,
    then a case-insensitive scan of the message for known substrings.
    """
    if isinstance(error, (TransientNetworkError, asyncio.TimeoutError, ConnectionError)):
        return True

    if _error_code(error) in NETWORK_ERROR_CODES:
        return True

    message = str(error).lower()
    if not message:
        return False
    return any(fragment in message for fragment in NETWORK_ERROR_MESSAGES)
