"""
Decoded contract log as delivered by a ChainGateway
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class LogEntry:
    address: str
    event_name: str
    args: Dict[str, Any] = field(default_factory=dict)
    block_number: int = 0
    log_index: int = 0
    transaction_hash: Optional[str] = None

    @property
    def sort_key(self):
        """Ascending block order, then log index within a block"""
        return (self.block_number, self.log_index)
