"""
Listening session models
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional


@dataclass
class ListeningSessionConfig:
    """Bounded listening session configuration (default: 5 minutes, no auto-restart)"""
    duration_ms: int = 5 * 60 * 1000
    auto_restart: bool = False
    max_restarts: int = 0


@dataclass
class ListeningSessionStatus:
    is_active: bool
    started_at: Optional[datetime]
    remaining_ms: int
    restart_count: int
    config: ListeningSessionConfig

    def to_dict(self) -> dict:
        data = asdict(self)
        data['started_at'] = self.started_at.isoformat() if self.started_at else None
        return data
