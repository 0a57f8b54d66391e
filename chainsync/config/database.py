"""
Database Configuration
======================

PostgreSQL connection configuration for the pipeline.
The pool itself is opened and closed only by the ConnectionSupervisor
(through repositories.Storage); everything else borrows it.
"""
from dataclasses import dataclass
from typing import Optional

import asyncpg

from .settings import Settings, get_settings


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""
    host: str
    port: int
    user: str
    password: str
    database: str
    min_size: int = 2
    max_size: int = 10
    dsn: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'PostgresConfig':
        """Create config from pipeline settings."""
        settings = settings or get_settings()
        return cls(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            min_size=settings.postgres_pool_min_size,
            max_size=settings.postgres_pool_max_size,
            dsn=settings.database_url,
        )

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        if self.dsn:
            return {
                'dsn': self.dsn,
                'min_size': self.min_size,
                'max_size': self.max_size,
            }
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'min_size': self.min_size,
            'max_size': self.max_size,
        }


async def create_postgres_pool(config: Optional[PostgresConfig] = None) -> asyncpg.Pool:
    """Create PostgreSQL connection pool from config (defaults to environment)."""
    config = config or PostgresConfig.from_settings()
    return await asyncpg.create_pool(**config.to_asyncpg_kwargs())
