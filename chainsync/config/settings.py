from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


LISTENING_MODES = ("continuous", "session", "on_demand")


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for secrets like PRIVATE_KEY)
    - System environment

    Variable names are matched case-insensitively:
    - EVENT_LISTENERS_ENABLED, POLLING_INTERVAL_MS, CHAIN_ID (event watching)
    - RETRY_* (connection supervisor backoff)
    - SESSION_* (bounded listening sessions)
    - POSTGRES_HOST, POSTGRES_PORT, etc. (for database)
    """

    log_level: str = "INFO"

    # Chain access
    chain_id: int = 11155111
    rpc_url: str = "https://rpc2.sepolia.org"
    ws_rpc_url: Optional[str] = None
    private_key: Optional[str] = None

    # Per-chain contract address overrides (fall back to the chain registry)
    domain_registration_contract: Optional[str] = None
    nft_minter_contract: Optional[str] = None
    token_minter_contract: Optional[str] = None

    # Event watching
    event_listeners_enabled: bool = True
    listening_mode: str = "continuous"
    polling_interval_ms: int = 60000
    backfill_blocks: int = 1000
    max_block_range: int = 2000
    watcher_restart_delay_ms: int = 1000

    # Connection supervisor
    retry_max_attempts: int = 10
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 60000
    retry_backoff_multiplier: float = 2.0

    # Reconciliation
    reconciliation_interval_ms: int = 30000
    registration_batch_size: int = 30
    ownership_batch_size: int = 10
    # Also push the new owner to the NFT minter after patching the record
    ownership_sync_on_chain: bool = False
    receipt_timeout_ms: int = 120000
    domain_expiration_days: int = 365

    # Listening sessions (default: 5 minutes, no auto-restart)
    session_duration_ms: int = 5 * 60 * 1000
    session_auto_restart: bool = False
    session_max_restarts: int = 0

    # PostgreSQL (from docker-compose)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "chainsync_user"
    postgres_password: str = "chainsync_pass"
    postgres_db: str = "chainsync"
    postgres_pool_min_size: int = 2
    postgres_pool_max_size: int = 10
    database_url: Optional[str] = Field(default=None, validate_default=True)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('listening_mode', mode='before')
    @classmethod
    def normalize_listening_mode(cls, v):
        """Accept any casing / dashes, reject unknown modes"""
        mode = str(v or "continuous").strip().lower().replace('-', '_')
        if mode not in LISTENING_MODES:
            raise ValueError(f"listening_mode must be one of {', '.join(LISTENING_MODES)}")
        return mode

    @field_validator('polling_interval_ms', 'reconciliation_interval_ms', 'session_duration_ms')
    @classmethod
    def positive_interval(cls, v):
        if v <= 0:
            raise ValueError("intervals and durations must be positive")
        return v

    @field_validator('database_url', mode='before')
    @classmethod
    def construct_database_url(cls, v, info):
        """Construct database URL from components if not explicitly set"""
        if v:
            return v

        data = info.data
        host = data.get('postgres_host', 'localhost')
        port = data.get('postgres_port', 5432)
        user = data.get('postgres_user', 'chainsync_user')
        password = data.get('postgres_password', 'chainsync_pass')
        db = data.get('postgres_db', 'chainsync')

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
