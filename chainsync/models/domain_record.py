"""
Domain record domain model
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class DomainRecord:
    """
    Canonical domain record.

    Storage: PostgreSQL (domain_records table, keyed by domain_name)

    Ownership fields are written by reconciliation; nft_token_id and
    associated_token_address are patched by the NFT / token minter watchers.
    """
    domain_name: str
    verified_owner_address: str
    chain_id: int
    expiration_timestamp: datetime

    associated_token_address: Optional[str] = None
    nft_token_id: Optional[int] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
