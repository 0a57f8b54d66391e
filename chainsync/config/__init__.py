"""
Configuration module for settings, chain registry and database connections.
"""
from .settings import Settings, get_settings
from .database import PostgresConfig, create_postgres_pool
from .chains import (
    ChainCapability,
    ChainConfig,
    SUPPORTED_CHAINS,
    DOMAIN_REGISTRATION,
    NFT_MINTER,
    TOKEN_MINTER,
    get_chain_config,
    get_chain_name,
    is_supported_chain,
    resolve_contract_address,
)

__all__ = [
    'Settings',
    'get_settings',
    'PostgresConfig',
    'create_postgres_pool',
    'ChainCapability',
    'ChainConfig',
    'SUPPORTED_CHAINS',
    'DOMAIN_REGISTRATION',
    'NFT_MINTER',
    'TOKEN_MINTER',
    'get_chain_config',
    'get_chain_name',
    'is_supported_chain',
    'resolve_contract_address',
]
