"""
Chain registry - supported chains, their event-discovery capabilities
and deployed contract addresses.

Capability tags decide how an EventWatcher discovers logs:
- SUBSCRIPTION: node pushes matching logs (eth_subscribe over websocket)
- LOG_QUERY: node answers eth_getLogs block-range queries (polling)
A chain with neither tag cannot be watched.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from chainsync.errors import ConfigurationError


class ChainCapability(str, Enum):
    SUBSCRIPTION = "subscription"
    LOG_QUERY = "log_query"


DOMAIN_REGISTRATION = "domain_registration"
NFT_MINTER = "nft_minter"
TOKEN_MINTER = "token_minter"


@dataclass(frozen=True)
class ChainConfig:
    """Static description of one supported chain"""
    chain_id: int
    name: str
    capabilities: FrozenSet[ChainCapability] = frozenset()
    addresses: Dict[str, str] = field(default_factory=dict)

    def supports(self, capability: ChainCapability) -> bool:
        return capability in self.capabilities

    @property
    def is_watchable(self) -> bool:
        return bool(self.capabilities)


SUPPORTED_CHAINS: Dict[int, ChainConfig] = {
    747: ChainConfig(
        chain_id=747,
        name="Flow EVM",
        capabilities=frozenset({ChainCapability.LOG_QUERY}),
        addresses={
            DOMAIN_REGISTRATION: "0xf5418837202c5970eefcf7415Dd0ae17c64F8C01",
            NFT_MINTER: "0xC179eD1e83872ea68Dd7308E96C052f8d4088972",
            TOKEN_MINTER: "0x2af0a540846e0E427C3eeBF035Bf02C37bf8a6ab",
        },
    ),
    11155111: ChainConfig(
        chain_id=11155111,
        name="Ethereum Sepolia",
        capabilities=frozenset({ChainCapability.SUBSCRIPTION, ChainCapability.LOG_QUERY}),
        addresses={
            DOMAIN_REGISTRATION: "0xA6f09EB11F5eDEE3ed04cA213a33e5b362fC8c5B",
            NFT_MINTER: "0xB41920fD5d6AFDcFBf648F8E2A1CB6376EF0EFA0",
            TOKEN_MINTER: "0xF2029e8B4d5EA818789D2Ab13bfaF0CD48a9D160",
        },
    ),
}


def is_supported_chain(chain_id: int) -> bool:
    return chain_id in SUPPORTED_CHAINS


def get_chain_config(chain_id: int) -> ChainConfig:
    """Get chain configuration, raising ConfigurationError for unknown chains"""
    if not is_supported_chain(chain_id):
        supported = ', '.join(str(c) for c in SUPPORTED_CHAINS)
        raise ConfigurationError(f"Unsupported chain ID: {chain_id}. Supported chains: {supported}")
    return SUPPORTED_CHAINS[chain_id]


def get_chain_name(chain_id: int) -> str:
    """Chain name for display/logging purposes"""
    chain = SUPPORTED_CHAINS.get(chain_id)
    return chain.name if chain else f"Chain {chain_id}"


def resolve_contract_address(
    chain: ChainConfig,
    contract_id: str,
    override: Optional[str] = None
) -> str:
    """
    Contract address for a chain, preferring an explicit override.

    Raises:
        ConfigurationError: if neither the override nor the registry has one
    """
    address = (override or chain.addresses.get(contract_id) or '').strip()
    if not address:
        raise ConfigurationError(
            f"Contract {contract_id} not configured for chain {chain.chain_id} ({chain.name})"
        )
    return address
