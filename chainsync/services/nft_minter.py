"""
NFT minter client - on-chain follow-up writes for reconciled domains.

Every write is confirmed with a bounded receipt wait:
- wait expires -> TransientNetworkError (retryable, recorded on the record)
- reverted receipt (status 0) -> ReconciliationError
"""
import asyncio
import logging
from typing import Optional, Tuple

from chainsync.config.abis import NFT_MINTER_ABI
from chainsync.config.chains import NFT_MINTER, get_chain_config, resolve_contract_address
from chainsync.config.settings import Settings
from chainsync.errors import ReconciliationError, TransientNetworkError
from .chain_gateway import ChainGateway

logger = logging.getLogger(__name__)


class NftMinterClient:
    """Writes and reads against the NFT minter contract of the configured chain"""

    def __init__(self, gateway: ChainGateway, settings: Settings, address: Optional[str] = None):
        self.gateway = gateway
        self.settings = settings
        self._address = address or settings.nft_minter_contract

    @property
    def address(self) -> str:
        chain = get_chain_config(self.settings.chain_id)
        return resolve_contract_address(chain, NFT_MINTER, self._address)

    async def confirm(self, tx_hash: str) -> dict:
        """Wait for one confirmation, bounded by receipt_timeout_ms"""
        timeout = self.settings.receipt_timeout_ms / 1000
        try:
            receipt = await asyncio.wait_for(
                self.gateway.wait_for_receipt(tx_hash, timeout), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise TransientNetworkError(
                f"No receipt for {tx_hash} after {self.settings.receipt_timeout_ms}ms"
            )

        if receipt.get('status') == 0:
            raise ReconciliationError(f"Transaction {tx_hash} reverted")
        return receipt

    async def set_domain_owner(self, domain_name: str, owner_address: str) -> str:
        tx_hash = await self.gateway.write_contract(
            self.address, NFT_MINTER_ABI, 'setDomainNameToOwner', [domain_name, owner_address]
        )
        await self.confirm(tx_hash)
        logger.info(f"Set owner of {domain_name} to {owner_address} (tx {tx_hash})")
        return tx_hash

    async def set_domain_mintable(self, domain_name: str, mintable: bool = True) -> str:
        tx_hash = await self.gateway.write_contract(
            self.address, NFT_MINTER_ABI, 'setIsDomainMintable', [domain_name, mintable]
        )
        await self.confirm(tx_hash)
        logger.info(f"Set {domain_name} mintable={mintable} (tx {tx_hash})")
        return tx_hash

    async def process_domain_registration(self, domain_name: str, owner_address: str) -> Tuple[str, str]:
        """
        Owner first, then mintable. A failure in the first write skips the second.

        Returns:
            (owner_tx_hash, mintable_tx_hash)
        """
        owner_tx = await self.set_domain_owner(domain_name, owner_address)
        mintable_tx = await self.set_domain_mintable(domain_name, True)
        return owner_tx, mintable_tx

    async def get_token_name_from_id(self, token_id: int) -> str:
        name = await self.gateway.read_contract(
            self.address, NFT_MINTER_ABI, 'getTokenNameFromId', [int(token_id)]
        )
        return name or ''
