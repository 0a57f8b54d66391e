"""
Event handlers for the three watcher configurations.

Domain registry: request events -> pending records (idempotent on tx hash)
NFT minter:      NFTMinted -> DomainRecord.nft_token_id
Token minter:    TokenCreated -> DomainRecord.associated_token_address

Everything else is observed and logged only. A missing DomainRecord is a
warning, never an error.
"""
import logging
from typing import List, Optional

from chainsync.config.abis import DOMAIN_REGISTRATION_ABI, NFT_MINTER_ABI, TOKEN_MINTER_ABI
from chainsync.config.chains import DOMAIN_REGISTRATION, NFT_MINTER, TOKEN_MINTER
from chainsync.config.settings import Settings
from chainsync.errors import DuplicateEventError
from chainsync.models.log_entry import LogEntry
from chainsync.models.pending_event import PendingEvent, PendingEventKind
from .chain_gateway import ChainGateway, OnError
from .event_watcher import EventKind, EventWatcher, Handler, WatcherGroup
from .nft_minter import NftMinterClient

logger = logging.getLogger(__name__)

# Names the NFT minter returns for ids it doesn't know
PLACEHOLDER_TOKEN_NAMES = ('', '0x', '0')


def log_only(contract_id: str) -> Handler:
    """Handler for events the pipeline observes but doesn't act on"""
    async def handle(log: LogEntry):
        logger.info(
            f"[{contract_id}] {log.event_name} at block {log.block_number}: {log.args}"
        )
    return handle


class DomainRegistryHandlers:
    """RegistrationRequested / OwnershipUpdateRequested -> pending records"""

    def __init__(self, storage):
        self.storage = storage

    async def on_registration_requested(self, log: LogEntry):
        await self._store(PendingEventKind.REGISTRATION, log)

    async def on_ownership_update_requested(self, log: LogEntry):
        await self._store(PendingEventKind.OWNERSHIP_UPDATE, log)

    async def _store(self, kind: PendingEventKind, log: LogEntry):
        event = PendingEvent(
            kind=kind,
            domain_name=log.args['domainName'],
            requester_address=log.args['requester'],
            fee_amount=int(log.args.get('fee', 0)),
            source_transaction_hash=log.transaction_hash,
            source_block_number=log.block_number,
        )
        try:
            await self.storage.pending(kind).insert(event)
        except DuplicateEventError:
            # Redelivery (reconnect, overlapping poll) - already stored
            logger.warning(
                f"Duplicate {kind.value} event for {event.domain_name} (tx {event.source_transaction_hash})"
            )
            return

        logger.info(
            f"📥 Stored pending {kind.value}: {event.domain_name} "
            f"from {event.requester_address} (block {event.source_block_number})"
        )

    def kinds(self) -> List[EventKind]:
        return [
            EventKind('RegistrationRequested', self.on_registration_requested),
            EventKind('OwnershipUpdateRequested', self.on_ownership_update_requested),
            EventKind('RegistrationFeeUpdated', log_only(DOMAIN_REGISTRATION)),
            EventKind('OwnershipUpdateFeeUpdated', log_only(DOMAIN_REGISTRATION)),
        ]


class NftMinterHandlers:
    """NFTMinted -> nft_token_id on the domain record"""

    def __init__(self, storage):
        self.storage = storage

    async def on_nft_minted(self, log: LogEntry):
        domain_name = log.args['domainName']
        token_id = int(log.args['tokenId'])

        updated = await self.storage.domains.set_nft_token_id(domain_name, token_id)
        if not updated:
            logger.warning(f"NFTMinted for unknown domain {domain_name} (token {token_id}), skipped")
            return

        logger.info(f"🎨 Domain {domain_name} minted as NFT #{token_id}")

    def kinds(self) -> List[EventKind]:
        return [
            EventKind('NFTMinted', self.on_nft_minted),
            EventKind('DomainOwnerSet', log_only(NFT_MINTER)),
            EventKind('DomainMintableStatusSet', log_only(NFT_MINTER)),
            EventKind('DomainNFTMintedStatusSet', log_only(NFT_MINTER)),
        ]


class TokenMinterHandlers:
    """TokenCreated -> associated_token_address on the domain record"""

    def __init__(self, storage, nft_minter: NftMinterClient):
        self.storage = storage
        self.nft_minter = nft_minter

    async def on_token_created(self, log: LogEntry):
        nft_id = int(log.args['nftId'])
        token_address = log.args['tokenAddress']

        domain_name = await self.nft_minter.get_token_name_from_id(nft_id)
        if domain_name in PLACEHOLDER_TOKEN_NAMES:
            logger.warning(f"TokenCreated for NFT #{nft_id} has no domain name, skipped")
            return

        updated = await self.storage.domains.set_token_address(domain_name, token_address)
        if not updated:
            logger.warning(f"TokenCreated for unknown domain {domain_name} (NFT #{nft_id}), skipped")
            return

        logger.info(f"🪙 Domain {domain_name} token created at {token_address}")

    def kinds(self) -> List[EventKind]:
        return [
            EventKind('TokenCreated', self.on_token_created),
            EventKind('NFTReceived', log_only(TOKEN_MINTER)),
            EventKind('FixedFeeUpdated', log_only(TOKEN_MINTER)),
            EventKind('LaunchpadContractUpdated', log_only(TOKEN_MINTER)),
            EventKind('ProceedsWithdrawn', log_only(TOKEN_MINTER)),
        ]


def build_event_watchers(
    settings: Settings,
    gateway: ChainGateway,
    storage,
    nft_minter: NftMinterClient,
    on_error: Optional[OnError] = None
) -> WatcherGroup:
    """The three watcher configurations, sharing gateway, storage and error callback"""
    watchers = [
        EventWatcher(
            DOMAIN_REGISTRATION,
            DOMAIN_REGISTRATION_ABI,
            DomainRegistryHandlers(storage).kinds(),
            gateway,
            settings,
            storage=storage,
            address_override=settings.domain_registration_contract,
            on_error=on_error,
        ),
        EventWatcher(
            NFT_MINTER,
            NFT_MINTER_ABI,
            NftMinterHandlers(storage).kinds(),
            gateway,
            settings,
            storage=storage,
            address_override=settings.nft_minter_contract,
            on_error=on_error,
        ),
        EventWatcher(
            TOKEN_MINTER,
            TOKEN_MINTER_ABI,
            TokenMinterHandlers(storage, nft_minter).kinds(),
            gateway,
            settings,
            storage=storage,
            address_override=settings.token_minter_contract,
            on_error=on_error,
        ),
    ]
    return WatcherGroup(watchers)
