"""
Tests for NFT minter / token minter handlers and watcher wiring.
"""

from datetime import datetime, timezone

import pytest

from chainsync.config.chains import DOMAIN_REGISTRATION, NFT_MINTER, TOKEN_MINTER
from chainsync.services.event_handlers import (
    NftMinterHandlers,
    TokenMinterHandlers,
    build_event_watchers,
    log_only,
)
from chainsync.services.nft_minter import NftMinterClient
from chainsync.tests.fakes import FakeChainGateway, make_log, make_settings


async def seed_domain(storage, name="alice.flow"):
    await storage.domains.upsert_owner(name, "0xAlice", 747, datetime.now(timezone.utc))


# =============================================================================
# NFT minter
# =============================================================================

@pytest.mark.asyncio
async def test_nft_minted_sets_token_id(storage):
    await seed_domain(storage)
    handlers = NftMinterHandlers(storage)

    await handlers.on_nft_minted(make_log("NFTMinted", 10, tokenId=7, to="0xAlice", domainName="alice.flow"))

    record = await storage.domains.get_by_name("alice.flow")
    assert record.nft_token_id == 7


@pytest.mark.asyncio
async def test_nft_minted_for_unknown_domain_is_skipped(storage):
    handlers = NftMinterHandlers(storage)

    await handlers.on_nft_minted(make_log("NFTMinted", 10, tokenId=7, to="0xAlice", domainName="ghost.flow"))

    assert await storage.domains.get_by_name("ghost.flow") is None


# =============================================================================
# Token minter
# =============================================================================

def token_handlers(storage, token_names):
    gateway = FakeChainGateway()
    gateway.reads['getTokenNameFromId'] = lambda token_id: token_names.get(token_id, '')
    return TokenMinterHandlers(storage, NftMinterClient(gateway, make_settings())), gateway


@pytest.mark.asyncio
async def test_token_created_sets_token_address(storage):
    await seed_domain(storage)
    handlers, gateway = token_handlers(storage, {7: "alice.flow"})

    await handlers.on_token_created(make_log("TokenCreated", 20, nftId=7, tokenAddress="0xToken"))

    record = await storage.domains.get_by_name("alice.flow")
    assert record.associated_token_address == "0xToken"
    assert gateway.read_calls == [('getTokenNameFromId', [7])]


@pytest.mark.asyncio
@pytest.mark.parametrize("placeholder", ["", "0x", "0"])
async def test_token_created_with_placeholder_name_is_skipped(storage, placeholder):
    await seed_domain(storage)
    handlers, _ = token_handlers(storage, {7: placeholder})

    await handlers.on_token_created(make_log("TokenCreated", 20, nftId=7, tokenAddress="0xToken"))

    record = await storage.domains.get_by_name("alice.flow")
    assert record.associated_token_address is None


@pytest.mark.asyncio
async def test_token_created_for_unknown_domain_is_skipped(storage):
    handlers, _ = token_handlers(storage, {7: "ghost.flow"})

    await handlers.on_token_created(make_log("TokenCreated", 20, nftId=7, tokenAddress="0xToken"))

    assert await storage.domains.get_by_name("ghost.flow") is None


# =============================================================================
# Wiring
# =============================================================================

@pytest.mark.asyncio
async def test_log_only_handler_does_nothing_but_log(caplog):
    handler = log_only(TOKEN_MINTER)
    with caplog.at_level("INFO"):
        await handler(make_log("FixedFeeUpdated", 30, newFee=5))
    assert "FixedFeeUpdated" in caplog.text


def test_build_event_watchers_creates_three_configurations(storage):
    settings = make_settings(nft_minter_contract="0xminter")
    gateway = FakeChainGateway()
    watchers = build_event_watchers(settings, gateway, storage, NftMinterClient(gateway, settings))

    assert [w.contract_id for w in watchers] == [DOMAIN_REGISTRATION, NFT_MINTER, TOKEN_MINTER]
    assert watchers.get(NFT_MINTER).address_override == "0xminter"
    assert [k.name for k in watchers.get(TOKEN_MINTER).kinds] == [
        'TokenCreated', 'NFTReceived', 'FixedFeeUpdated', 'LaunchpadContractUpdated', 'ProceedsWithdrawn'
    ]
    assert [k.name for k in watchers.get(NFT_MINTER).kinds] == [
        'NFTMinted', 'DomainOwnerSet', 'DomainMintableStatusSet', 'DomainNFTMintedStatusSet'
    ]
