"""
Chain Gateway - the pipeline's only view of an EVM node.

ChainGateway is the interface the watchers, the NFT minter client and the
token-created handler consume. Web3ChainGateway implements it with web3.py:
- HTTP provider for reads, eth_getLogs, writes and receipts
- one websocket connection per live subscription (eth_subscribe "logs")
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from eth_account import Account
from eth_utils import event_abi_to_log_topic
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3, WebSocketProvider
from web3.exceptions import TimeExhausted

from chainsync.config.abis import event_abi
from chainsync.errors import ConfigurationError, TransientNetworkError
from chainsync.models.log_entry import LogEntry

logger = logging.getLogger(__name__)

OnLogs = Callable[[List[LogEntry]], Awaitable[None]]
OnError = Callable[[BaseException], Any]
Unsubscribe = Callable[[], Awaitable[None]]


class ChainGateway(ABC):
    """
    Read/write/log access to one chain.

    supports_subscriptions tells the watchers whether watch_event() can be
    used; chains without it fall back to block-range polling.
    """

    supports_subscriptions: bool = False

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain height"""

    @abstractmethod
    async def get_logs(
        self,
        address: str,
        abi: list,
        event_name: str,
        from_block: int,
        to_block: int
    ) -> List[LogEntry]:
        """Decoded logs of one event in [from_block, to_block]"""

    @abstractmethod
    async def watch_event(
        self,
        address: str,
        abi: list,
        event_name: str,
        on_logs: OnLogs,
        on_error: OnError
    ) -> Unsubscribe:
        """Push-subscribe to one event; returns an async unsubscribe callable"""

    @abstractmethod
    async def read_contract(self, address: str, abi: list, function_name: str, args: Sequence = ()) -> Any:
        """Call a view function"""

    @abstractmethod
    async def write_contract(self, address: str, abi: list, function_name: str, args: Sequence = ()) -> str:
        """Send a transaction; returns the (unconfirmed) transaction hash"""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> dict:
        """Wait for one confirmation of a sent transaction"""

    async def close(self):
        """Release provider resources"""


def _to_log_entry(event_data) -> LogEntry:
    return LogEntry(
        address=event_data['address'],
        event_name=event_data['event'],
        args=dict(event_data['args']),
        block_number=int(event_data['blockNumber']),
        log_index=int(event_data['logIndex']),
        transaction_hash=Web3.to_hex(event_data['transactionHash']),
    )


class Web3ChainGateway(ChainGateway):
    """
    web3.py implementation of ChainGateway.

    Writes are signed locally with PRIVATE_KEY; without it the gateway is
    read-only and write_contract() raises ConfigurationError.
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: Optional[str] = None,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None
    ):
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.chain_id = chain_id
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key) if private_key else None
        self.supports_subscriptions = bool(ws_url)
        self._nonce_lock = asyncio.Lock()
        self._subscriptions = set()

    def _contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def get_block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def get_logs(
        self,
        address: str,
        abi: list,
        event_name: str,
        from_block: int,
        to_block: int
    ) -> List[LogEntry]:
        event = getattr(self._contract(address, abi).events, event_name)()
        events = await event.get_logs(from_block=from_block, to_block=to_block)
        return [_to_log_entry(e) for e in events]

    async def read_contract(self, address: str, abi: list, function_name: str, args: Sequence = ()) -> Any:
        contract = self._contract(address, abi)
        return await contract.get_function_by_name(function_name)(*args).call()

    async def write_contract(self, address: str, abi: list, function_name: str, args: Sequence = ()) -> str:
        if self.account is None:
            raise ConfigurationError("PRIVATE_KEY is required for contract writes")

        contract = self._contract(address, abi)
        call = contract.get_function_by_name(function_name)(*args)

        # Serialize nonce allocation so concurrent writes don't collide
        async with self._nonce_lock:
            nonce = await self.w3.eth.get_transaction_count(self.account.address, 'pending')
            chain_id = self.chain_id or await self.w3.eth.chain_id
            # build_transaction estimates gas, which simulates the call first
            tx = await call.build_transaction({
                'from': self.account.address,
                'nonce': nonce,
                'chainId': chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"Transaction sent: {tx_hex} ({function_name} on {address})")
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> dict:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or 120)
        except TimeExhausted as e:
            raise TransientNetworkError(f"Timed out waiting for receipt of {tx_hash}") from e
        return dict(receipt)

    async def watch_event(
        self,
        address: str,
        abi: list,
        event_name: str,
        on_logs: OnLogs,
        on_error: OnError
    ) -> Unsubscribe:
        if not self.ws_url:
            raise ConfigurationError("WS_RPC_URL is required for live subscriptions")

        topic = Web3.to_hex(event_abi_to_log_topic(event_abi(abi, event_name)))
        task = asyncio.create_task(
            self._run_subscription(address, abi, event_name, topic, on_logs, on_error),
            name=f"subscription:{event_name}@{address}",
        )
        self._subscriptions.add(task)
        task.add_done_callback(self._subscriptions.discard)

        async def unsubscribe():
            if task.done():
                return
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        return unsubscribe

    async def _run_subscription(self, address, abi, event_name, topic, on_logs, on_error):
        event = getattr(self._contract(address, abi).events, event_name)()
        try:
            async with AsyncWeb3(WebSocketProvider(self.ws_url)) as ws:
                subscription_id = await ws.eth.subscribe('logs', {
                    'address': Web3.to_checksum_address(address),
                    'topics': [topic],
                })
                logger.debug(f"Subscribed to {event_name} on {address} ({subscription_id})")

                async for payload in ws.socket.process_subscriptions():
                    if payload.get('subscription') != subscription_id:
                        continue
                    raw_log = payload['result']
                    if raw_log.get('removed'):
                        # Reorged out; the replacement log is delivered separately
                        continue
                    await on_logs([_to_log_entry(event.process_log(raw_log))])

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Subscription for {event_name} on {address} failed: {e}")
            result = on_error(e)
            if inspect.isawaitable(result):
                await result

    async def close(self):
        for task in list(self._subscriptions):
            task.cancel()
        disconnect = getattr(self.w3.provider, 'disconnect', None)
        if disconnect is not None:
            await disconnect()
