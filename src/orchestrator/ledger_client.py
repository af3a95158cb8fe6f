# src/orchestrator/ledger_client.py

import asyncio
import json
from typing import Any, Callable, Dict, List, Union

import aiohttp
from eth_account import Account
from eth_utils import to_hex
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD
from web3.middleware import SignAndSendRawMiddlewareBuilder

from common.config import Config
from common.errors import ConfigError, ProtocolError
from common.logging_utils import log_event


CLIENT_CONTRACT = "client"
ORACLE_CONTRACT = "oracle"

# Event names as they appear in the contract ABIs
REQUEST_SENT_EVENT = "RequestSent"
RESPONSE_EVENT = "OCRResponse"
USER_CALLBACK_ERROR_EVENT = "UserCallbackError"
USER_CALLBACK_RAW_ERROR_EVENT = "UserCallbackRawError"

EventHandler = Callable[[Dict[str, Any]], None]


def normalize_request_id(value: Union[bytes, str, int]) -> str:
    """
    Canonical correlation key: 0x-prefixed, lower-case, 32-byte hex.

    Strings must be 0x-prefixed hex; ints are taken by value.
    """
    if isinstance(value, int):
        return "0x" + value.to_bytes(32, "big").hex()
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).rjust(32, b"\x00").hex()
    text = value.lower()
    if not text.startswith("0x"):
        raise ValueError(f"Request id string must be 0x-prefixed hex, got {value!r}")
    return "0x" + text[2:].rjust(64, "0")


def load_abi(path: str) -> list:
    """
    Load an ABI from a compiled artifact ({"abi": [...]}) or a bare ABI list.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot load contract ABI from {path}: {e}") from e

    if isinstance(data, dict):
        if "abi" not in data:
            raise ConfigError(f"Contract artifact {path} has no 'abi' entry")
        data = data["abi"]
    if not isinstance(data, list):
        raise ConfigError(f"Contract ABI in {path} is not a list")
    return data


class Subscription:
    """
    Handle for a polling event filter. `unsubscribe()` stops the polling
    task and uninstalls the filter; calling it again is a no-op.
    """

    def __init__(self, w3: AsyncWeb3, event_name: str, event_filter, task: asyncio.Task):
        self.w3 = w3
        self.event_name = event_name
        self.event_filter = event_filter
        self.task = task
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True

        self.task.cancel()
        await asyncio.gather(self.task, return_exceptions=True)

        try:
            await self.w3.eth.uninstall_filter(self.event_filter.filter_id)
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_event(
                "ledger_filter_uninstall_failed",
                error=repr(e),
                extra={"event": self.event_name},
                level="warning",
            )

        log_event("ledger_unsubscribed", extra={"event": self.event_name}, level="debug")


class LedgerClient:
    """
    web3 adapter over the tracking client contract and the oracle contract.

    The signer key is used through web3's signing middleware so `transact()`
    calls are signed locally and sent as raw transactions.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        client_address: str,
        client_abi: list,
        oracle_address: str,
        oracle_abi: list,
        event_poll_interval_s: float = 2.0,
        confirmation_poll_interval_s: float = 1.0,
    ):
        if not private_key:
            raise ConfigError("A signer private key is required to submit requests")

        try:
            self.account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise ConfigError("Signer private key is invalid") from e

        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.w3.middleware_onion.inject(
            SignAndSendRawMiddlewareBuilder.build(self.account), layer=0
        )
        self.w3.eth.default_account = self.account.address

        self.client = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(client_address), abi=client_abi
        )
        self.oracle = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(oracle_address), abi=oracle_abi
        )

        self.event_poll_interval_s = event_poll_interval_s
        self.confirmation_poll_interval_s = confirmation_poll_interval_s

    @classmethod
    def from_config(cls, config: Config) -> "LedgerClient":
        return cls(
            rpc_url=config.RPC_URL,
            private_key=config.SIGNER_PRIVATE_KEY,
            client_address=config.CLIENT_CONTRACT_ADDRESS,
            client_abi=load_abi(config.CLIENT_ABI_PATH),
            oracle_address=config.ORACLE_ADDRESS,
            oracle_abi=load_abi(config.ORACLE_ABI_PATH),
            event_poll_interval_s=config.EVENT_POLL_INTERVAL_S,
        )

    # -------------------------
    # Reads
    # -------------------------
    async def get_don_public_key(self) -> bytes:
        return bytes(await self.oracle.functions.getDONPublicKey().call())

    async def get_all_node_addresses(self) -> List[str]:
        node_addresses, _public_keys = await self.oracle.functions.getAllNodePublicKeys().call()
        return list(node_addresses)

    async def contract_balance(self) -> int:
        return await self.w3.eth.get_balance(self.client.address)

    # -------------------------
    # Request submission
    # -------------------------
    async def execute_request(
        self,
        source: str,
        secrets: bytes,
        args: List[str],
        subscription_id: int,
        gas_budget: int,
        tx_gas_limit: int,
    ) -> str:
        tx_hash = await self.client.functions.executeRequest(
            source, secrets, args, subscription_id, gas_budget
        ).transact({"from": self.account.address, "gas": tx_gas_limit})
        return to_hex(tx_hash)

    async def wait_for_confirmations(self, tx_hash: str, confirmations: int):
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise ProtocolError(f"Request transaction {tx_hash} reverted")

        target_block = receipt["blockNumber"] + max(confirmations, 1) - 1
        while await self.w3.eth.block_number < target_block:
            await asyncio.sleep(self.confirmation_poll_interval_s)

        return receipt

    def request_sent_events(self, receipt) -> List[Dict[str, Any]]:
        events = self.client.events.RequestSent().process_receipt(receipt, errors=DISCARD)
        return [dict(event["args"]) for event in events]

    # -------------------------
    # Event subscriptions
    # -------------------------
    async def subscribe(self, contract: str, event_name: str, handler: EventHandler) -> Subscription:
        target = self.client if contract == CLIENT_CONTRACT else self.oracle
        event_filter = await getattr(target.events, event_name)().create_filter(from_block="latest")

        task = asyncio.create_task(self._pump(event_name, event_filter, handler))
        log_event("ledger_subscribed", extra={"contract": contract, "event": event_name})
        return Subscription(self.w3, event_name, event_filter, task)

    async def _pump(self, event_name: str, event_filter, handler: EventHandler) -> None:
        while True:
            try:
                entries = await event_filter.get_new_entries()
            except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError) as e:
                log_event(
                    "ledger_filter_poll_error",
                    error=repr(e),
                    extra={"event": event_name},
                    level="warning",
                )
                entries = []

            # One bad entry must not stop delivery of the rest
            for entry in entries:
                try:
                    handler(dict(entry["args"]))
                except Exception as e:
                    log_event(
                        "ledger_event_handler_failed",
                        error=repr(e),
                        extra={"event": event_name},
                        level="error",
                    )

            await asyncio.sleep(self.event_poll_interval_s)
