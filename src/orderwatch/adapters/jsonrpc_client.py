from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from eth_utils import to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from orderwatch.domain.abi import (
    FLUSH_ORDER,
    GET_ORDER_DECRYPT_STATUS,
    PLACE_MARKET_ORDER,
    SWAP,
)
from orderwatch.domain.models import (
    EncryptedInput,
    LogEntry,
    OrderWatchError,
    ReceiptStatus,
    TransactionReceipt,
)
from orderwatch.domain.pool import PoolKey, SwapParams, SwapSettings
from orderwatch.security.redaction import redact_rpc_url

logger = logging.getLogger(__name__)


class ConfigurationError(OrderWatchError, ValueError):
    """Raised when required runtime configuration is missing or invalid."""


class ChainRequestError(OrderWatchError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JsonRpcError(ChainRequestError):
    def __init__(self, message: str, *, code: int, data: object = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


def _hex_to_int(value: object) -> object:
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    return value


class RpcLog(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: str
    topics: list[str] = Field(default_factory=list)
    data: str = "0x"
    log_index: int = Field(alias="logIndex")

    @field_validator("log_index", mode="before")
    @classmethod
    def parse_log_index(cls, value: object) -> object:
        return _hex_to_int(value)

    def to_domain(self) -> LogEntry:
        return LogEntry(
            address=self.address,
            topics=tuple(self.topics),
            data=self.data,
            log_index=self.log_index,
        )


class RpcReceipt(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transaction_hash: str = Field(alias="transactionHash")
    status: int = 1
    block_number: int | None = Field(default=None, alias="blockNumber")
    logs: list[RpcLog] = Field(default_factory=list)

    @field_validator("status", "block_number", mode="before")
    @classmethod
    def parse_quantities(cls, value: object) -> object:
        return _hex_to_int(value)

    def to_domain(self) -> TransactionReceipt:
        return TransactionReceipt(
            transaction_hash=self.transaction_hash,
            status=ReceiptStatus.SUCCESS if self.status == 1 else ReceiptStatus.REVERTED,
            block_number=self.block_number,
            logs=tuple(
                log.to_domain() for log in sorted(self.logs, key=lambda item: item.log_index)
            ),
        )


class JsonRpcChainClient:
    """Ethereum JSON-RPC client for the confidential market-order hook.

    Writes go through ``eth_sendTransaction`` and therefore need an account the
    node can sign for (a local dev node or a signing proxy). Key management is
    not handled here.
    """

    def __init__(
        self,
        *,
        url: str,
        market_order_hook: str,
        pool_swap: str,
        account: str | None = None,
        timeout_seconds: float = 10.0,
        receipt_poll_interval_seconds: float = 1.0,
        market_order_gas: int = 1_000_000,
        client: httpx.AsyncClient | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.market_order_hook = to_checksum_address(market_order_hook)
        self.pool_swap = to_checksum_address(pool_swap)
        self.account = to_checksum_address(account) if account else None
        self.receipt_poll_interval_seconds = receipt_poll_interval_seconds
        self.market_order_gas = market_order_gas
        timeout = httpx.Timeout(timeout=timeout_seconds, connect=min(5.0, timeout_seconds))
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep_fn
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.url, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ChainRequestError(
                f"{method} transport failure against {redact_rpc_url(self.url)}: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise ChainRequestError(
                f"{method} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ChainRequestError(f"{method} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ChainRequestError(f"{method} returned an unexpected payload")

        error = body.get("error")
        if isinstance(error, dict):
            raise JsonRpcError(
                str(error.get("message") or "json-rpc error"),
                code=int(error.get("code", -32000)),
                data=error.get("data"),
            )
        return body.get("result")

    async def chain_id(self) -> int:
        return int(await self.request("eth_chainId", []), 16)

    async def default_account(self) -> str | None:
        accounts = await self.request("eth_accounts", [])
        if isinstance(accounts, list) and accounts:
            return to_checksum_address(accounts[0])
        return None

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        raw = await self.request("eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return None
        try:
            return RpcReceipt.model_validate(raw).to_domain()
        except ValidationError as exc:
            raise ChainRequestError(f"malformed receipt for {tx_hash}") from exc

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        while True:
            try:
                receipt = await self.get_transaction_receipt(tx_hash)
            except JsonRpcError:
                raise
            except ChainRequestError:
                logger.warning(
                    "Receipt lookup failed, still waiting",
                    exc_info=True,
                    extra={"extra": {"tx_hash": tx_hash}},
                )
                receipt = None
            if receipt is not None:
                return receipt
            await self._sleep(self.receipt_poll_interval_seconds)

    async def get_order_decrypt_status(self, handle: int) -> bool:
        call = {"to": self.market_order_hook, "data": GET_ORDER_DECRYPT_STATUS.encode_call(handle)}
        raw = await self.request("eth_call", [call, "latest"])
        if not isinstance(raw, str):
            raise ChainRequestError("getOrderDecryptStatus returned no data")
        (status,) = GET_ORDER_DECRYPT_STATUS.decode_result(raw)
        return bool(status)

    async def place_market_order(
        self,
        pool_key: PoolKey,
        zero_for_one: bool,
        encrypted_input: EncryptedInput,
    ) -> str:
        data = PLACE_MARKET_ORDER.encode_call(
            pool_key.as_abi_tuple(), zero_for_one, encrypted_input.as_abi_tuple()
        )
        return await self._send_transaction(self.market_order_hook, data, gas=self.market_order_gas)

    async def flush_order(self, pool_key: PoolKey) -> str:
        data = FLUSH_ORDER.encode_call(pool_key.as_abi_tuple())
        return await self._send_transaction(self.market_order_hook, data)

    async def swap(
        self,
        pool_key: PoolKey,
        params: SwapParams,
        settings: SwapSettings,
        hook_data: bytes,
    ) -> str:
        data = SWAP.encode_call(
            pool_key.as_abi_tuple(),
            params.as_abi_tuple(),
            settings.as_abi_tuple(),
            hook_data,
        )
        return await self._send_transaction(self.pool_swap, data)

    async def _send_transaction(self, to: str, data: str, *, gas: int | None = None) -> str:
        if self.account is None:
            raise ConfigurationError("WALLET_ADDRESS is required to send transactions")
        tx: dict[str, str] = {"from": self.account, "to": to, "data": data}
        if gas is not None:
            tx["gas"] = hex(gas)
        tx_hash = await self.request("eth_sendTransaction", [tx])
        if not isinstance(tx_hash, str):
            raise ChainRequestError("eth_sendTransaction returned no transaction hash")
        logger.info("Transaction sent", extra={"extra": {"tx_hash": tx_hash, "to": to}})
        return tx_hash
