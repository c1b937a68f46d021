from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from orderwatch.domain.models import (
    EncryptedInput,
    EncryptedType,
    OrderWatchError,
    TransactionReceipt,
)
from orderwatch.domain.pool import PoolKey, SwapParams, SwapSettings


class ChainReader(Protocol):
    async def get_order_decrypt_status(self, handle: int) -> bool: ...


class ReceiptSource(Protocol):
    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt: ...


class ChainWriter(Protocol):
    async def place_market_order(
        self,
        pool_key: PoolKey,
        zero_for_one: bool,
        encrypted_input: EncryptedInput,
    ) -> str: ...

    async def flush_order(self, pool_key: PoolKey) -> str: ...

    async def swap(
        self,
        pool_key: PoolKey,
        params: SwapParams,
        settings: SwapSettings,
        hook_data: bytes,
    ) -> str: ...


class ChainClient(ChainReader, ReceiptSource, ChainWriter, Protocol):
    async def chain_id(self) -> int: ...

    async def default_account(self) -> str | None: ...

    async def close(self) -> None: ...


class EncryptedInputProducer(Protocol):
    """Confidential-computation client that turns a plaintext into a ciphertext input."""

    async def encrypt(self, value: int, utype: EncryptedType) -> EncryptedInput: ...


class SessionNotConnectedError(OrderWatchError):
    """Raised when a chain session is used before ``connect``."""


@dataclass(frozen=True)
class ChainSnapshot:
    client: ChainClient
    chain_id: int
    account: str | None
    connected_at: datetime


class ChainSession:
    """Explicitly passed holder of the connected chain client."""

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[ChainClient]],
        *,
        account: str | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._account = account
        self._snapshot: ChainSnapshot | None = None

    async def connect(self) -> ChainSnapshot:
        if self._snapshot is not None:
            return self._snapshot
        client = await self._client_factory()
        chain_id = await client.chain_id()
        account = self._account or await client.default_account()
        self._snapshot = ChainSnapshot(
            client=client,
            chain_id=chain_id,
            account=account,
            connected_at=datetime.now(UTC),
        )
        return self._snapshot

    def get_snapshot(self) -> ChainSnapshot | None:
        return self._snapshot

    def require_snapshot(self) -> ChainSnapshot:
        if self._snapshot is None:
            raise SessionNotConnectedError("chain session is not connected")
        return self._snapshot

    async def close(self) -> None:
        snapshot, self._snapshot = self._snapshot, None
        if snapshot is not None:
            await snapshot.client.close()
