from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

import pytest

from orderwatch.config import Settings
from orderwatch.domain.abi import MARKET_ORDER_EVENTS, encode_event_log
from orderwatch.domain.models import (
    EncryptedInput,
    EncryptedType,
    MarketOrderEventName,
    ReceiptStatus,
    TransactionReceipt,
)
from orderwatch.domain.pool import PoolKey

HOOK = "0xA98e541A012D4198b7122D72B38dD0149Ba94080"
WALLET = "0x" + "11" * 20
OTHER_USER = "0x" + "22" * 20

_SCHEMAS = {schema.name: schema for schema in MARKET_ORDER_EVENTS}


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


class FakeChain:
    """Receipt source, reader and writer driven by the test.

    Receipts resolve only once ``deliver`` is called, each waiter held back by
    the next entry of ``receipt_lag`` in event-loop ticks; decryption answers
    are consumed per handle, ``False`` once the script runs out.
    """

    def __init__(self) -> None:
        self._receipts: dict[str, asyncio.Future[TransactionReceipt]] = {}
        self.decrypt_answers: dict[int, list[bool | Exception]] = {}
        self.status_calls: list[int] = []
        self.tx_hashes: list[str] = []
        self.placed: list[tuple[PoolKey, bool, EncryptedInput]] = []
        self.flushed: list[PoolKey] = []
        self.swaps: list[tuple[object, ...]] = []
        self.write_error: Exception | None = None
        self.flush_gate: asyncio.Event | None = None
        self.receipt_lag: list[int] = []

    def _future(self, tx_hash: str) -> asyncio.Future[TransactionReceipt]:
        key = tx_hash.lower()
        if key not in self._receipts:
            self._receipts[key] = asyncio.get_running_loop().create_future()
        return self._receipts[key]

    def deliver(self, receipt: TransactionReceipt) -> None:
        future = self._future(receipt.transaction_hash)
        if not future.done():
            future.set_result(receipt)

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        lag = self.receipt_lag.pop(0) if self.receipt_lag else 0
        receipt = await self._future(tx_hash)
        for _ in range(lag):
            await asyncio.sleep(0)
        return receipt

    async def get_order_decrypt_status(self, handle: int) -> bool:
        self.status_calls.append(handle)
        answers = self.decrypt_answers.get(handle) or []
        if not answers:
            return False
        answer = answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def _next_tx(self) -> str:
        if self.write_error is not None:
            raise self.write_error
        return self.tx_hashes.pop(0)

    async def place_market_order(
        self, pool_key: PoolKey, zero_for_one: bool, encrypted_input: EncryptedInput
    ) -> str:
        self.placed.append((pool_key, zero_for_one, encrypted_input))
        return self._next_tx()

    async def flush_order(self, pool_key: PoolKey) -> str:
        if self.flush_gate is not None:
            await self.flush_gate.wait()
        self.flushed.append(pool_key)
        return self._next_tx()

    async def swap(self, pool_key, params, settings, hook_data) -> str:  # type: ignore[no-untyped-def]
        self.swaps.append((pool_key, params, settings, hook_data))
        return self._next_tx()


class FakeEncryptor:
    def __init__(self) -> None:
        self.calls: list[tuple[int, EncryptedType]] = []

    async def encrypt(self, value: int, utype: EncryptedType) -> EncryptedInput:
        self.calls.append((value, utype))
        return EncryptedInput(ct_hash=value + 1, security_zone=0, utype=6, signature=b"\x01")


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def fake_encryptor() -> FakeEncryptor:
    return FakeEncryptor()


@pytest.fixture
def pool_key() -> PoolKey:
    return PoolKey(
        currency0="0x3Ee7933017691D1AadCf97244D18c1130b148B88",
        currency1="0x9828f7e6A63Aa269d7f4927bC803F6f8854218d1",
        fee=3000,
        tick_spacing=60,
        hooks=HOOK,
    )


ReceiptFactory = Callable[..., TransactionReceipt]


@pytest.fixture
def make_receipt() -> ReceiptFactory:
    """``make_receipt(tx_hash, [(event_name, user, handle), ...])``."""

    def _make(
        tx_hash: str,
        events: list[tuple[MarketOrderEventName, str, int]],
        *,
        status: ReceiptStatus = ReceiptStatus.SUCCESS,
        address: str = HOOK,
    ) -> TransactionReceipt:
        logs = tuple(
            encode_event_log(_SCHEMAS[name], address=address, log_index=index, user=user, handle=handle)
            for index, (name, user, handle) in enumerate(events)
        )
        return TransactionReceipt(transaction_hash=tx_hash, status=status, logs=logs)

    return _make


async def drain(rounds: int = 30) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle_loop() -> Callable[..., object]:
    return drain
