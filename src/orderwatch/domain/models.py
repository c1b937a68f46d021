from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class OrderWatchError(Exception):
    """Base class for coordinator errors."""


class DuplicateOrderError(OrderWatchError):
    """Raised when an order id is registered twice."""


class UnknownOrderError(OrderWatchError, KeyError):
    """Raised when an operation targets an order id the store does not hold."""


class HandleConflictError(OrderWatchError):
    """Raised when a handle is already held by another tracked order."""


class OrderSubmissionError(OrderWatchError):
    """Raised when the order-book write fails before a transaction hash exists."""


class IllegalTransitionError(OrderWatchError):
    """Raised when a lifecycle transition skips a mandatory stage."""


class OrderStatus(StrEnum):
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED})


class LifecycleStage(StrEnum):
    CREATED = "created"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    AWAITING_DECRYPTION = "awaiting_decryption"
    DECRYPTED = "decrypted"
    QUEUED = "queued"
    SETTLED = "settled"
    FAILED = "failed"


class MarketOrderEventName(StrEnum):
    PLACED = "OrderPlaced"
    SETTLED = "OrderSettled"
    FAILED = "OrderFailed"


class ReceiptStatus(StrEnum):
    SUCCESS = "success"
    REVERTED = "reverted"


@dataclass(frozen=True)
class Order:
    id: str
    amount: str
    from_token: str
    to_token: str
    timestamp: datetime
    status: OrderStatus = OrderStatus.EXECUTING
    stage: LifecycleStage = LifecycleStage.CREATED
    handle: int | None = None
    tx_hash: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: tuple[str, ...]
    data: str
    log_index: int


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    status: ReceiptStatus
    logs: tuple[LogEntry, ...] = ()
    block_number: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ReceiptStatus.SUCCESS


@dataclass(frozen=True)
class ParsedEvent:
    event_name: MarketOrderEventName
    user: str
    handle: int
    transaction_hash: str
    log_index: int


@dataclass(frozen=True)
class DecodedEvents:
    placed: list[ParsedEvent] = field(default_factory=list)
    settled: list[ParsedEvent] = field(default_factory=list)
    failed: list[ParsedEvent] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.placed) + len(self.settled) + len(self.failed)

    def resolutions(self) -> list[ParsedEvent]:
        """Settlement and failure events in log order, last writer per handle."""
        merged = sorted(self.settled + self.failed, key=lambda event: event.log_index)
        latest: dict[int, ParsedEvent] = {}
        for event in merged:
            latest.pop(event.handle, None)
            latest[event.handle] = event
        return list(latest.values())


class EncryptedType(StrEnum):
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    UINT128 = "uint128"


ENCRYPTED_TYPE_CODES: dict[EncryptedType, int] = {
    EncryptedType.UINT8: 2,
    EncryptedType.UINT16: 3,
    EncryptedType.UINT32: 4,
    EncryptedType.UINT64: 5,
    EncryptedType.UINT128: 6,
}


@dataclass(frozen=True)
class EncryptedInput:
    ct_hash: int
    security_zone: int
    utype: int
    signature: bytes

    def as_abi_tuple(self) -> tuple[int, int, int, bytes]:
        return (self.ct_hash, self.security_zone, self.utype, self.signature)
