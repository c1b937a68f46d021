from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from orderwatch.adapters.chain import ReceiptSource
from orderwatch.domain.models import (
    MarketOrderEventName,
    OrderStatus,
    ParsedEvent,
    TransactionReceipt,
)
from orderwatch.logging_context import with_logging_context
from orderwatch.services.callback_slot import CallbackSlot
from orderwatch.services.event_decoder import EventDecoder
from orderwatch.services.order_store import OrderStore
from orderwatch.services.receipt_watcher import ReceiptWatcher

logger = logging.getLogger(__name__)

_RESOLUTION_STATUS = {
    MarketOrderEventName.SETTLED: OrderStatus.COMPLETED,
    MarketOrderEventName.FAILED: OrderStatus.FAILED,
}


class ProcessedReceipts:
    """Transaction hashes whose receipts have already been applied."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def claim(self, tx_hash: str) -> bool:
        key = tx_hash.lower()
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, tx_hash: object) -> bool:
        return isinstance(tx_hash, str) and tx_hash.lower() in self._seen

    def __len__(self) -> int:
        return len(self._seen)


@dataclass(frozen=True)
class CorrelationReport:
    tx_hash: str
    duplicate: bool = False
    reverted: bool = False
    placed: list[ParsedEvent] = field(default_factory=list)
    resolutions: list[ParsedEvent] = field(default_factory=list)
    applied_handles: list[int] = field(default_factory=list)

    @property
    def ignored_handles(self) -> list[int]:
        applied = set(self.applied_handles)
        return [event.handle for event in self.resolutions if event.handle not in applied]


class SettlementCorrelator:
    """Routes the market-order events of one watched transaction into the store.

    Placement events are handed to ``on_placed``; the correlator does not
    confirm orders itself. Every settlement/failure event is applied by
    handle, whichever order it belongs to. A receipt already applied through
    another correlator sharing the ledger only yields its placements and the
    resolutions of the handles those placements introduce.
    """

    def __init__(
        self,
        *,
        source: ReceiptSource,
        decoder: EventDecoder,
        store: OrderStore,
        processed: ProcessedReceipts,
        user_filter: str | None = None,
        on_placed: Callable[[ParsedEvent], object] | None = None,
        on_resolved: Callable[[ParsedEvent, bool], object] | None = None,
        on_report: Callable[[CorrelationReport], object] | None = None,
    ) -> None:
        self._decoder = decoder
        self._store = store
        self._processed = processed
        self.user_filter = user_filter
        self.on_placed: CallbackSlot[[ParsedEvent]] = CallbackSlot(on_placed)
        self.on_resolved: CallbackSlot[[ParsedEvent, bool]] = CallbackSlot(on_resolved)
        self.on_report: CallbackSlot[[CorrelationReport]] = CallbackSlot(on_report)
        self._watcher = ReceiptWatcher(source, on_receipt=self.apply_receipt)
        self.last_report: CorrelationReport | None = None

    @property
    def tx_hash(self) -> str | None:
        return self._watcher.tx_hash

    @property
    def is_monitoring(self) -> bool:
        return self._watcher.is_monitoring

    def bind(self, tx_hash: str | None) -> None:
        self._watcher.watch(tx_hash)

    async def wait(self) -> CorrelationReport | None:
        await self._watcher.wait()
        return self.last_report

    def cancel(self) -> None:
        self._watcher.cancel()

    async def aclose(self) -> None:
        await self._watcher.aclose()

    def apply_receipt(self, receipt: TransactionReceipt) -> CorrelationReport:
        tx_hash = receipt.transaction_hash
        with with_logging_context(tx_hash=tx_hash):
            placed = self._decoder.decode(receipt, self.user_filter).placed
            decoded = self._decoder.decode(receipt)
            resolutions = decoded.resolutions()
            # Placement is delivered even when another watch already applied the
            # receipt; assigning the same handle twice leaves the store unchanged.
            for event in placed:
                self.on_placed(event)

            if not self._processed.claim(tx_hash):
                # Only handles placed by this receipt can still be unresolved.
                new_handles = {event.handle for event in placed}
                resolutions = [event for event in resolutions if event.handle in new_handles]
                logger.debug(
                    "Receipt already processed",
                    extra={"extra": {"tx_hash": tx_hash, "placed": sorted(new_handles)}},
                )
                report = CorrelationReport(
                    tx_hash=tx_hash,
                    duplicate=True,
                    reverted=not receipt.succeeded,
                    placed=placed,
                    resolutions=resolutions,
                    applied_handles=self._apply_resolutions(resolutions),
                )
                self.last_report = report
                self.on_report(report)
                return report

            if not receipt.succeeded and not decoded.failed:
                logger.warning(
                    "Transaction reverted without an order failure event",
                    extra={"extra": {"tx_hash": tx_hash}},
                )
            applied = self._apply_resolutions(resolutions)

        report = CorrelationReport(
            tx_hash=tx_hash,
            reverted=not receipt.succeeded,
            placed=placed,
            resolutions=resolutions,
            applied_handles=applied,
        )
        self.last_report = report
        self.on_report(report)
        return report

    def _apply_resolutions(self, resolutions: list[ParsedEvent]) -> list[int]:
        applied: list[int] = []
        for event in resolutions:
            changed = self._store.update_status_by_handle(
                event.handle, _RESOLUTION_STATUS[event.event_name]
            )
            if changed:
                applied.append(event.handle)
                logger.info(
                    "Order resolved by handle",
                    extra={
                        "extra": {
                            "handle": event.handle,
                            "event": event.event_name.value,
                            "log_index": event.log_index,
                        }
                    },
                )
            self.on_resolved(event, changed)
        return applied
