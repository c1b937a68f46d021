from __future__ import annotations

import logging
from collections.abc import Iterable

from eth_utils import is_address, to_checksum_address

from orderwatch.domain.abi import MARKET_ORDER_EVENTS, EventSchema
from orderwatch.domain.models import (
    DecodedEvents,
    MarketOrderEventName,
    ParsedEvent,
    TransactionReceipt,
)

logger = logging.getLogger(__name__)


def normalize_address(value: object) -> str | None:
    if not isinstance(value, str) or not is_address(value):
        return None
    return to_checksum_address(value)


class EventDecoder:
    """Decodes market-order events out of a transaction receipt.

    Entries that do not match a known schema, or fail to decode, are skipped
    one by one; a bad entry never hides the good ones around it.
    """

    def __init__(
        self,
        schemas: Iterable[EventSchema] = MARKET_ORDER_EVENTS,
        *,
        contract_address: str | None = None,
    ) -> None:
        self._by_topic = {schema.topic.lower(): schema for schema in schemas}
        self.contract_address = normalize_address(contract_address) if contract_address else None

    def decode(
        self,
        receipt: TransactionReceipt | None,
        user_filter: str | None = None,
    ) -> DecodedEvents:
        result = DecodedEvents()
        if receipt is None or not receipt.logs:
            return result

        wanted_user = normalize_address(user_filter) if user_filter else None
        for entry in sorted(receipt.logs, key=lambda item: item.log_index):
            if self.contract_address is not None and (
                normalize_address(entry.address) != self.contract_address
            ):
                continue
            if not entry.topics:
                continue
            schema = self._by_topic.get(entry.topics[0].lower())
            if schema is None:
                continue
            try:
                values = schema.decode(entry)
                user = normalize_address(values["user"])
                handle = int(values["handle"])  # type: ignore[call-overload]
            except Exception:  # noqa: BLE001
                logger.debug(
                    "Skipping undecodable log entry",
                    exc_info=True,
                    extra={
                        "extra": {
                            "tx_hash": receipt.transaction_hash,
                            "log_index": entry.log_index,
                        }
                    },
                )
                continue
            if user is None:
                continue
            if wanted_user is not None and user != wanted_user:
                continue

            event = ParsedEvent(
                event_name=schema.name,
                user=user,
                handle=handle,
                transaction_hash=receipt.transaction_hash,
                log_index=entry.log_index,
            )
            if schema.name is MarketOrderEventName.PLACED:
                result.placed.append(event)
            elif schema.name is MarketOrderEventName.SETTLED:
                result.settled.append(event)
            else:
                result.failed.append(event)

        if result.total:
            logger.info(
                "Decoded market order events",
                extra={
                    "extra": {
                        "tx_hash": receipt.transaction_hash,
                        "placed": len(result.placed),
                        "settled": len(result.settled),
                        "failed": len(result.failed),
                    }
                },
            )
        return result

    def has_market_order_events(
        self, receipt: TransactionReceipt, user_filter: str | None = None
    ) -> bool:
        return self.decode(receipt, user_filter).total > 0

    def first_placed_event(
        self, receipt: TransactionReceipt, user_filter: str
    ) -> ParsedEvent | None:
        placed = self.decode(receipt, user_filter).placed
        return placed[0] if placed else None

    def settled_events(
        self, receipt: TransactionReceipt, user_filter: str | None = None
    ) -> list[ParsedEvent]:
        return self.decode(receipt, user_filter).settled

    def failed_events(
        self, receipt: TransactionReceipt, user_filter: str | None = None
    ) -> list[ParsedEvent]:
        return self.decode(receipt, user_filter).failed
