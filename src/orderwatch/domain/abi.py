from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from eth_abi import decode, encode
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
)

from orderwatch.domain.models import LogEntry, MarketOrderEventName

POOL_KEY_TYPE = "(address,address,uint24,int24,address)"
ENCRYPTED_INPUT_TYPE = "(uint256,uint8,uint8,bytes)"
SWAP_PARAMS_TYPE = "(bool,int256,uint160)"
SWAP_SETTINGS_TYPE = "(bool,bool)"


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSchema:
    name: MarketOrderEventName
    inputs: tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name.value}({','.join(item.type for item in self.inputs)})"

    @cached_property
    def topic(self) -> str:
        return encode_hex(event_signature_to_log_topic(self.signature))

    def decode(self, entry: LogEntry) -> dict[str, object]:
        indexed = [item for item in self.inputs if item.indexed]
        if len(entry.topics) != len(indexed) + 1:
            raise ValueError(
                f"{self.name.value} expects {len(indexed)} indexed topics, "
                f"got {len(entry.topics) - 1}"
            )
        values: dict[str, object] = {}
        for item, topic in zip(indexed, entry.topics[1:], strict=True):
            values[item.name] = decode([item.type], decode_hex(topic))[0]

        plain = [item for item in self.inputs if not item.indexed]
        if plain:
            decoded = decode([item.type for item in plain], decode_hex(entry.data or "0x"))
            for item, value in zip(plain, decoded, strict=True):
                values[item.name] = value
        return values


def _order_event(name: MarketOrderEventName) -> EventSchema:
    return EventSchema(
        name=name,
        inputs=(
            EventInput(name="user", type="address", indexed=True),
            EventInput(name="handle", type="uint256"),
        ),
    )


MARKET_ORDER_EVENTS: tuple[EventSchema, ...] = (
    _order_event(MarketOrderEventName.PLACED),
    _order_event(MarketOrderEventName.SETTLED),
    _order_event(MarketOrderEventName.FAILED),
)


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    arg_types: tuple[str, ...]
    return_types: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    @cached_property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_call(self, *args: object) -> str:
        return encode_hex(self.selector + encode(list(self.arg_types), list(args)))

    def decode_result(self, raw: str) -> tuple[object, ...]:
        return tuple(decode(list(self.return_types), decode_hex(raw)))


GET_ORDER_DECRYPT_STATUS = FunctionSpec(
    name="getOrderDecryptStatus", arg_types=("uint256",), return_types=("bool",)
)
PLACE_MARKET_ORDER = FunctionSpec(
    name="placeMarketOrder", arg_types=(POOL_KEY_TYPE, "bool", ENCRYPTED_INPUT_TYPE)
)
FLUSH_ORDER = FunctionSpec(name="flushOrder", arg_types=(POOL_KEY_TYPE,))
SWAP = FunctionSpec(
    name="swap",
    arg_types=(POOL_KEY_TYPE, SWAP_PARAMS_TYPE, SWAP_SETTINGS_TYPE, "bytes"),
)


def encode_event_log(
    schema: EventSchema,
    *,
    address: str,
    log_index: int,
    **values: object,
) -> LogEntry:
    """Build a log entry for ``schema``; used by fixtures and replay tooling."""
    topics = [schema.topic]
    for item in schema.inputs:
        if item.indexed:
            topics.append(encode_hex(encode([item.type], [values[item.name]])))
    plain = [item for item in schema.inputs if not item.indexed]
    data = encode_hex(encode([item.type for item in plain], [values[item.name] for item in plain]))
    return LogEntry(address=address, topics=tuple(topics), data=data, log_index=log_index)
