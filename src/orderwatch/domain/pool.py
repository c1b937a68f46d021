from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

MIN_SQRT_PRICE = 4295128739 + 1
MAX_SQRT_PRICE = 1461446703485210103287273052203988822378723970342 - 1
HOOK_DATA = b""
DEFAULT_TOKEN_DECIMALS = 18


@dataclass(frozen=True)
class PoolKey:
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str

    def as_abi_tuple(self) -> tuple[str, str, int, int, str]:
        return (self.currency0, self.currency1, self.fee, self.tick_spacing, self.hooks)


@dataclass(frozen=True)
class SwapParams:
    zero_for_one: bool
    amount_specified: int
    sqrt_price_limit_x96: int

    def as_abi_tuple(self) -> tuple[bool, int, int]:
        return (self.zero_for_one, self.amount_specified, self.sqrt_price_limit_x96)


@dataclass(frozen=True)
class SwapSettings:
    take_claims: bool = False
    settle_using_burn: bool = False

    def as_abi_tuple(self) -> tuple[bool, bool]:
        return (self.take_claims, self.settle_using_burn)


@dataclass(frozen=True)
class TokenPair:
    """Symbols of the pool currencies; currency0 selling means zero-for-one."""

    symbol0: str = "CPH"
    symbol1: str = "MSK"

    def is_zero_for_one(self, from_symbol: str) -> bool:
        return from_symbol.strip().upper() == self.symbol0.upper()


def parse_units(value: str, decimals: int = DEFAULT_TOKEN_DECIMALS) -> int:
    raw = str(value).strip()
    if not raw:
        raise ValueError("amount must not be empty")
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"amount must be a finite non-negative number: {value!r}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {value!r} has more than {decimals} decimals")
    return int(scaled)


def build_swap_params(amount: int, *, zero_for_one: bool) -> SwapParams:
    return SwapParams(
        zero_for_one=zero_for_one,
        amount_specified=-amount,
        sqrt_price_limit_x96=MIN_SQRT_PRICE if zero_for_one else MAX_SQRT_PRICE,
    )
