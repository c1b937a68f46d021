from __future__ import annotations

from eth_utils import is_address, to_checksum_address
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from orderwatch.domain.pool import DEFAULT_TOKEN_DECIMALS, PoolKey, TokenPair

# Arbitrum Sepolia deployment of the confidential market-order hook and its pool.
DEFAULT_MARKET_ORDER_HOOK = "0xA98e541A012D4198b7122D72B38dD0149Ba94080"
DEFAULT_CIPHER_TOKEN = "0x3Ee7933017691D1AadCf97244D18c1130b148B88"
DEFAULT_MASK_TOKEN = "0x9828f7e6A63Aa269d7f4927bC803F6f8854218d1"
DEFAULT_POOL_SWAP = "0xf3a39c86dbd13c45365e57fb90fe413371f65af8"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    rpc_url: str = Field(default="http://127.0.0.1:8545", alias="RPC_URL")
    rpc_timeout_seconds: float = Field(default=10.0, alias="RPC_TIMEOUT_SECONDS")
    wallet_address: str | None = Field(default=None, alias="WALLET_ADDRESS")

    market_order_hook: str = Field(default=DEFAULT_MARKET_ORDER_HOOK, alias="MARKET_ORDER_HOOK")
    pool_swap: str = Field(default=DEFAULT_POOL_SWAP, alias="POOL_SWAP")
    cipher_token: str = Field(default=DEFAULT_CIPHER_TOKEN, alias="CIPHER_TOKEN")
    mask_token: str = Field(default=DEFAULT_MASK_TOKEN, alias="MASK_TOKEN")
    cipher_symbol: str = Field(default="CPH", alias="CIPHER_SYMBOL")
    mask_symbol: str = Field(default="MSK", alias="MASK_SYMBOL")
    pool_fee: int = Field(default=3000, alias="POOL_FEE")
    pool_tick_spacing: int = Field(default=60, alias="POOL_TICK_SPACING")
    token_decimals: int = Field(default=DEFAULT_TOKEN_DECIMALS, alias="TOKEN_DECIMALS")

    decrypt_poll_interval_seconds: float = Field(
        default=2.0, alias="DECRYPT_POLL_INTERVAL_SECONDS"
    )
    receipt_poll_interval_seconds: float = Field(
        default=1.0, alias="RECEIPT_POLL_INTERVAL_SECONDS"
    )
    market_order_gas: int = Field(default=1_000_000, alias="MARKET_ORDER_GAS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("market_order_hook", "pool_swap", "cipher_token", "mask_token")
    def validate_contract_address(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError(f"invalid contract address: {value!r}")
        return to_checksum_address(value)

    @field_validator("wallet_address")
    def validate_wallet_address(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        if not is_address(value.strip()):
            raise ValueError(f"invalid WALLET_ADDRESS: {value!r}")
        return to_checksum_address(value.strip())

    @field_validator(
        "decrypt_poll_interval_seconds",
        "receipt_poll_interval_seconds",
        "rpc_timeout_seconds",
    )
    def validate_positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("polling intervals and timeouts must be > 0")
        return value

    @field_validator("token_decimals")
    def validate_token_decimals(cls, value: int) -> int:
        if not 0 <= value <= 36:
            raise ValueError("TOKEN_DECIMALS must be between 0 and 36")
        return value

    @field_validator("market_order_gas")
    def validate_gas(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("MARKET_ORDER_GAS must be > 0")
        return value

    def pool_key(self) -> PoolKey:
        return PoolKey(
            currency0=self.cipher_token,
            currency1=self.mask_token,
            fee=self.pool_fee,
            tick_spacing=self.pool_tick_spacing,
            hooks=self.market_order_hook,
        )

    def token_pair(self) -> TokenPair:
        return TokenPair(symbol0=self.cipher_symbol, symbol1=self.mask_symbol)
