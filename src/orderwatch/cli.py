from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import asdict

from pydantic import ValidationError

from orderwatch.adapters.chain import ChainSession
from orderwatch.adapters.jsonrpc_client import ConfigurationError, JsonRpcChainClient
from orderwatch.config import Settings
from orderwatch.domain.models import OrderWatchError
from orderwatch.logging_context import with_logging_context
from orderwatch.logging_utils import setup_logging
from orderwatch.security.redaction import redact_rpc_url
from orderwatch.services.event_decoder import EventDecoder
from orderwatch.services.order_coordinator import OrderLifecycleCoordinator
from orderwatch.services.order_store import OrderStore
from orderwatch.services.settlement_correlator import CorrelationReport

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="orderwatch",
        description="Inspect and drive confidential market orders on the hook contract.",
    )
    parser.add_argument("--env-file", default=None, help="Optional dotenv file with settings")
    subparsers = parser.add_subparsers(dest="command", required=True)

    decode_parser = subparsers.add_parser(
        "decode-receipt", help="Decode market-order events of a mined transaction"
    )
    decode_parser.add_argument("tx_hash")
    decode_parser.add_argument("--user", default=None, help="Only keep events for this address")

    status_parser = subparsers.add_parser(
        "decrypt-status", help="Read the decryption status of an order handle"
    )
    status_parser.add_argument("handle", type=_parse_handle)

    watch_parser = subparsers.add_parser(
        "watch", help="Wait for a receipt and print its correlation report"
    )
    watch_parser.add_argument("tx_hash")
    watch_parser.add_argument("--timeout-seconds", type=float, default=None)

    flush_parser = subparsers.add_parser("flush", help="Flush the next queued order of the pool")
    flush_parser.add_argument("--wait", action="store_true", help="Wait for the receipt")

    swap_parser = subparsers.add_parser("swap", help="Swap through the pool")
    swap_parser.add_argument("--amount", required=True, help="Human-readable token amount")
    swap_parser.add_argument("--from-token", required=True, help="Symbol of the token sold")
    swap_parser.add_argument("--wait", action="store_true", help="Wait for the receipt")

    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args.env_file)
    except ValidationError as exc:
        setup_logging("INFO")
        logger.error(
            "Invalid configuration",
            extra={"extra": {"errors": [error["msg"] for error in exc.errors()]}},
        )
        return 2
    setup_logging(settings.log_level)
    logger.info(
        "runtime_prepared",
        extra={
            "extra": {
                "command": args.command,
                "rpc_url": redact_rpc_url(settings.rpc_url),
                "hook": settings.market_order_hook,
            }
        },
    )

    try:
        return asyncio.run(_dispatch(args, settings))
    except ConfigurationError as exc:
        logger.exception(
            "Command failed due to configuration error",
            extra={"extra": {"error_type": type(exc).__name__, "safe_message": str(exc)}},
        )
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Command failed",
            extra={"extra": {"error_type": type(exc).__name__, "safe_message": str(exc)}},
        )
        return 1


def _load_settings(env_file: str | None) -> Settings:
    if env_file in (None, ""):
        return Settings()
    return Settings(_env_file=env_file)


def _parse_handle(value: str) -> int:
    try:
        handle = int(value, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid handle: {value!r}") from exc
    if handle < 0:
        raise argparse.ArgumentTypeError("handle must be non-negative")
    return handle


def build_client(settings: Settings) -> JsonRpcChainClient:
    return JsonRpcChainClient(
        url=settings.rpc_url,
        market_order_hook=settings.market_order_hook,
        pool_swap=settings.pool_swap,
        account=settings.wallet_address,
        timeout_seconds=settings.rpc_timeout_seconds,
        receipt_poll_interval_seconds=settings.receipt_poll_interval_seconds,
        market_order_gas=settings.market_order_gas,
    )


def build_coordinator(
    settings: Settings,
    client: JsonRpcChainClient,
    *,
    wallet_address: str | None = None,
) -> OrderLifecycleCoordinator:
    return OrderLifecycleCoordinator(
        store=OrderStore(),
        reader=client,
        writer=client,
        receipts=client,
        encryptor=None,
        wallet_address=wallet_address or settings.wallet_address,
        pool_key=settings.pool_key(),
        token_pair=settings.token_pair(),
        decoder=EventDecoder(contract_address=settings.market_order_hook),
        poll_interval_seconds=settings.decrypt_poll_interval_seconds,
        token_decimals=settings.token_decimals,
    )


async def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    client = build_client(settings)

    async def _factory() -> JsonRpcChainClient:
        return client

    session = ChainSession(_factory, account=settings.wallet_address)
    try:
        snapshot = await session.connect()
        if client.account is None and snapshot.account is not None:
            client.account = snapshot.account
        with with_logging_context(user=snapshot.account):
            logger.info(
                "Connected to chain",
                extra={"extra": {"chain_id": snapshot.chain_id, "account": snapshot.account}},
            )
            return await _run_command(args, settings, client, snapshot.account)
    finally:
        await session.close()


async def _run_command(
    args: argparse.Namespace,
    settings: Settings,
    client: JsonRpcChainClient,
    account: str | None,
) -> int:
    if args.command == "decode-receipt":
        receipt = await client.get_transaction_receipt(args.tx_hash)
        if receipt is None:
            logger.error("Receipt not found", extra={"extra": {"tx_hash": args.tx_hash}})
            return 1
        decoded = EventDecoder(contract_address=settings.market_order_hook).decode(
            receipt, args.user
        )
        _print_json(
            {
                "tx_hash": receipt.transaction_hash,
                "status": receipt.status,
                "block_number": receipt.block_number,
                **asdict(decoded),
            }
        )
        return 0

    if args.command == "decrypt-status":
        decrypted = await client.get_order_decrypt_status(args.handle)
        _print_json({"handle": args.handle, "decrypted": decrypted})
        return 0

    coordinator = build_coordinator(settings, client, wallet_address=account)
    try:
        if args.command == "watch":
            correlator = coordinator.watch_transaction(args.tx_hash)
            if correlator is None:
                return 0
            report = await asyncio.wait_for(correlator.wait(), timeout=args.timeout_seconds)
            return _print_report(report)

        if args.command == "flush":
            if client.account is None:
                raise ConfigurationError("WALLET_ADDRESS is required to send transactions")
            flushed = await coordinator.flush_order()
            if flushed is None:
                return 1
            return await _report_transaction(coordinator, flushed, wait=args.wait)

        if args.command == "swap":
            tx_hash = await coordinator.submit_swap(args.amount, args.from_token)
            return await _report_transaction(coordinator, tx_hash, wait=args.wait)
    finally:
        await coordinator.aclose()

    raise OrderWatchError(f"unknown command: {args.command}")


async def _report_transaction(
    coordinator: OrderLifecycleCoordinator,
    tx_hash: str,
    *,
    wait: bool,
) -> int:
    if not wait:
        _print_json({"tx_hash": tx_hash})
        return 0
    correlator = coordinator.watch_transaction(tx_hash)
    if correlator is None:
        _print_json({"tx_hash": tx_hash})
        return 0
    return _print_report(await correlator.wait())


def _print_report(report: CorrelationReport | None) -> int:
    if report is None:
        logger.error("No receipt was correlated")
        return 1
    _print_json(
        {
            **asdict(report),
            "ignored_handles": report.ignored_handles,
        }
    )
    return 1 if report.reverted else 0


def _print_json(payload: dict[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, default=str))


if __name__ == "__main__":
    raise SystemExit(main())
