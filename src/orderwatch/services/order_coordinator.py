from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from functools import partial

from orderwatch.adapters.chain import (
    ChainReader,
    ChainWriter,
    EncryptedInputProducer,
    ReceiptSource,
)
from orderwatch.domain.lifecycle import OrderProgress, StepState
from orderwatch.domain.models import (
    EncryptedType,
    HandleConflictError,
    LifecycleStage,
    Order,
    OrderStatus,
    OrderSubmissionError,
    ParsedEvent,
)
from orderwatch.domain.pool import (
    DEFAULT_TOKEN_DECIMALS,
    HOOK_DATA,
    PoolKey,
    SwapSettings,
    TokenPair,
    build_swap_params,
    parse_units,
)
from orderwatch.logging_context import with_logging_context
from orderwatch.services.decryption_poller import DEFAULT_POLL_INTERVAL_SECONDS, DecryptionPoller
from orderwatch.services.event_decoder import EventDecoder
from orderwatch.services.order_store import OrderChange, OrderStore
from orderwatch.services.settlement_correlator import (
    CorrelationReport,
    ProcessedReceipts,
    SettlementCorrelator,
)

logger = logging.getLogger(__name__)


class ProgressListener:
    """Receives lifecycle notifications; the default implementation ignores them."""

    def on_progress(self, order_id: str, progress: OrderProgress) -> None:
        return None

    def on_queued(self, order: Order) -> None:
        return None

    def on_resolved(self, order: Order) -> None:
        return None


@dataclass
class _OrderResources:
    correlator: SettlementCorrelator
    poller: DecryptionPoller | None = None


class OrderLifecycleCoordinator:
    """Drives a market order from submission to settlement.

    Each submitted order owns a correlator bound to its submission transaction
    and, once its handle is known, a decryption poller. Both are released as
    soon as the order reaches a terminal status, whatever path got it there.
    Transactions watched through ``watch_transaction`` share the processed
    receipt ledger with the per-order correlators, so a receipt is applied to
    the store at most once.
    """

    def __init__(
        self,
        *,
        store: OrderStore,
        reader: ChainReader,
        writer: ChainWriter,
        receipts: ReceiptSource,
        encryptor: EncryptedInputProducer | None,
        wallet_address: str | None,
        pool_key: PoolKey,
        token_pair: TokenPair | None = None,
        decoder: EventDecoder | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        progress_listener: ProgressListener | None = None,
        token_decimals: int = DEFAULT_TOKEN_DECIMALS,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self.store = store
        self._reader = reader
        self._writer = writer
        self._receipts = receipts
        self._encryptor = encryptor
        self.wallet_address = wallet_address
        self.pool_key = pool_key
        self.token_pair = token_pair or TokenPair()
        self._decoder = decoder or EventDecoder(contract_address=pool_key.hooks)
        self.poll_interval_seconds = poll_interval_seconds
        self._listener = progress_listener or ProgressListener()
        self.token_decimals = token_decimals
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._sleep = sleep_fn

        self.processed = ProcessedReceipts()
        self._resources: dict[str, _OrderResources] = {}
        self._watched: dict[str, SettlementCorrelator] = {}
        self._progress: dict[str, OrderProgress] = {}
        self._flushing: str | None = None
        self._unsubscribe = store.subscribe(self._on_store_change)

    # order book surface

    def add_async_order(self, order: Order) -> Order:
        return self.store.add(order)

    def update_order_status(self, order_id: str, status: OrderStatus) -> bool:
        return self.store.update_status_by_id(order_id, status)

    def update_order_status_by_handle(self, handle: int, status: OrderStatus) -> bool:
        return self.store.update_status_by_handle(handle, status)

    def list_executing_orders(self) -> list[Order]:
        return self.store.list_executing()

    def progress(self, order_id: str) -> OrderProgress:
        return self._progress.get(order_id, OrderProgress())

    def is_tracking(self, order_id: str) -> bool:
        return order_id in self._resources

    def is_polling(self, order_id: str) -> bool:
        resources = self._resources.get(order_id)
        return bool(resources and resources.poller and resources.poller.is_running)

    def is_watching(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._watched

    @property
    def is_flushing(self) -> bool:
        return self._flushing is not None

    # writes

    async def submit_market_order(
        self,
        amount: str,
        from_token: str,
        to_token: str,
        *,
        order_id: str | None = None,
    ) -> Order:
        if self._encryptor is None:
            raise OrderSubmissionError("no encryption client configured")
        value = parse_units(amount, self.token_decimals)
        if value <= 0:
            raise ValueError("amount must be greater than zero")
        zero_for_one = self.token_pair.is_zero_for_one(from_token)

        order = self.store.add(
            Order(
                id=order_id or self._id_factory(),
                amount=amount,
                from_token=from_token,
                to_token=to_token,
                timestamp=self._clock(),
            )
        )
        self.store.advance(order.id, LifecycleStage.AWAITING_CONFIRMATION)
        self._set_progress(order.id, confirmation=StepState.LOADING)

        with with_logging_context(order_id=order.id):
            try:
                encrypted = await self._encryptor.encrypt(value, EncryptedType.UINT128)
                tx_hash = await self._writer.place_market_order(
                    self.pool_key, zero_for_one, encrypted
                )
            except Exception as exc:
                logger.exception("Market order submission failed")
                self._set_progress(order.id, confirmation=StepState.ERROR)
                self.store.update_status_by_id(order.id, OrderStatus.FAILED)
                raise OrderSubmissionError(f"market order {order.id} was not submitted") from exc

            logger.info(
                "Market order submitted",
                extra={"extra": {"tx_hash": tx_hash, "zero_for_one": zero_for_one}},
            )
            self.store.attach_transaction(order.id, tx_hash)
            correlator = self._new_correlator(
                user_filter=self.wallet_address,
                on_placed=partial(self._on_placement, order.id),
            )
            self._resources[order.id] = _OrderResources(correlator=correlator)
            correlator.bind(tx_hash)
        return self.store.get(order.id) or order

    async def submit_swap(self, amount: str, from_token: str) -> str:
        value = parse_units(amount, self.token_decimals)
        if value <= 0:
            raise ValueError("amount must be greater than zero")
        params = build_swap_params(value, zero_for_one=self.token_pair.is_zero_for_one(from_token))
        tx_hash = await self._writer.swap(self.pool_key, params, SwapSettings(), HOOK_DATA)
        logger.info(
            "Swap submitted",
            extra={"extra": {"tx_hash": tx_hash, "zero_for_one": params.zero_for_one}},
        )
        self.watch_transaction(tx_hash)
        return tx_hash

    async def flush_order(self, order_id: str | None = None) -> str | None:
        """Send one flush transaction for the pool and watch it.

        Returns the transaction hash, or ``None`` when another flush is still
        in flight or the write failed.
        """
        if self._flushing is not None:
            logger.warning(
                "Flush already in flight",
                extra={"extra": {"order_id": order_id, "flushing": self._flushing}},
            )
            return None
        self._flushing = order_id or "pool"
        try:
            tx_hash = await self._writer.flush_order(self.pool_key)
        except Exception:
            logger.exception("Flush order failed", extra={"extra": {"order_id": order_id}})
            return None
        finally:
            self._flushing = None
        logger.info("Flush submitted", extra={"extra": {"order_id": order_id, "tx_hash": tx_hash}})
        self.watch_transaction(tx_hash)
        return tx_hash

    def watch_transaction(self, tx_hash: str) -> SettlementCorrelator | None:
        """Correlate a third-party transaction (swap, flush) against tracked handles."""
        key = tx_hash.lower()
        if key in self.processed:
            return None
        existing = self._watched.get(key)
        if existing is not None:
            return existing
        correlator = self._new_correlator(
            user_filter=None,
            on_report=partial(self._on_watched_report, key),
        )
        self._watched[key] = correlator
        correlator.bind(tx_hash)
        return correlator

    # teardown

    def release(self, order_id: str) -> None:
        resources = self._resources.pop(order_id, None)
        if resources is None:
            return
        if resources.poller is not None:
            resources.poller.stop()
        resources.correlator.cancel()
        logger.debug("Released order resources", extra={"extra": {"order_id": order_id}})

    async def aclose(self) -> None:
        self._unsubscribe()
        resources = list(self._resources.values())
        watched = list(self._watched.values())
        self._resources.clear()
        self._watched.clear()
        for item in resources:
            if item.poller is not None:
                await item.poller.aclose()
            await item.correlator.aclose()
        for correlator in watched:
            await correlator.aclose()

    # callbacks

    def _new_correlator(
        self,
        *,
        user_filter: str | None,
        on_placed: Callable[[ParsedEvent], object] | None = None,
        on_report: Callable[[CorrelationReport], object] | None = None,
    ) -> SettlementCorrelator:
        return SettlementCorrelator(
            source=self._receipts,
            decoder=self._decoder,
            store=self.store,
            processed=self.processed,
            user_filter=user_filter,
            on_placed=on_placed,
            on_report=on_report,
        )

    def _on_placement(self, order_id: str, event: ParsedEvent) -> None:
        order = self.store.get(order_id)
        if order is None or order.tx_hash is None:
            return
        if event.transaction_hash.lower() != order.tx_hash.lower():
            logger.warning(
                "Placement event from another transaction ignored",
                extra={"extra": {"order_id": order_id, "event_tx": event.transaction_hash}},
            )
            return
        try:
            result = self.store.assign_handle(order_id, event.handle)
        except HandleConflictError:
            logger.exception(
                "Placement handle already tracked",
                extra={"extra": {"order_id": order_id, "handle": event.handle}},
            )
            self._set_progress(order_id, confirmation=StepState.ERROR)
            return
        if not result.changed:
            return
        logger.info(
            "Order confirmed",
            extra={"extra": {"order_id": order_id, "handle": event.handle}},
        )
        self._set_progress(
            order_id, confirmation=StepState.SUCCESS, decryption=StepState.LOADING
        )
        self._start_decryption(order_id, event.handle)

    def _start_decryption(self, order_id: str, handle: int) -> None:
        resources = self._resources.get(order_id)
        if resources is None:
            return
        if resources.poller is not None and resources.poller.is_running:
            return
        resources.poller = DecryptionPoller(
            self._reader.get_order_decrypt_status,
            interval_seconds=self.poll_interval_seconds,
            on_result=partial(self._on_decryption_result, order_id),
            sleep_fn=self._sleep,
        )
        self.store.advance(order_id, LifecycleStage.AWAITING_DECRYPTION)
        resources.poller.start(handle)

    def _on_decryption_result(self, order_id: str, decrypted: bool) -> None:
        if not decrypted:
            return
        if self.store.advance(order_id, LifecycleStage.DECRYPTED).changed:
            self._set_progress(order_id, decryption=StepState.SUCCESS)
        result = self.store.advance(order_id, LifecycleStage.QUEUED)
        if not result.changed:
            return
        self._set_progress(order_id, settlement=StepState.LOADING)
        logger.info("Order queued for settlement", extra={"extra": {"order_id": order_id}})
        try:
            self._listener.on_queued(result.order)
        except Exception:
            logger.exception("Queued handler failed", extra={"extra": {"order_id": order_id}})

    def _on_watched_report(self, key: str, report: CorrelationReport) -> None:
        self._watched.pop(key, None)
        if report.ignored_handles:
            logger.info(
                "Resolutions without a tracked order",
                extra={"extra": {"tx_hash": report.tx_hash, "handles": report.ignored_handles}},
            )

    def _on_store_change(self, change: OrderChange) -> None:
        previous, order = change.previous, change.current
        if not order.is_terminal or (previous is not None and previous.is_terminal):
            return
        if order.handle is not None:
            settled = order.status is OrderStatus.COMPLETED
            self._set_progress(
                order.id, settlement=StepState.SUCCESS if settled else StepState.ERROR
            )
        self.release(order.id)
        try:
            self._listener.on_resolved(order)
        except Exception:
            logger.exception("Resolved handler failed", extra={"extra": {"order_id": order.id}})

    def _set_progress(self, order_id: str, **steps: StepState) -> None:
        progress = replace(self.progress(order_id), **steps)
        self._progress[order_id] = progress
        try:
            self._listener.on_progress(order_id, progress)
        except Exception:
            logger.exception("Progress handler failed", extra={"extra": {"order_id": order_id}})
