from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from orderwatch.domain.lifecycle import (
    LifecycleStateMachine,
    TransitionOutcome,
    TransitionResult,
    stage_for_status,
)
from orderwatch.domain.models import (
    TERMINAL_STATUSES,
    DuplicateOrderError,
    HandleConflictError,
    LifecycleStage,
    Order,
    OrderStatus,
    UnknownOrderError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderChange:
    previous: Order | None
    current: Order


OrderListener = Callable[[OrderChange], None]


@dataclass(frozen=True)
class StoreSnapshot:
    orders: tuple[Order, ...]
    by_id: Mapping[str, Order]
    by_handle: Mapping[int, Order]

    @classmethod
    def build(cls, orders: tuple[Order, ...]) -> StoreSnapshot:
        by_id = {order.id: order for order in orders}
        by_handle = {order.handle: order for order in orders if order.handle is not None}
        return cls(
            orders=orders,
            by_id=MappingProxyType(by_id),
            by_handle=MappingProxyType(by_handle),
        )


class OrderStore:
    """In-memory collection of tracked orders, keyed by id and by handle.

    Every write builds a fresh ``StoreSnapshot`` and swaps it in with a single
    assignment, so a snapshot handed to a reader never changes under it.
    All stage and status changes go through ``LifecycleStateMachine``.
    """

    def __init__(self, state_machine: LifecycleStateMachine | None = None) -> None:
        self._machine = state_machine or LifecycleStateMachine()
        self._snapshot = StoreSnapshot.build(())
        self._listeners: list[OrderListener] = []

    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    def add(self, order: Order) -> Order:
        current = self._snapshot
        if order.id in current.by_id:
            raise DuplicateOrderError(f"order {order.id} is already tracked")
        if order.handle is not None and order.handle in current.by_handle:
            holder = current.by_handle[order.handle]
            raise HandleConflictError(f"handle {order.handle} is held by order {holder.id}")
        self._snapshot = StoreSnapshot.build(current.orders + (order,))
        self._notify(OrderChange(previous=None, current=order))
        return order

    def get(self, order_id: str) -> Order | None:
        return self._snapshot.by_id.get(order_id)

    def get_by_handle(self, handle: int) -> Order | None:
        return self._snapshot.by_handle.get(handle)

    def list_executing(self) -> list[Order]:
        return [order for order in self._snapshot.orders if order.status is OrderStatus.EXECUTING]

    def assign_handle(self, order_id: str, handle: int) -> TransitionResult:
        order = self._require(order_id)
        holder = self._snapshot.by_handle.get(handle)
        if holder is not None and holder.id != order_id:
            raise HandleConflictError(f"handle {handle} is held by order {holder.id}")
        return self._transition(order, LifecycleStage.CONFIRMED, handle=handle)

    def advance(self, order_id: str, stage: LifecycleStage) -> TransitionResult:
        return self._transition(self._require(order_id), stage)

    def attach_transaction(self, order_id: str, tx_hash: str) -> Order:
        """Record the submission transaction of an order; set once."""
        order = self._require(order_id)
        if order.tx_hash is not None:
            if order.tx_hash.lower() == tx_hash.lower():
                return order
            raise ValueError(f"order {order_id} is already bound to {order.tx_hash}")
        updated = replace(order, tx_hash=tx_hash)
        current = self._snapshot
        orders = tuple(updated if item.id == order_id else item for item in current.orders)
        self._snapshot = StoreSnapshot.build(orders)
        self._notify(OrderChange(previous=order, current=updated))
        return updated

    def update_status_by_id(self, order_id: str, status: OrderStatus) -> bool:
        order = self._snapshot.by_id.get(order_id)
        if order is None:
            return False
        return self._update_status(order, status)

    def update_status_by_handle(self, handle: int, status: OrderStatus) -> bool:
        order = self._snapshot.by_handle.get(handle)
        if order is None:
            return False
        return self._update_status(order, status)

    def subscribe(self, listener: OrderListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update_status(self, order: Order, status: OrderStatus | str) -> bool:
        status = OrderStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"orders resolve to a terminal status only, got {status.value}")
        if order.status is status:
            return False
        return self._transition(order, stage_for_status(status)).changed

    def _require(self, order_id: str) -> Order:
        order = self._snapshot.by_id.get(order_id)
        if order is None:
            raise UnknownOrderError(order_id)
        return order

    def _transition(
        self,
        order: Order,
        stage: LifecycleStage,
        *,
        handle: int | None = None,
    ) -> TransitionResult:
        result = self._machine.transition(order, stage, handle=handle)
        if result.outcome is not TransitionOutcome.APPLIED:
            logger.debug(
                "Ignored order transition",
                extra={
                    "extra": {
                        "order_id": order.id,
                        "from_stage": order.stage.value,
                        "to_stage": stage.value,
                        "outcome": result.outcome.value,
                    }
                },
            )
            return result

        current = self._snapshot
        orders = tuple(result.order if item.id == order.id else item for item in current.orders)
        self._snapshot = StoreSnapshot.build(orders)
        self._notify(OrderChange(previous=order, current=result.order))
        return result

    def _notify(self, change: OrderChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Order listener failed",
                    extra={"extra": {"order_id": change.current.id}},
                )
