from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from orderwatch.domain.models import (
    IllegalTransitionError,
    LifecycleStage,
    Order,
    OrderStatus,
)

PROGRESSION: tuple[LifecycleStage, ...] = (
    LifecycleStage.CREATED,
    LifecycleStage.AWAITING_CONFIRMATION,
    LifecycleStage.CONFIRMED,
    LifecycleStage.AWAITING_DECRYPTION,
    LifecycleStage.DECRYPTED,
    LifecycleStage.QUEUED,
)
TERMINAL_STAGES = frozenset({LifecycleStage.SETTLED, LifecycleStage.FAILED})

_RANK = {stage: index for index, stage in enumerate(PROGRESSION)}


class TransitionOutcome(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    TERMINAL = "terminal"


class StepState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    outcome: TransitionOutcome

    @property
    def changed(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass(frozen=True)
class OrderProgress:
    """Step-by-step view of one order, consumed by presentation layers."""

    confirmation: StepState = StepState.IDLE
    decryption: StepState = StepState.IDLE
    settlement: StepState = StepState.IDLE


def status_for_stage(stage: LifecycleStage) -> OrderStatus:
    if stage is LifecycleStage.SETTLED:
        return OrderStatus.COMPLETED
    if stage is LifecycleStage.FAILED:
        return OrderStatus.FAILED
    return OrderStatus.EXECUTING


def stage_for_status(status: OrderStatus) -> LifecycleStage:
    if status is OrderStatus.COMPLETED:
        return LifecycleStage.SETTLED
    if status is OrderStatus.FAILED:
        return LifecycleStage.FAILED
    raise IllegalTransitionError(f"status {status.value} has no terminal stage")


class LifecycleStateMachine:
    """Per-order transition rules.

    Forward moves through ``PROGRESSION`` must be taken one step at a time.
    Terminal stages can be entered from any non-terminal stage because
    settlement events are correlated by handle and may be observed before
    the local decryption poll catches up, and a caller may resolve an order
    by id before any handle was assigned. Repeated and backwards moves are
    reported as ``DUPLICATE``/``STALE`` and leave the order untouched; once an
    order is terminal nothing changes it again.
    """

    def transition(
        self,
        order: Order,
        target: LifecycleStage,
        *,
        handle: int | None = None,
    ) -> TransitionResult:
        current = order.stage
        if current in TERMINAL_STAGES:
            return TransitionResult(order=order, outcome=TransitionOutcome.TERMINAL)
        if target == current:
            return TransitionResult(order=order, outcome=TransitionOutcome.DUPLICATE)

        if target in TERMINAL_STAGES:
            return self._apply(order, target, handle=order.handle)

        if _RANK[target] < _RANK[current]:
            return TransitionResult(order=order, outcome=TransitionOutcome.STALE)
        if _RANK[target] != _RANK[current] + 1:
            raise IllegalTransitionError(
                f"order {order.id} cannot move from {current.value} to {target.value}"
            )

        resolved_handle = order.handle
        if target is LifecycleStage.CONFIRMED:
            if handle is None:
                raise IllegalTransitionError(f"order {order.id} confirmation requires a handle")
            if order.handle is not None and order.handle != handle:
                raise IllegalTransitionError(
                    f"order {order.id} already holds handle {order.handle}"
                )
            resolved_handle = handle
        return self._apply(order, target, handle=resolved_handle)

    def is_terminal(self, order: Order) -> bool:
        return order.stage in TERMINAL_STAGES

    @staticmethod
    def _apply(order: Order, target: LifecycleStage, *, handle: int | None) -> TransitionResult:
        updated = replace(order, stage=target, status=status_for_stage(target), handle=handle)
        return TransitionResult(order=updated, outcome=TransitionOutcome.APPLIED)
