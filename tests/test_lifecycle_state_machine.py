from __future__ import annotations

from datetime import UTC, datetime

import pytest

from orderwatch.domain.lifecycle import (
    LifecycleStateMachine,
    TransitionOutcome,
    stage_for_status,
    status_for_stage,
)
from orderwatch.domain.models import (
    IllegalTransitionError,
    LifecycleStage,
    Order,
    OrderStatus,
)


def _order(stage: LifecycleStage = LifecycleStage.CREATED, handle: int | None = None) -> Order:
    return Order(
        id="o1",
        amount="1",
        from_token="CPH",
        to_token="MSK",
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        stage=stage,
        status=status_for_stage(stage),
        handle=handle,
    )


def test_forward_path_to_queued() -> None:
    machine = LifecycleStateMachine()
    order = _order()
    order = machine.transition(order, LifecycleStage.AWAITING_CONFIRMATION).order
    order = machine.transition(order, LifecycleStage.CONFIRMED, handle=12345).order
    for stage in (
        LifecycleStage.AWAITING_DECRYPTION,
        LifecycleStage.DECRYPTED,
        LifecycleStage.QUEUED,
    ):
        result = machine.transition(order, stage)
        assert result.outcome is TransitionOutcome.APPLIED
        order = result.order

    assert order.stage is LifecycleStage.QUEUED
    assert order.status is OrderStatus.EXECUTING
    assert order.handle == 12345


def test_confirmation_requires_handle() -> None:
    with pytest.raises(IllegalTransitionError):
        LifecycleStateMachine().transition(
            _order(LifecycleStage.AWAITING_CONFIRMATION), LifecycleStage.CONFIRMED
        )


def test_skipping_a_stage_is_rejected() -> None:
    with pytest.raises(IllegalTransitionError):
        LifecycleStateMachine().transition(
            _order(LifecycleStage.CONFIRMED, handle=1), LifecycleStage.QUEUED
        )


def test_repeat_and_backward_moves_leave_order_untouched() -> None:
    machine = LifecycleStateMachine()
    order = _order(LifecycleStage.DECRYPTED, handle=1)

    duplicate = machine.transition(order, LifecycleStage.DECRYPTED)
    stale = machine.transition(order, LifecycleStage.AWAITING_DECRYPTION)

    assert duplicate.outcome is TransitionOutcome.DUPLICATE
    assert stale.outcome is TransitionOutcome.STALE
    assert duplicate.order is order and stale.order is order


def test_settlement_may_arrive_before_decryption_completes() -> None:
    result = LifecycleStateMachine().transition(
        _order(LifecycleStage.AWAITING_DECRYPTION, handle=9), LifecycleStage.SETTLED
    )

    assert result.changed
    assert result.order.status is OrderStatus.COMPLETED


def test_orders_without_handle_can_still_resolve() -> None:
    machine = LifecycleStateMachine()
    pending = _order(LifecycleStage.AWAITING_CONFIRMATION)

    settled = machine.transition(pending, LifecycleStage.SETTLED)
    failed = machine.transition(pending, LifecycleStage.FAILED)

    assert settled.order.status is OrderStatus.COMPLETED
    assert settled.order.handle is None
    assert failed.order.status is OrderStatus.FAILED


@pytest.mark.parametrize("terminal", [LifecycleStage.SETTLED, LifecycleStage.FAILED])
def test_terminal_orders_never_change(terminal: LifecycleStage) -> None:
    machine = LifecycleStateMachine()
    order = _order(terminal, handle=5)

    for target in (LifecycleStage.SETTLED, LifecycleStage.FAILED, LifecycleStage.QUEUED):
        result = machine.transition(order, target)
        assert result.outcome is TransitionOutcome.TERMINAL
        assert result.order is order
    assert machine.is_terminal(order)


def test_handle_cannot_be_reassigned() -> None:
    machine = LifecycleStateMachine()
    order = _order(LifecycleStage.AWAITING_CONFIRMATION, handle=3)

    with pytest.raises(IllegalTransitionError):
        machine.transition(order, LifecycleStage.CONFIRMED, handle=4)


def test_status_stage_mapping() -> None:
    assert stage_for_status(OrderStatus.COMPLETED) is LifecycleStage.SETTLED
    assert stage_for_status(OrderStatus.FAILED) is LifecycleStage.FAILED
    with pytest.raises(IllegalTransitionError):
        stage_for_status(OrderStatus.EXECUTING)
