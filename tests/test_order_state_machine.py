"""
Tests for the order status state machine
"""
import pytest

from dispatch_engine.db.models.order import OrderStatus
from dispatch_engine.domain.order_state_machine import (
    ORDER_TRANSITIONS,
    STATUS_LABELS,
    TERMINAL_STATUSES,
    can_transition,
    is_terminal,
)


@pytest.mark.unit
class TestOrderStateMachine:

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PLACED, OrderStatus.ACCEPTED),
        (OrderStatus.ACCEPTED, OrderStatus.PREPARING),
        (OrderStatus.PREPARING, OrderStatus.READY),
        (OrderStatus.READY, OrderStatus.PICKED_UP),
        (OrderStatus.PICKED_UP, OrderStatus.DELIVERED),
    ])
    def test_happy_path(self, current, target):
        assert can_transition(current, target)

    def test_only_placed_can_be_rejected(self):
        rejectable = {s for s in OrderStatus if can_transition(s, OrderStatus.REJECTED)}
        assert rejectable == {OrderStatus.PLACED}

    def test_everything_before_delivered_can_be_cancelled(self):
        cancellable = {s for s in OrderStatus if can_transition(s, OrderStatus.CANCELLED)}
        assert cancellable == {
            OrderStatus.PLACED,
            OrderStatus.ACCEPTED,
            OrderStatus.PREPARING,
            OrderStatus.READY,
            OrderStatus.PICKED_UP,
        }

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, status):
        assert is_terminal(status)
        assert not ORDER_TRANSITIONS[status]

    def test_no_skipping_ahead(self):
        assert not can_transition(OrderStatus.ACCEPTED, OrderStatus.PICKED_UP)
        assert not can_transition(OrderStatus.PLACED, OrderStatus.DELIVERED)

    def test_every_status_has_transitions_and_a_label(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)
        assert set(STATUS_LABELS) == set(OrderStatus)
