"""
Unit tests for OrderStatusMachine.

Tests cover:
- Legal and illegal transitions of the status graph
- Terminal states never move
- Cooldown and edit-lock gates on forward transitions
- Role rules for cancellation
"""

import pytest

from libs.common.exceptions import GuardViolation
from libs.orders.models import OrderStatus, UserRole
from libs.orders.state_machine import TERMINAL_STATUSES, OrderStatusMachine

OPERATOR = UserRole.FULL_ADMIN


@pytest.fixture()
def machine():
    return OrderStatusMachine()


class TestGraph:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (OrderStatus.PENDING, OrderStatus.VALIDATED),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.VALIDATED, OrderStatus.PREPARATION),
            (OrderStatus.VALIDATED, OrderStatus.SHIPPED),
            (OrderStatus.VALIDATED, OrderStatus.CANCELLED),
            (OrderStatus.PREPARATION, OrderStatus.SHIPPED),
            (OrderStatus.PREPARATION, OrderStatus.CANCELLED),
            (OrderStatus.SHIPPED, OrderStatus.INVOICED),
        ],
    )
    def test_legal_transitions(self, machine, current, target):
        assert machine.can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (OrderStatus.PENDING, OrderStatus.SHIPPED),
            (OrderStatus.VALIDATED, OrderStatus.PENDING),
            (OrderStatus.SHIPPED, OrderStatus.VALIDATED),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
        ],
    )
    def test_illegal_transitions(self, machine, current, target):
        assert not machine.can_transition(current, target)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_states_have_no_targets(self, machine, terminal):
        assert machine.is_terminal(terminal)
        assert machine.allowed_targets(terminal) == frozenset()
        for target in OrderStatus:
            assert not machine.can_transition(terminal, target)


class TestCheckTransition:
    def test_terminal_order_refused(self, machine, make_order):
        order = make_order(status="CANCELLED")

        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(order, OrderStatus.VALIDATED, actor_role=OPERATOR)

        assert exc_info.value.reason == "terminal_state"
        assert exc_info.value.order_id == "ord-1"

    def test_illegal_edge_refused(self, machine, make_order):
        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(make_order(), OrderStatus.SHIPPED, actor_role=OPERATOR)

        assert exc_info.value.reason == "illegal_transition"

    def test_cooldown_blocks_validation(self, machine, make_order):
        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(
                make_order(), OrderStatus.VALIDATED, actor_role=OPERATOR, cooldown_clear=False
            )

        assert exc_info.value.reason == "cooldown_active"

    def test_lock_reported_before_cooldown(self, machine, make_order):
        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(
                make_order(),
                OrderStatus.VALIDATED,
                actor_role=OPERATOR,
                cooldown_clear=False,
                lock_clear=False,
            )

        assert exc_info.value.reason == "edit_locked"

    def test_cancellation_bypasses_gates(self, machine, make_order):
        machine.check_transition(
            make_order(),
            OrderStatus.CANCELLED,
            actor_role=OPERATOR,
            cooldown_clear=False,
            lock_clear=False,
        )

    def test_client_may_cancel_pending_only(self, machine, make_order):
        machine.check_transition(
            make_order(), OrderStatus.CANCELLED, actor_role=UserRole.CLIENT_USER
        )

        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(
                make_order(status="VALIDATED"),
                OrderStatus.CANCELLED,
                actor_role=UserRole.CLIENT_ADMIN,
            )

        assert exc_info.value.reason == "not_authorized"

    def test_client_may_not_validate(self, machine, make_order):
        with pytest.raises(GuardViolation) as exc_info:
            machine.check_transition(
                make_order(), OrderStatus.VALIDATED, actor_role=UserRole.CLIENT_ADMIN
            )

        assert exc_info.value.reason == "not_authorized"

    def test_operator_may_cancel_in_preparation(self, machine, make_order):
        machine.check_transition(
            make_order(status="PREPARATION"), OrderStatus.CANCELLED, actor_role=OPERATOR
        )


class TestApply:
    def test_apply_returns_new_order(self, machine, make_order):
        order = make_order()

        updated = machine.apply(order, OrderStatus.VALIDATED, actor_role=OPERATOR)

        assert updated.status == OrderStatus.VALIDATED
        assert order.status == OrderStatus.PENDING

    def test_apply_refused_leaves_state_untouched(self, machine, make_order):
        order = make_order()

        with pytest.raises(GuardViolation):
            machine.apply(order, OrderStatus.INVOICED, actor_role=OPERATOR)

        assert order.status == OrderStatus.PENDING

    def test_modified_at_only_moves_forward(self, machine, make_order):
        order = make_order()
        older = order.effective_last_modified.replace(minute=0)

        updated = machine.apply(
            order, OrderStatus.VALIDATED, actor_role=OPERATOR, modified_at=older
        )

        assert updated.last_modified_at == order.last_modified_at
