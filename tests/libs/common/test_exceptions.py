"""Tests for the order console exception hierarchy."""

from __future__ import annotations

import pytest

from libs.common.exceptions import (
    ConfigurationError,
    ConflictRequiresResolution,
    EmptyShipmentError,
    GuardViolation,
    OrderConsoleError,
    PrivilegedOperationDenied,
    TransientNetworkFailure,
    ValidationRangeError,
)
from libs.orders.cart import LineConflict


@pytest.mark.parametrize(
    "exc",
    [
        GuardViolation("nope", reason="terminal_state"),
        EmptyShipmentError("ord-1"),
        ConflictRequiresResolution(LineConflict("REF-A", "", 3, 2)),
        TransientNetworkFailure("boom", operation="list_orders"),
        ValidationRangeError("it-1", 9, 3),
        PrivilegedOperationDenied("delete_order", "FULL_ADMIN"),
        ConfigurationError("missing"),
    ],
)
def test_every_error_is_an_order_console_error(exc) -> None:
    assert isinstance(exc, OrderConsoleError)


def test_empty_shipment_is_a_guard_violation() -> None:
    exc = EmptyShipmentError("ord-7")

    assert isinstance(exc, GuardViolation)
    assert exc.reason == "empty_shipment"
    assert exc.order_id == "ord-7"


def test_conflict_carries_pending_decision() -> None:
    conflict = LineConflict("REF-A", "Filtre", 3, 2)

    exc = ConflictRequiresResolution(conflict)

    assert exc.conflict is conflict
    assert "REF-A" in str(exc)


def test_network_failure_fields() -> None:
    exc = TransientNetworkFailure("Stock insuffisant", operation="ship_order", status_code=409)

    assert str(exc) == "Stock insuffisant"
    assert exc.operation == "ship_order"
    assert exc.status_code == 409


def test_privileged_operation_message() -> None:
    exc = PrivilegedOperationDenied("delete_order", "FULL_ADMIN")

    assert str(exc) == "Role FULL_ADMIN may not perform delete_order"


def test_range_error_message() -> None:
    exc = ValidationRangeError("it-1", 9, 3)

    assert str(exc) == "Delivered quantity 9 for line it-1 is outside [0, 3]"
