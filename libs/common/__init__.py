"""Common utilities and exceptions."""

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

__all__ = [
    "OrderConsoleError",
    "GuardViolation",
    "EmptyShipmentError",
    "ConflictRequiresResolution",
    "TransientNetworkFailure",
    "ValidationRangeError",
    "PrivilegedOperationDenied",
    "ConfigurationError",
]
