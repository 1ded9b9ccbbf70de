"""
Error Taxonomy & Operation Results
PropDesk Challenge Platform

Every failure the bookkeeping core can report is a TradingError subclass
carrying a machine-readable kind, a human message and structured details.
Service operations never raise across their boundary: they return an
OperationResult that is either a success with payload or a typed failure.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorKind(str, Enum):
    """Machine-readable failure kinds."""
    INVALID_SYMBOL = "invalid_symbol"
    VOLUME_OUT_OF_RANGE = "volume_out_of_range"
    INSUFFICIENT_MARGIN = "insufficient_margin"
    INVALID_ORDER = "invalid_order"
    POSITION_NOT_OPEN = "position_not_open"
    POSITION_NOT_FOUND = "position_not_found"
    ORDER_NOT_PENDING = "order_not_pending"
    ORDER_NOT_FOUND = "order_not_found"
    QUOTE_UNAVAILABLE = "quote_unavailable"
    INVALID_QUOTE = "invalid_quote"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_NOT_ACTIVE = "account_not_active"
    GROUP_CREATION_FAILED = "group_creation_failed"
    GROUP_NOT_FOUND = "group_not_found"
    INVALID_PHASE_TRANSITION = "invalid_phase_transition"
    INTERNAL = "internal"


class TradingError(Exception):
    """Base class for all recoverable bookkeeping failures."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.details!r})"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


# =============================================================================
# Order validation
# =============================================================================

class InvalidSymbol(TradingError):
    kind = ErrorKind.INVALID_SYMBOL
    status_code = 422


class VolumeOutOfRange(TradingError):
    kind = ErrorKind.VOLUME_OUT_OF_RANGE
    status_code = 422


class InsufficientMargin(TradingError):
    """Raised with `required` and `available` details."""
    kind = ErrorKind.INSUFFICIENT_MARGIN
    status_code = 422


class InvalidOrder(TradingError):
    kind = ErrorKind.INVALID_ORDER
    status_code = 422


class QuoteUnavailable(TradingError):
    kind = ErrorKind.QUOTE_UNAVAILABLE
    status_code = 409


class InvalidQuote(TradingError):
    """Non-positive prices or a crossed book."""
    kind = ErrorKind.INVALID_QUOTE
    status_code = 422


# =============================================================================
# Lifecycle
# =============================================================================

class PositionNotOpen(TradingError):
    kind = ErrorKind.POSITION_NOT_OPEN
    status_code = 409


class PositionNotFound(TradingError):
    kind = ErrorKind.POSITION_NOT_FOUND
    status_code = 404


class OrderNotPending(TradingError):
    kind = ErrorKind.ORDER_NOT_PENDING
    status_code = 409


class OrderNotFound(TradingError):
    kind = ErrorKind.ORDER_NOT_FOUND
    status_code = 404


class AccountNotFound(TradingError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND
    status_code = 404


class AccountNotActive(TradingError):
    """The account is breached, completed or deleted."""
    kind = ErrorKind.ACCOUNT_NOT_ACTIVE
    status_code = 409


class GroupCreationFailed(TradingError):
    """An OCO leg failed validation; no leg of the group was kept."""
    kind = ErrorKind.GROUP_CREATION_FAILED
    status_code = 422


class GroupNotFound(TradingError):
    kind = ErrorKind.GROUP_NOT_FOUND
    status_code = 404


class InvalidPhaseTransition(TradingError):
    kind = ErrorKind.INVALID_PHASE_TRANSITION
    status_code = 409


class InternalError(TradingError):
    """Unexpected exception caught at the service boundary."""
    kind = ErrorKind.INTERNAL
    status_code = 500


# =============================================================================
# Operation result
# =============================================================================

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Discriminated success/failure returned by every service operation."""
    ok: bool
    data: Optional[T] = None
    error: Optional[TradingError] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> "OperationResult[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: TradingError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the payload or re-raise the carried error."""
        if not self.ok:
            raise self.error
        return self.data


__all__ = [
    "ErrorKind",
    "TradingError",
    "InvalidSymbol",
    "VolumeOutOfRange",
    "InsufficientMargin",
    "InvalidOrder",
    "QuoteUnavailable",
    "InvalidQuote",
    "PositionNotOpen",
    "PositionNotFound",
    "OrderNotPending",
    "OrderNotFound",
    "AccountNotFound",
    "AccountNotActive",
    "GroupCreationFailed",
    "GroupNotFound",
    "InvalidPhaseTransition",
    "InternalError",
    "OperationResult",
]
