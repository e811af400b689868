"""Error taxonomy shared by the service and the sync client."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of a failed receiving operation."""

    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    STORE_FAILURE = "store_failure"
    NETWORK_FAILURE = "network_failure"  # client side only

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @classmethod
    def from_status_code(cls, status_code: Optional[int]) -> "ErrorKind":
        if status_code is None:
            return cls.NETWORK_FAILURE
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 409:
            return cls.CONFLICT
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code in (400, 413, 422):
            return cls.INVALID_INPUT
        return cls.STORE_FAILURE


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.STORE_FAILURE: 500,
    ErrorKind.NETWORK_FAILURE: 503,
}


class ReceivingError(Exception):
    """Base class for errors rendered as ``{success: false, error}``."""

    kind: ErrorKind = ErrorKind.STORE_FAILURE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ReceivingError):
    """Raised when a shipment or record does not exist."""

    kind = ErrorKind.NOT_FOUND


class InvalidInputError(ReceivingError):
    """Raised for malformed quantities, missing UPCs and similar input."""

    kind = ErrorKind.INVALID_INPUT


class ConflictError(ReceivingError):
    """Raised when a mutation targets a completed shipment."""

    kind = ErrorKind.CONFLICT


class ShipmentNotFound(NotFoundError):
    def __init__(self, shipment_id: str):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment not found: {shipment_id}")


_ERRORS_BY_KIND = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INVALID_INPUT: InvalidInputError,
    ErrorKind.CONFLICT: ConflictError,
}


def error_for_kind(kind: ErrorKind, message: str) -> ReceivingError:
    """Exception instance carrying ``kind``, for re-raising structured results."""
    error_cls = _ERRORS_BY_KIND.get(kind)
    if error_cls is not None:
        return error_cls(message)
    error = ReceivingError(message)
    error.kind = kind
    return error
