# Overview: Error taxonomy for stock reconciliation operations.

"""
Every error raised by the reconciliation core derives from StockError.

- status_code: HTTP status the route layer answers with.
- code: stable machine-readable identifier for API clients.

All errors are fatal to the operation that raised them. The only
non-fatal anomaly (releasing more reservation than exists) is logged by
balance_service and never raised.
"""

from __future__ import annotations


class StockError(Exception):
    """Base class for reconciliation failures."""

    status_code = 400
    code = "STOCK_ERROR"

    def __init__(self, message: str, **meta):
        super().__init__(message)
        self.message = message
        self.meta = meta

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.meta:
            body["meta"] = self.meta
        return body


class ValidationError(StockError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"


class NotFoundError(StockError):
    status_code = 404
    code = "NOT_FOUND"


class InsufficientStockError(StockError):
    """On-hand quantity at a location would go negative."""

    status_code = 409
    code = "INSUFFICIENT_STOCK"


class InsufficientAvailableError(InsufficientStockError):
    """On-hand is enough but the unreserved (available) part is not."""

    code = "INSUFFICIENT_AVAILABLE"


class BatchExpiredError(StockError):
    status_code = 409
    code = "BATCH_EXPIRED"


class OverShipmentError(StockError):
    """Picked quantity exceeds what the request still needs."""

    code = "OVER_SHIPMENT"


class ExcessReturnError(StockError):
    """Returned quantity exceeds what is still pending on the movement."""

    code = "EXCESS_RETURN"


class InvalidStateError(StockError):
    status_code = 409
    code = "INVALID_STATE"


class NotFulfilledError(InvalidStateError):
    code = "NOT_FULFILLED"


class AlreadyConfirmedError(InvalidStateError):
    code = "ALREADY_CONFIRMED"


class ConcurrentModificationError(StockError):
    """Version conflict with a concurrent writer. Safe to retry from scratch."""

    status_code = 409
    code = "CONCURRENT_MODIFICATION"
