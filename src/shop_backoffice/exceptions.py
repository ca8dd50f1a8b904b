"""Error taxonomy raised by the commerce core and the business logic layer."""

from __future__ import annotations


class CommerceError(Exception):
    """Base class for every domain error raised by the package."""


class ValidationError(CommerceError, ValueError):
    """Raised when required order, customer, or product data is missing or invalid."""


class StatusTransitionError(ValidationError):
    """Raised when a strict lifecycle policy rejects a status change."""


class NegativeStockError(CommerceError):
    """Raised when a stock adjustment would drive a quantity below zero."""

    def __init__(self, message: str, *, available: int, requested: int) -> None:
        super().__init__(message)
        self.available = available
        self.requested = requested


class NotFoundError(CommerceError, LookupError):
    """Raised when a referenced product, variant, or order is unknown."""


__all__ = [
    "CommerceError",
    "ValidationError",
    "StatusTransitionError",
    "NegativeStockError",
    "NotFoundError",
]
