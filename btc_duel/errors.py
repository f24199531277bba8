"""
Error Types
===========

Exceptions raised when a caller breaks an input contract.

Upstream failures, unknown sessions and not-yet-ready settlements are
never raised; they come back as None (or a result variant).
"""


class DuelError(Exception):
    """Base application error."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInputError(DuelError, ValueError):
    """Argument violates the core's input contract."""


class InvalidPriceError(InvalidInputError):
    """Price is not a finite positive number."""

    def __init__(self, price):
        self.price = price
        super().__init__(f"Invalid price: {price!r} (must be positive)")


class PriceFeedError(DuelError):
    """Upstream price source returned an unusable response."""
