"""
Marketplace error taxonomy.

Services raise these; the handler registered in main.py renders them as
``{"error": ..., "details": ...}`` with the matching HTTP status.
"""

from typing import Any, Optional


class MarketplaceError(Exception):
    """Base class for errors that map onto an HTTP response"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class ProductUnavailable(NotFound):
    """Product missing or no longer active"""


class InvalidInput(MarketplaceError):
    status_code = 400


class EmptyCart(InvalidInput):
    pass


class InvalidShippingOption(InvalidInput):
    """Selected shipping option is not in the quote; checkout continues without shipping"""


class ShippingQuoteError(MarketplaceError):
    """Shipping collaborator failed; checkout continues without shipping"""

    status_code = 502


class Conflict(MarketplaceError):
    status_code = 409


class MethodNotAllowed(MarketplaceError):
    status_code = 405


class UpstreamFailure(MarketplaceError):
    """Payment or shipping provider error, passed through for diagnostics"""

    status_code = 500
