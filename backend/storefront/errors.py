# Overview: Domain exception hierarchy shared by services and mapped to HTTP responses by routes.

"""
Storefront error taxonomy.

Every domain failure raised by a service is a StorefrontError subclass carrying
a human-readable message, an optional ``details`` payload (e.g. the corrected
cart after a stock conflict) and the HTTP status the API layer answers with.
Anything that is not a StorefrontError is treated as an internal error: the
route logs it and answers with a generic 500.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for recoverable domain errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


# =============================================================================
# VALIDATION (400)
# =============================================================================

class ValidationError(StorefrontError):
    """Missing or malformed input."""


class EmptyCart(ValidationError):
    pass


class MissingShippingDetails(ValidationError):
    pass


class NoPendingCheckout(ValidationError):
    pass


class InvalidMethod(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


# =============================================================================
# STOCK CONFLICTS (409)
# =============================================================================

class StockConflict(StorefrontError):
    """Cart no longer matches the catalog; the cart has been corrected."""

    status_code = 409


class ItemRemoved(StockConflict):
    pass


class OutOfStock(StockConflict):
    pass


class InsufficientStock(StockConflict):
    pass


# =============================================================================
# PROVIDERS (502 / 422)
# =============================================================================

class ProviderError(StorefrontError):
    """Payment processor unreachable, declined or answered with an error."""

    status_code = 502


class ProviderUnavailable(ProviderError):
    status_code = 503


class PaymentNotCompleted(ProviderError):
    status_code = 402


class OriginalPaymentMissing(ProviderError):
    status_code = 422


# =============================================================================
# WALLET / REFUNDS (409)
# =============================================================================

class InsufficientFunds(StorefrontError):
    status_code = 409


class RefundAlreadyPending(StorefrontError):
    status_code = 409


class InvalidTransition(StorefrontError):
    status_code = 409


# =============================================================================
# ACCESS (401 / 403 / 404)
# =============================================================================

class AuthenticationError(StorefrontError):
    status_code = 401


class AuthorizationError(StorefrontError):
    status_code = 403


class OrderOwnerDeleted(AuthorizationError):
    pass


class StepUpFailed(AuthorizationError):
    pass


class NotFoundError(StorefrontError):
    status_code = 404
