"""
Domain errors for the storefront service.

Each error carries the HTTP status it is surfaced with; main.py registers a
handler that turns them into JSON responses.
"""
from typing import Any, List, Optional


class StorefrontError(Exception):
    """Base class for errors that are reported to the caller."""
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationError(StorefrontError):
    """Malformed or missing required input."""
    status_code = 400


class NotFound(StorefrontError):
    status_code = 404


class ProductUnavailable(StorefrontError):
    """A cart line references a missing or out-of-stock product."""
    status_code = 400


class GatewayRejected(StorefrontError):
    """The payment gateway declined to start a payment."""
    status_code = 400


class GatewayUnreachable(StorefrontError):
    """Network failure or timeout talking to a payment gateway."""
    status_code = 500


class MalformedGatewayResponse(GatewayUnreachable):
    """The gateway answered with something that is not JSON."""


class WebhookAuthFailure(StorefrontError):
    status_code = 401
