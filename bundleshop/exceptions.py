# bundleshop/exceptions.py
from typing import Any, Optional


class GatewayError(Exception):
    """Raised when the payment gateway rejects a request or cannot be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body


class SupplierError(Exception):
    """Raised on any failed supplier call.

    ``is_insufficient_balance`` is set by the adapter so callers can special-case
    an empty wholesale wallet without matching on the message themselves.
    """

    def __init__(self, message: str, is_insufficient_balance: bool = False,
                 status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.is_insufficient_balance = is_insufficient_balance
        self.status = status
        self.body = body


class UnknownServiceType(SupplierError):
    """Raised when a service line has no supplier mapping."""

    def __init__(self, service_type: str):
        super().__init__(f"Unknown service type: {service_type}")
        self.service_type = service_type


class OrderValidationError(Exception):
    """Raised for purchase requests that cannot be accepted."""


class ServiceDisabledError(OrderValidationError):
    """Raised when a purchase targets a service line that is switched off."""
