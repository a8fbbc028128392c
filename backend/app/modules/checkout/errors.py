"""
Checkout error taxonomy.

Every failure the checkout can hit is one of these classes. The
orchestrator maps each of them onto an explicit state plus a
user-facing message; none of them escapes to the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced in checkout snapshots."""

    FORM_VALIDATION = "form_validation"
    OUT_OF_ZONE = "out_of_zone"
    NETWORK = "network"
    SERVER = "server"
    HANDOFF = "handoff"


class CheckoutError(Exception):
    """Base class for checkout failures."""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str = "") -> None:
        super().__init__(message or user_message(self.kind))
        self.message = message or user_message(self.kind)

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)


class FormValidationError(CheckoutError):
    """Missing or malformed form field. Never reaches the network layer."""

    kind = ErrorKind.FORM_VALIDATION

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(f"Invalid fields: {', '.join(sorted(self.errors))}")


class ZoneError(CheckoutError):
    """Address resolves outside the deliverable area."""

    kind = ErrorKind.OUT_OF_ZONE


class NetworkError(CheckoutError):
    """Connectivity failure or timeout."""

    kind = ErrorKind.NETWORK

class ServerError(CheckoutError):
    """Non-2xx (or unreadable) response from the delivery service."""

    kind = ErrorKind.SERVER
    def __init__(self, message: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class HandoffError(CheckoutError):
    """The priced order could not be written to the handoff channel."""

    kind = ErrorKind.HANDOFF

_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.FORM_VALIDATION: "Please correct the highlighted fields and try again.",
    ErrorKind.OUT_OF_ZONE: (
        "Sorry, we currently deliver only within our service area. "
        "Please use a different address."
    ),
    ErrorKind.NETWORK: (
        "Unable to connect to the server. "
        "Please check your internet connection and try again."
    ),
    ErrorKind.SERVER: "Something went wrong. Please try again later.",
    ErrorKind.HANDOFF: "We couldn't prepare your order for payment. Please try again.",
}


def user_message(kind: ErrorKind) -> str:
    """Get user-friendly message for an error category."""
    return _MESSAGES[kind]


def is_retryable(kind: ErrorKind) -> bool:
    """Network, server and handoff failures can be retried as-is."""
    return kind in (ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.HANDOFF)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Map any exception onto a checkout error category.

    Unknown exceptions count as server errors, so callers
    treat them as transient.
    """
    if isinstance(error, CheckoutError):
        return error.kind
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK
    return ErrorKind.SERVER
