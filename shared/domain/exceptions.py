"""
Domain Errors

Error taxonomy shared by the reservation and finance contexts.
Every failure of the reconciliation core is one of these; the HTTP
layer maps them to status codes in shared.application.http.
"""


class DomainError(Exception):
    """Base class for all domain errors."""

    default_message = "Domain error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(DomainError):
    """Bad input (e.g. non-positive amount). No state was changed."""

    default_message = "Invalid input"


class NotFoundError(DomainError):
    """Unknown reservation or payment. No state was changed."""

    default_message = "Not found"


class ConflictError(DomainError):
    """A pending payment already exists for the reservation."""

    default_message = "Conflicting payment"


class AlreadyTerminalError(ConflictError):
    """The payment already reached a different terminal state."""

    default_message = "Payment is already in a terminal state"

    def __init__(self, message: str | None = None, payment=None):
        super().__init__(message)
        self.payment = payment


class InvalidStateError(DomainError):
    """Guard violation not explained by an idempotent replay."""

    default_message = "Operation is not allowed in the current state"


class InvalidTransitionError(InvalidStateError):
    """Illegal status or payment_status transition."""

    default_message = "Illegal status transition"


class TransientError(DomainError):
    """Infrastructure failure (lock timeout, connectivity). Safe to retry."""

    default_message = "Temporary failure"


class WebhookAuthenticationError(DomainError):
    """Inbound callback could not be authenticated."""

    default_message = "Invalid callback signature"
