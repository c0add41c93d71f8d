"""Order pipeline errors.

Validation and commit errors carry the client-facing message and propagate
to the caller. Delivery errors drive queue state transitions only.
"""


class OrderError(Exception):
    """Base class for errors surfaced to the order submitter."""

    code = "order_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(OrderError):
    code = "invalid_input"


class NotFound(OrderError):
    code = "not_found"


class Inactive(OrderError):
    code = "inactive"


class OutOfStock(OrderError):
    code = "out_of_stock"


class InsufficientStock(OrderError):
    code = "insufficient_stock"


class CommitConflict(OrderError):
    """Stock changed between validation and commit; nothing was written."""

    code = "commit_conflict"


class PersistenceError(OrderError):
    code = "persistence_error"
    status_code = 500


class InvalidTransition(OrderError):
    code = "invalid_transition"
    status_code = 409


class Forbidden(OrderError):
    code = "forbidden"
    status_code = 403


# ---------------------------------------------------------------------------
# Delivery pipeline
# ---------------------------------------------------------------------------

class DeliveryError(Exception):
    """Base class for asynchronous delivery failures."""


class GatewayUnavailable(DeliveryError):
    """The fulfillment gateway refused to create a digital order handle."""


class DeliveryAttemptFailed(DeliveryError):
    """A single poll could not resolve the download links."""


class RetryExhausted(DeliveryError):
    """The retry budget of a delivery job reached zero."""
