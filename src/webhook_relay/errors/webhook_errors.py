"""WebhookError: base exception class and typed error kinds."""

from __future__ import annotations


class WebhookError(Exception):
    """Base error for all webhook relay operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "webhook-error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class NotFoundError(WebhookError):
    """Referenced webhook, secret or delivery does not exist in the caller's workspace."""

    def __init__(self, message: str, *, code: str = "not-found") -> None:
        super().__init__(message, status_code=404, code=code)


class ValidationError(WebhookError):
    """Input rejected before any write was applied."""

    def __init__(self, message: str, *, code: str = "validation-error") -> None:
        super().__init__(message, status_code=400, code=code)


class ConcurrencyConflict(WebhookError):
    """A delivery lease is already held by another worker."""

    def __init__(self, message: str, *, code: str = "concurrency-conflict") -> None:
        super().__init__(message, status_code=409, code=code)


class UnauthorizedError(WebhookError):
    """Request is missing the workspace or actor identity."""

    def __init__(self, message: str, *, code: str = "unauthorized") -> None:
        super().__init__(message, status_code=401, code=code)


class DeliveryError(WebhookError):
    """A single delivery attempt failed; the queue decides whether to retry.

    Attributes:
        response_status: HTTP status returned by the subscriber, or ``None``
            for network errors and timeouts.
    """

    def __init__(self, message: str, *, response_status: int | None = None) -> None:
        super().__init__(message, status_code=502, code="delivery-error")
        self.response_status = response_status


class TerminalDeliveryFailure(WebhookError):
    """Retries exhausted; the attempt has been dead-lettered.

    Built and recorded by the delivery queue, never raised out of the worker.
    """

    def __init__(self, delivery_id: str, attempts: int, last_error: str | None) -> None:
        super().__init__(
            f"delivery {delivery_id} dead-lettered after {attempts} attempts: {last_error}",
            status_code=502,
            code="delivery-dead-lettered",
        )
        self.delivery_id = delivery_id
        self.attempts = attempts
        self.last_error = last_error
