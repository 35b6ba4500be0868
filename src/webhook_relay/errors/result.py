"""Result: explicit success/failure value for administrative operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from webhook_relay.errors.webhook_errors import WebhookError

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a typed :class:`WebhookError`, never both.

    Callers branch on :attr:`ok` (or ``isinstance(result.error, NotFoundError)``)
    instead of catching exceptions across the admin boundary.
    """

    value: T | None = None
    error: WebhookError | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: WebhookError) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        """True when the operation succeeded."""
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or re-raise the stored error.

        Raises:
            WebhookError: The error the operation failed with.
        """
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, object]:
        """Serialize the failure side for logging or rendering."""
        if self.error is None:
            return {"ok": True}
        return {"ok": False, "code": self.error.code, "message": self.error.message}


async def capture(awaitable: Awaitable[T]) -> Result[T]:
    """Await *awaitable* and wrap its outcome in a :class:`Result`.

    Only :class:`WebhookError` is converted; anything else is a programming
    error and propagates.
    """
    try:
        value = await awaitable
    except WebhookError as exc:
        return Result.failure(exc)
    return Result.success(value)
