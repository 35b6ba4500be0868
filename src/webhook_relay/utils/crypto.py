"""Cryptographic helpers: hashing, random secrets, timestamps."""

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime


def sha256_hex(data: str | bytes) -> str:
    """Hex-encoded SHA-256 digest of *data* (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def random_hex(num_bytes: int) -> str:
    """Cryptographically random byte string, hex-encoded."""
    return secrets.token_hex(num_bytes)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(tz=UTC)


def isoformat_z(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix (``2024-01-01T00:00:00.000Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
