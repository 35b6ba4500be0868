"""Signature codec: HMAC-SHA256 over canonical JSON bodies.

Outbound deliveries carry ``X-Webhook-Signature: sha256=<hex>``. The HMAC
key is the SHA-256 hex digest of the raw secret handed to the subscriber
(the same value stored as ``WebhookSecret.secret_hash``), so the relay never
needs the plaintext after issuing it. Subscribers verify with::

    key = hashlib.sha256(raw_secret.encode()).hexdigest()
    expected = "sha256=" + hmac.new(key.encode(), body, hashlib.sha256).hexdigest()
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic_core import to_jsonable_python

from webhook_relay.utils.crypto import sha256_hex

if TYPE_CHECKING:
    from collections.abc import Iterable

SIGNATURE_PREFIX = "sha256="
_SIGNATURE_LENGTH = len(SIGNATURE_PREFIX) + hashlib.sha256().digest_size * 2


@dataclass(frozen=True)
class SigningCandidate:
    """A key that may have produced a signature."""

    secret_id: str
    key: str
    in_grace_period: bool = False


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of multi-secret verification."""

    valid: bool
    secret_id: str | None = None
    in_grace_period: bool = False


def _to_bytes(payload: bytes | str) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


def canonical_json(obj: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace, UTF-8 text."""
    return json.dumps(
        to_jsonable_python(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def derive_signing_key(raw_secret: str) -> str:
    """HMAC key for a raw secret (its SHA-256 hex digest)."""
    return sha256_hex(raw_secret)


def sign(payload: bytes | str, secret: str) -> str:
    """Return ``sha256=<hex HMAC-SHA256(secret, payload)>``."""
    digest = hmac.new(secret.encode("utf-8"), _to_bytes(payload), hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify(payload: bytes | str, signature_header: str | None, secret: str) -> bool:
    """Constant-time check of *signature_header* against *payload*.

    A header of the wrong length is compared against a same-length dummy so
    the rejection path does the same work as a real comparison.
    """
    expected = sign(payload, secret).encode("ascii")
    provided = (signature_header or "").encode("utf-8", "replace")
    if len(provided) != len(expected):
        hmac.compare_digest(expected, expected)
        return False
    return hmac.compare_digest(expected, provided)


def verify_any(
    payload: bytes | str,
    signature_header: str | None,
    candidates: Iterable[SigningCandidate],
) -> VerificationResult:
    """Verify against every candidate key; succeed if any matches.

    All candidates are checked even after a match so timing does not reveal
    which generation of secret was used.
    """
    match: SigningCandidate | None = None
    for candidate in candidates:
        if verify(payload, signature_header, candidate.key) and match is None:
            match = candidate
    if match is None:
        return VerificationResult(valid=False)
    return VerificationResult(
        valid=True,
        secret_id=match.secret_id,
        in_grace_period=match.in_grace_period,
    )


def is_well_formed(signature_header: str | None) -> bool:
    """Cheap syntactic check (prefix and hex length) for logging bad requests."""
    if not signature_header or len(signature_header) != _SIGNATURE_LENGTH:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    try:
        bytes.fromhex(signature_header[len(SIGNATURE_PREFIX) :])
    except ValueError:
        return False
    return True
