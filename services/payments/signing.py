# services/payments/signing.py
"""
Payzone signing primitives.

Two schemes, kept apart on purpose:
- outbound paywall requests: sha256(secret + payload), lowercase hex
- inbound notifications:     HMAC-SHA256(secret, raw body), lowercase hex
"""

from __future__ import annotations
import hashlib
import hmac


def _as_bytes(v: str | bytes) -> bytes:
    return v if isinstance(v, bytes) else v.encode("utf-8")


def sign_outbound(secret_key: str | bytes, payload: str | bytes) -> str:
    """Secret-prefix SHA-256 over the exact serialized payload."""
    return hashlib.sha256(_as_bytes(secret_key) + _as_bytes(payload)).hexdigest()


def hmac_signature(secret_key: str | bytes, raw_body: bytes) -> str:
    return hmac.new(_as_bytes(secret_key), raw_body, hashlib.sha256).hexdigest()


def verify_inbound(secret_key: str | bytes, raw_body: bytes, provided_signature: str | None) -> bool:
    """
    Check X-Callback-Signature against the raw request bytes.
    Never pass a re-serialized body here: JSON round-trips are not byte-stable.
    """
    if not provided_signature:
        return False
    expected = hmac_signature(secret_key, raw_body).encode("ascii")
    # bytes on both sides: a non-ASCII header is a mismatch, not a TypeError
    provided = provided_signature.strip().lower().encode("utf-8", "replace")
    return hmac.compare_digest(expected, provided)
