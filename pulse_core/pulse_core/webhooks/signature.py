"""HMAC-SHA256 verification of provider webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac

_PREFIX = "sha256="


class SignatureError(Exception):
    """Raised when a webhook signature is missing or does not match."""

    def __init__(self, message: str, *, missing: bool = False) -> None:
        super().__init__(message)
        self.missing = missing


def compute_signature(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of *body* under *secret*."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature_header: str | None, secret: str) -> None:
    """Verify *signature_header* against the exact raw *body* bytes.

    The header carries a hex digest, optionally prefixed with ``sha256=``.
    The comparison is constant time.

    Raises
    ------
    SignatureError
        ``missing=True`` when no signature was supplied, otherwise when the
        digest does not match (or no secret is configured).
    """
    if not signature_header or not signature_header.strip():
        raise SignatureError("Missing webhook signature", missing=True)
    if not secret:
        raise SignatureError("Webhook secret is not configured")

    provided = signature_header.strip()
    if provided.lower().startswith(_PREFIX):
        provided = provided[len(_PREFIX) :]

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8")):
        raise SignatureError("Invalid webhook signature")
