"""Session tokens and shared-secret checks.

Session tokens have the form ``<base64url(payload)>.<hex HMAC-SHA256>``
where the payload is ``{"tenant_id", "user_id", "exp"}`` and the HMAC is
computed over the encoded payload with the configured session secret.
A token is only trusted after its signature and expiry both check out.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from datetime import UTC, datetime

from fastapi import HTTPException

from pulse_core.identity.context import SessionClaims

logger = logging.getLogger(__name__)


def _sign(payload_b64: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload_b64.encode("utf-8"), hashlib.sha256).hexdigest()


def encode_session_token(
    claims: SessionClaims,
    secret: str,
    ttl_seconds: int,
    *,
    now: float | None = None,
) -> str:
    """Sign *claims* into a session token valid for *ttl_seconds*."""
    issued = time.time() if now is None else now
    payload = {
        "tenant_id": claims.tenant_id,
        "user_id": claims.user_id,
        "exp": int(issued + ttl_seconds),
    }
    payload_b64 = base64.urlsafe_b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")
    return f"{payload_b64}.{_sign(payload_b64, secret)}"


def decode_session_token(
    token: str,
    secret: str,
    *,
    now: float | None = None,
) -> SessionClaims | None:
    """Return the claims of a valid token, or ``None``.

    Malformed, tampered, and expired tokens all yield ``None``; the reason is
    logged at debug level only.
    """
    payload_b64, sep, signature = token.strip().partition(".")
    if not sep or not payload_b64 or not signature:
        logger.debug("Rejected session token: malformed")
        return None

    expected = _sign(payload_b64, secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        logger.debug("Rejected session token: bad signature")
        return None

    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64.encode("ascii")))
        tenant_id = str(payload["tenant_id"])
        user_id = str(payload["user_id"])
        exp = int(payload["exp"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
        logger.debug("Rejected session token: undecodable payload")
        return None

    current = time.time() if now is None else now
    if exp <= current:
        logger.debug("Rejected session token for tenant %s: expired", tenant_id)
        return None

    return SessionClaims(
        tenant_id=tenant_id,
        user_id=user_id,
        expires_at=datetime.fromtimestamp(exp, tz=UTC),
    )


def check_shared_secret(provided: str | None, expected: str) -> None:
    """Validate an admin shared secret in constant time.

    Raises
    ------
    HTTPException
        401 when no secret was supplied, 403 when it does not match (or no
        secret is configured on the server).
    """
    if not provided:
        raise HTTPException(status_code=401, detail="Missing secret")
    if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid secret")
