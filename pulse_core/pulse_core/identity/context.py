"""Request-scoped identity values.

These are plain immutable values built by the API layer for each request
and passed explicitly into the resolver.  Nothing here is stored on a
module or process global.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class SessionClaims:
    """Decoded (or to-be-signed) session cookie contents."""

    tenant_id: str
    user_id: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class RequestContext:
    """Identifiers presented by one request.

    ``url_tenant_id`` and ``url_secondary_id`` come straight from the URL
    and are untrusted.  ``verified_user_id`` is set only from a valid signed
    session or a completed OAuth exchange.
    """

    url_tenant_id: str | None = None
    url_secondary_id: str | None = None
    verified_user_id: str | None = None
    session: SessionClaims | None = None

    @classmethod
    def from_session(
        cls,
        session: SessionClaims | None,
        *,
        url_tenant_id: str | None = None,
        url_secondary_id: str | None = None,
    ) -> RequestContext:
        return cls(
            url_tenant_id=url_tenant_id or None,
            url_secondary_id=url_secondary_id or None,
            verified_user_id=session.user_id if session is not None else None,
            session=session,
        )
