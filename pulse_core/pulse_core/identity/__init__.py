"""Tenant identity resolution."""

from pulse_core.identity.context import RequestContext, SessionClaims
from pulse_core.identity.resolver import (
    IdentityResolver,
    Resolution,
    ResolutionSource,
    ResolutionStatus,
)

__all__ = [
    "IdentityResolver",
    "RequestContext",
    "Resolution",
    "ResolutionSource",
    "ResolutionStatus",
    "SessionClaims",
]
