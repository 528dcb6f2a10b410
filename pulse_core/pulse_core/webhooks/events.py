"""Typed webhook events.

The provider posts ``{"event": str, "data": {...}}``.  :func:`parse_event`
turns that into one member of the closed :data:`WebhookEvent` union; any
event string outside :class:`WebhookEventKind` becomes an
:class:`UnrecognizedEvent` rather than an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class WebhookEventKind(str, Enum):
    INSTALL = "app.installed"
    UNINSTALL = "app.uninstalled"
    PLAN_CHANGED = "app.plan.updated"
    UNRECOGNIZED = "unrecognized"


class WebhookPayloadError(ValueError):
    """A recognized event is missing a required field or is malformed."""


@dataclass(frozen=True)
class InstallEvent:
    kind: ClassVar[WebhookEventKind] = WebhookEventKind.INSTALL

    tenant_id: str
    credential: str
    secondary_id: str | None = None
    plan: str | None = None


@dataclass(frozen=True)
class UninstallEvent:
    kind: ClassVar[WebhookEventKind] = WebhookEventKind.UNINSTALL

    tenant_id: str


@dataclass(frozen=True)
class PlanChangedEvent:
    kind: ClassVar[WebhookEventKind] = WebhookEventKind.PLAN_CHANGED

    tenant_id: str
    plan: str


@dataclass(frozen=True)
class UnrecognizedEvent:
    kind: ClassVar[WebhookEventKind] = WebhookEventKind.UNRECOGNIZED

    event: str


WebhookEvent = InstallEvent | UninstallEvent | PlanChangedEvent | UnrecognizedEvent

_KINDS_BY_NAME = {k.value: k for k in WebhookEventKind if k is not WebhookEventKind.UNRECOGNIZED}


def _required(data: dict[str, Any], field: str, event: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise WebhookPayloadError(f"{event}: missing required field data.{field}")
    return value.strip()


def _optional(data: dict[str, Any], field: str) -> str | None:
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise WebhookPayloadError(f"data.{field} must be a string")
    return value.strip() or None


def parse_event(payload: Any) -> WebhookEvent:
    """Parse a decoded webhook body into a typed event.

    Raises
    ------
    WebhookPayloadError
        If the body is not an object, or a recognized event lacks a
        required field.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    name = payload.get("event")
    kind = _KINDS_BY_NAME.get(name) if isinstance(name, str) else None
    if kind is None:
        return UnrecognizedEvent(event=str(name) if name is not None else "")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise WebhookPayloadError(f"{name}: data must be an object")

    if kind is WebhookEventKind.INSTALL:
        return InstallEvent(
            tenant_id=_required(data, "company_id", name),
            credential=_required(data, "access_token", name),
            secondary_id=_optional(data, "experience_id"),
            plan=_optional(data, "plan"),
        )
    if kind is WebhookEventKind.UNINSTALL:
        return UninstallEvent(tenant_id=_required(data, "company_id", name))
    if kind is WebhookEventKind.PLAN_CHANGED:
        return PlanChangedEvent(
            tenant_id=_required(data, "company_id", name),
            plan=_required(data, "plan", name),
        )
    raise WebhookPayloadError(f"Unhandled event kind {kind.value}")
