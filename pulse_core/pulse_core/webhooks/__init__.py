"""Provider webhook verification, parsing, and state transitions."""

from pulse_core.webhooks.events import (
    InstallEvent,
    PlanChangedEvent,
    UninstallEvent,
    UnrecognizedEvent,
    WebhookEvent,
    WebhookEventKind,
    WebhookPayloadError,
    parse_event,
)
from pulse_core.webhooks.signature import SignatureError, compute_signature, verify_signature
from pulse_core.webhooks.state_machine import WebhookOutcome, WebhookStateMachine, WebhookStatus

__all__ = [
    "InstallEvent",
    "PlanChangedEvent",
    "SignatureError",
    "UninstallEvent",
    "UnrecognizedEvent",
    "WebhookEvent",
    "WebhookEventKind",
    "WebhookOutcome",
    "WebhookPayloadError",
    "WebhookStateMachine",
    "WebhookStatus",
    "compute_signature",
    "parse_event",
    "verify_signature",
]
