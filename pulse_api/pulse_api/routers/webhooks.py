"""Provider webhook receiver.

The signature is verified against the exact raw body before anything is
parsed or written.  Installs request a 7-day backfill which is submitted to
the background dispatcher only after the state change has committed, so the
provider's delivery never waits on it.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from pulse_core.events import EventType
from pulse_core.webhooks import (
    SignatureError,
    WebhookPayloadError,
    WebhookStateMachine,
    WebhookStatus,
    parse_event,
    verify_signature,
)

from pulse_api.dependencies import DispatcherDep, EventBusDep, SessionDep, SettingsDep
from pulse_api.middleware.prometheus import WEBHOOK_EVENTS_TOTAL
from pulse_api.middleware.trace_context import get_trace_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-webhook-signature"

_LIFECYCLE_EVENTS: dict[WebhookStatus, EventType] = {
    WebhookStatus.INSTALLED: EventType.TENANT_INSTALLED,
    WebhookStatus.REFRESHED: EventType.TENANT_INSTALLED,
    WebhookStatus.REINSTALLED: EventType.TENANT_REINSTALLED,
    WebhookStatus.UNINSTALLED: EventType.TENANT_UNINSTALLED,
    WebhookStatus.PLAN_UPDATED: EventType.PLAN_CHANGED,
}


@router.post("/provider", response_model=None)
async def provider_webhook(
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    dispatcher: DispatcherDep,
    event_bus: EventBusDep,
) -> dict[str, Any] | JSONResponse:
    """Receive an install, uninstall, or plan change from the provider.

    Responses:

    * 401 missing signature, 403 invalid signature;
    * 400 body is not valid JSON;
    * 500 ``{"error": ...}`` for a malformed recognized event or a store
      failure (the provider will redeliver);
    * 200 ``{"ok": true, "event": ..., "status": ...}`` otherwise, including
      ignored events and not-found uninstalls or plan changes.
    """
    body = await request.body()
    try:
        verify_signature(
            body,
            request.headers.get(SIGNATURE_HEADER),
            settings.webhook_secret.get_secret_value(),
        )
    except SignatureError as exc:
        logger.warning("Rejected webhook delivery: %s", exc)
        raise HTTPException(status_code=401 if exc.missing else 403, detail=str(exc))

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        event = parse_event(payload)
    except WebhookPayloadError as exc:
        logger.error("Malformed webhook payload: %s", exc)
        event_name = str(payload.get("event", "")) if isinstance(payload, dict) else ""
        WEBHOOK_EVENTS_TOTAL.labels(event=event_name, status="error").inc()
        return JSONResponse(status_code=500, content={"error": str(exc)})

    try:
        outcome = await WebhookStateMachine(session).apply(event)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("Store failure while applying %s webhook: %s", event.kind.value, exc, exc_info=True)
        WEBHOOK_EVENTS_TOTAL.labels(event=event.kind.value, status="error").inc()
        return JSONResponse(status_code=500, content={"error": "Failed to apply webhook event"})

    if outcome.tenant_id is not None:
        request.state.tenant_id = outcome.tenant_id
        lifecycle = _LIFECYCLE_EVENTS.get(outcome.status)
        if lifecycle is not None:
            await event_bus.emit(
                lifecycle,
                tenant_id=outcome.tenant_id,
                data={"status": outcome.status.value},
                correlation_id=get_trace_id() or None,
            )

    if outcome.backfill_requested and outcome.tenant_id is not None:
        dispatcher.submit(outcome.tenant_id)

    WEBHOOK_EVENTS_TOTAL.labels(event=outcome.event, status=outcome.status.value).inc()
    return {"ok": True, "event": outcome.event, "status": outcome.status.value}
