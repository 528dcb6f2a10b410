"""Tests for webhook HMAC verification and event parsing."""

from __future__ import annotations

import pytest

from pulse_core.webhooks import (
    InstallEvent,
    PlanChangedEvent,
    SignatureError,
    UninstallEvent,
    UnrecognizedEvent,
    WebhookEventKind,
    WebhookPayloadError,
    compute_signature,
    parse_event,
    verify_signature,
)

SECRET = "whsec_test"
BODY = b'{"event":"app.installed","data":{"company_id":"biz_1","access_token":"tok"}}'


# ---------------------------------------------------------------------------
# verify_signature
# ---------------------------------------------------------------------------


class TestVerifySignature:
    def test_valid_signature_passes(self) -> None:
        verify_signature(BODY, compute_signature(BODY, SECRET), SECRET)

    def test_prefixed_signature_passes(self) -> None:
        verify_signature(BODY, "sha256=" + compute_signature(BODY, SECRET), SECRET)

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing_signature(self, header: str | None) -> None:
        with pytest.raises(SignatureError) as exc_info:
            verify_signature(BODY, header, SECRET)
        assert exc_info.value.missing is True

    def test_modified_body_is_rejected(self) -> None:
        signature = compute_signature(BODY, SECRET)
        with pytest.raises(SignatureError) as exc_info:
            verify_signature(BODY + b" ", signature, SECRET)
        assert exc_info.value.missing is False

    def test_wrong_secret_is_rejected(self) -> None:
        with pytest.raises(SignatureError):
            verify_signature(BODY, compute_signature(BODY, "other"), SECRET)

    def test_unconfigured_secret_rejects_everything(self) -> None:
        with pytest.raises(SignatureError) as exc_info:
            verify_signature(BODY, compute_signature(BODY, ""), "")
        assert exc_info.value.missing is False

    def test_non_ascii_header_is_rejected_not_raised(self) -> None:
        with pytest.raises(SignatureError):
            verify_signature(BODY, "é" * 64, SECRET)


# ---------------------------------------------------------------------------
# parse_event
# ---------------------------------------------------------------------------


class TestParseEvent:
    def test_install(self) -> None:
        event = parse_event(
            {
                "event": "app.installed",
                "data": {
                    "company_id": "biz_1",
                    "access_token": "tok",
                    "experience_id": "exp_1",
                    "plan": "pro",
                },
            }
        )
        assert event == InstallEvent(tenant_id="biz_1", credential="tok", secondary_id="exp_1", plan="pro")
        assert event.kind is WebhookEventKind.INSTALL

    def test_install_optional_fields(self) -> None:
        event = parse_event({"event": "app.installed", "data": {"company_id": "biz_1", "access_token": "tok"}})
        assert isinstance(event, InstallEvent)
        assert event.secondary_id is None
        assert event.plan is None

    def test_uninstall(self) -> None:
        event = parse_event({"event": "app.uninstalled", "data": {"company_id": "biz_1"}})
        assert event == UninstallEvent(tenant_id="biz_1")

    def test_plan_changed(self) -> None:
        event = parse_event({"event": "app.plan.updated", "data": {"company_id": "biz_1", "plan": "business"}})
        assert event == PlanChangedEvent(tenant_id="biz_1", plan="business")

    @pytest.mark.parametrize("name", ["app.updated", "payment.succeeded", None])
    def test_unknown_events_are_unrecognized(self, name: str | None) -> None:
        event = parse_event({"event": name, "data": {}})
        assert isinstance(event, UnrecognizedEvent)

    def test_install_without_token_is_malformed(self) -> None:
        with pytest.raises(WebhookPayloadError, match="access_token"):
            parse_event({"event": "app.installed", "data": {"company_id": "biz_1"}})

    def test_plan_change_without_plan_is_malformed(self) -> None:
        with pytest.raises(WebhookPayloadError, match="plan"):
            parse_event({"event": "app.plan.updated", "data": {"company_id": "biz_1"}})

    def test_recognized_event_without_data_is_malformed(self) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_event({"event": "app.uninstalled"})

    def test_non_object_body_is_malformed(self) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_event(["app.installed"])

    def test_payload_error_is_a_value_error(self) -> None:
        assert issubclass(WebhookPayloadError, ValueError)
