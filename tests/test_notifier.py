"""
test_notifier.py — Notification Gateway routing, retry and channels.

Run with:
    pytest tests/test_notifier.py -v
"""

from __future__ import annotations

import json
from dataclasses import replace
from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import ValidationError

from backend.app.alerts.alert_factory import AlertFactory
from backend.app.alerts.channels import police_dispatch, sms_gateway, web_push
from backend.app.alerts.models import (
    DeliveryStatus,
    NotificationChannel,
    RecipientChannel,
    Severity,
    ViolationAction,
    ViolationVerdict,
)
from backend.app.alerts.notifier import (
    NotificationGateway,
    RetryConfig,
    _compute_backoff,
)
from backend.app.core.config import Settings
from backend.app.spatial.distance import Coordinate

POINT = Coordinate(longitude=92.7933, latitude=26.6337)
NO_WAIT = RetryConfig(max_retries=2, backoff_base_seconds=0.0)


def _geofence_alert(severity: Severity):
    verdict = ViolationVerdict(
        violated=True,
        zone_id="Z1",
        zone_name="Test Zone",
        zone_type="custom",
        severity=severity,
        description="test",
        distance_m=10,
        action=ViolationAction.IMMEDIATE_ALERT,
    )
    return AlertFactory().from_violation("T-001", POINT, None, verdict)


def _dispatch_units(caplog) -> list:
    return [
        r.getMessage() for r in caplog.records
        if r.getMessage().startswith("[DISPATCH]")
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Backoff
# ═══════════════════════════════════════════════════════════════════════════

class TestBackoff:

    def test_exponential(self):
        cfg = RetryConfig(backoff_base_seconds=0.5)
        assert [_compute_backoff(cfg, n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_linear(self):
        cfg = RetryConfig(backoff_base_seconds=0.5, backoff_type="linear")
        assert [_compute_backoff(cfg, n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Panic routing
# ═══════════════════════════════════════════════════════════════════════════

class TestNotifyPanic:

    async def test_contacts_plus_police(self, make_tourist):
        tourist = make_tourist(contacts=3)
        alert = AlertFactory().from_panic(tourist.id, POINT)
        sent = await NotificationGateway(retry=NO_WAIT).notify_panic(tourist, alert)
        assert sent == 4

    async def test_no_contacts_only_police(self, make_tourist):
        tourist = make_tourist(contacts=0)
        alert = AlertFactory().from_panic(tourist.id, POINT)
        sent = await NotificationGateway(retry=NO_WAIT).notify_panic(tourist, alert)
        assert sent == 1

    async def test_failing_sms_provider_not_counted(self, make_tourist, monkeypatch):
        calls = []
        real_send = sms_gateway.send

        async def counting_send(*args, **kwargs):
            calls.append(args[1])
            return await real_send(*args, **kwargs)

        monkeypatch.setattr(sms_gateway, "send", counting_send)
        tourist = make_tourist(contacts=2)
        alert = AlertFactory().from_panic(tourist.id, POINT)
        gateway = NotificationGateway(retry=NO_WAIT, sms_provider="twilio")

        sent = await gateway.notify_panic(tourist, alert)
        await gateway.close()
        assert sent == 1  # police only
        # one attempt plus two retries per contact
        assert len(calls) == 6

    async def test_raising_channel_never_propagates(self, make_tourist, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("gateway down")

        monkeypatch.setattr(sms_gateway, "send", boom)
        tourist = make_tourist(contacts=2)
        alert = AlertFactory().from_panic(tourist.id, POINT)
        sent = await NotificationGateway(retry=NO_WAIT).notify_panic(tourist, alert)
        assert sent == 1

    async def test_skipped_contact_without_phone(self, make_tourist):
        tourist = make_tourist(contacts=1)
        tourist.emergency_contacts = [replace(tourist.emergency_contacts[0], phone="")]
        alert = AlertFactory().from_panic(tourist.id, POINT)
        sent = await NotificationGateway(retry=NO_WAIT).notify_panic(tourist, alert)
        assert sent == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Geofence routing
# ═══════════════════════════════════════════════════════════════════════════

class TestNotifyGeofence:

    async def test_high_severity_escalates(self, tourist, caplog):
        caplog.set_level("INFO")
        alert = _geofence_alert(Severity.CRITICAL)
        assert await NotificationGateway(retry=NO_WAIT).notify_geofence(tourist, alert)
        assert any("local_police" in m for m in _dispatch_units(caplog))

    async def test_medium_severity_push_only(self, tourist, caplog):
        caplog.set_level("INFO")
        alert = _geofence_alert(Severity.MEDIUM)
        assert await NotificationGateway(retry=NO_WAIT).notify_geofence(tourist, alert)
        assert _dispatch_units(caplog) == []

    async def test_push_failure_returns_false(self, tourist, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("push service down")

        monkeypatch.setattr(web_push, "send", boom)
        alert = _geofence_alert(Severity.LOW)
        assert not await NotificationGateway(retry=NO_WAIT).notify_geofence(tourist, alert)


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Channels
# ═══════════════════════════════════════════════════════════════════════════

class TestSmsGateway:

    def test_body_within_limit(self):
        alert = AlertFactory().from_panic("T-001", POINT, "x" * 300)
        body = sms_gateway.format_panic_sms(alert, "Asha Menon")
        assert len(body) <= sms_gateway.SMS_MAX_GSM7
        assert body.startswith("EMERGENCY: ")
        assert body.endswith(alert.id[-8:])

    def test_body_uses_coordinates_without_address(self):
        alert = AlertFactory().from_panic("T-001", POINT)
        assert "26.63370,92.79330" in sms_gateway.format_panic_sms(alert, "Asha")

    async def test_unknown_provider_fails(self):
        attempt = await sms_gateway.send("hi", "+91", provider="carrier-pigeon")
        assert attempt.status == DeliveryStatus.FAILED

    async def test_twilio_posts_message(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(201, json={"sid": "SM123", "status": "queued"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            attempt = await sms_gateway.send(
                "help", "+919800000001",
                provider="twilio", api_key="token", account_sid="AC42",
                sender="+15005550006", client=client,
            )

        assert attempt.status == DeliveryStatus.DELIVERED
        assert attempt.provider_response == {"mode": "twilio", "sid": "SM123", "status": "queued"}
        [request] = received
        assert request.url == f"{sms_gateway.TWILIO_API}/Accounts/AC42/Messages.json"
        assert request.headers["authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form == {"To": ["+919800000001"], "From": ["+15005550006"], "Body": ["help"]}

    async def test_msg91_posts_message(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200, json={"type": "success", "message": "req-7"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            attempt = await sms_gateway.send(
                "help", "+919800000001",
                provider="msg91", api_key="authkey", sender="TSAFE", client=client,
            )

        assert attempt.status == DeliveryStatus.DELIVERED
        [request] = received
        assert request.headers["authkey"] == "authkey"
        body = json.loads(request.content)
        assert body["sender"] == "TSAFE"
        assert body["sms"] == [{"message": "help", "to": ["919800000001"]}]

    async def test_msg91_rejection_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"type": "error", "message": "Invalid sender"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            attempt = await sms_gateway.send(
                "help", "+91", provider="msg91", api_key="k", sender="TSAFE", client=client,
            )
        assert attempt.status == DeliveryStatus.FAILED
        assert "Invalid sender" in attempt.error_message

    async def test_provider_error_status_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Authenticate"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            attempt = await sms_gateway.send(
                "help", "+91", provider="twilio", api_key="bad", account_sid="AC42",
                sender="+15005550006", client=client,
            )
        assert attempt.status == DeliveryStatus.FAILED

    async def test_key_without_sender_is_not_delivered(self):
        attempt = await sms_gateway.send("hi", "+91", provider="msg91", api_key="k")
        assert attempt.status == DeliveryStatus.FAILED
        assert "SMS_SENDER" in attempt.error_message

    async def test_gateway_texts_contacts_through_provider(self, make_tourist):
        phones = []

        def handler(request: httpx.Request) -> httpx.Response:
            phones.append(parse_qs(request.content.decode())["To"][0])
            return httpx.Response(201, json={"sid": "SM1", "status": "queued"})

        gateway = NotificationGateway(
            retry=NO_WAIT, sms_provider="twilio", sms_api_key="token",
            sms_account_sid="AC42", sms_sender="+15005550006",
        )
        gateway._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tourist = make_tourist(contacts=2)
        alert = AlertFactory().from_panic(tourist.id, POINT)

        sent = await gateway.notify_panic(tourist, alert)
        await gateway.close()

        assert sent == 3  # two texts plus simulated police dispatch
        assert phones == [c.phone for c in tourist.emergency_contacts]

    def test_settings_reject_unknown_provider(self):
        with pytest.raises(ValidationError):
            Settings(SMS_PROVIDER="carrier-pigeon")
        assert Settings(SMS_PROVIDER=" MSG91 ").SMS_PROVIDER == "msg91"


class TestWebPush:

    def test_payload_urgency(self):
        urgent = web_push.build_push_payload(_geofence_alert(Severity.HIGH))
        notice = web_push.build_push_payload(_geofence_alert(Severity.LOW))
        assert urgent["notification"]["title"] == "Safety Alert"
        assert urgent["notification"]["requireInteraction"] is True
        assert notice["notification"]["title"] == "Safety Notice"


class TestPoliceDispatch:

    def test_request_body(self):
        alert = AlertFactory().from_panic("T-001", POINT, "Tezpur")
        body = police_dispatch.build_dispatch_request(
            alert, RecipientChannel.NEAREST_POLICE_UNIT,
        )
        assert body["lat"] == 26.6337 and body["lon"] == 92.7933
        assert body["unit"] == "nearest_police_unit"
        assert body["type"] == "panic_button"

    async def test_webhook_delivered(self, tourist):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(202, json={"accepted": True})

        gateway = NotificationGateway(retry=NO_WAIT, dispatch_url="http://dispatch.test/alerts")
        gateway._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        assert gateway.mode == "webhook"

        alert = AlertFactory().from_panic(tourist.id, POINT)
        sent = await gateway.notify_panic(tourist, alert)
        await gateway.close()

        assert sent == 3
        assert len(received) == 1
        assert received[0].url == "http://dispatch.test/alerts"

    async def test_webhook_error_retried_then_failed(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        gateway = NotificationGateway(retry=NO_WAIT, dispatch_url="http://dispatch.test/alerts")
        gateway._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        alert = _geofence_alert(Severity.CRITICAL)
        client = await gateway._get_client()
        attempt = await gateway._deliver(
            NotificationChannel.POLICE_DISPATCH,
            "local_police",
            lambda: police_dispatch.send(
                alert,
                unit=RecipientChannel.LOCAL_POLICE,
                client=client,
                dispatch_url=gateway.dispatch_url,
            ),
        )
        await gateway.close()

        assert attempt.status == DeliveryStatus.FAILED
        assert attempt.retry_count == 2
        assert len(calls) == 3

    def test_simulation_mode_by_default(self):
        assert NotificationGateway().mode == "simulation"
