"""
sms_gateway.py — SMS delivery channel via gateway integration.

Used for panic alerts: one message per emergency contact on the
tourist's profile.

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST  →  SMS Gateway API  →  Carrier  →  Handset

    Provider     Request                                          Auth
    ─────────    ─────────────────────────────────────────────    ────────────────────
    twilio       POST {TWILIO_API}/Accounts/{sid}/Messages.json    basic (sid, api_key)
                 form: To, From, Body
    msg91        POST {MSG91_API}/sendsms                          header authkey
                 json: sender, route, country, sms[{message, to}]
    simulation   logged only                                       —

    A provider answer counts as delivered only on a 2xx status (and, for
    MSG91, ``"type": "success"`` in the body). Anything else is FAILED so
    the notifier retries it.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    SMS (≤160 chars):
        "EMERGENCY: {tourist} pressed panic button at {where}. Ref:{alert_ref}"
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from backend.app.alerts.models import (
    Alert,
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
)

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160

TWILIO_API = "https://api.twilio.com/2010-04-01"
MSG91_API = "https://api.msg91.com/api/v2"
MSG91_TRANSACTIONAL_ROUTE = "4"


def format_panic_sms(alert: Alert, tourist_name: str) -> str:
    """Format the panic SMS body within the 160-char GSM limit."""
    where = alert.address or (
        f"{alert.location.latitude:.5f},{alert.location.longitude:.5f}"
    )
    prefix = "EMERGENCY: "
    suffix = f" Ref:{alert.id[-8:]}"
    body = f"{tourist_name} pressed the panic button at {where}."

    available = SMS_MAX_GSM7 - len(prefix) - len(suffix)
    if len(body) > available:
        body = body[: available - 3] + "..."

    return f"{prefix}{body}{suffix}"


async def _send_twilio(
    client: httpx.AsyncClient,
    message: str,
    phone: str,
    *,
    account_sid: str,
    auth_token: str,
    sender: str,
) -> Dict[str, Any]:
    response = await client.post(
        f"{TWILIO_API}/Accounts/{account_sid}/Messages.json",
        data={"To": phone, "From": sender, "Body": message},
        auth=(account_sid, auth_token),
    )
    response.raise_for_status()
    body = response.json()
    return {"mode": "twilio", "sid": body.get("sid"), "status": body.get("status")}


async def _send_msg91(
    client: httpx.AsyncClient,
    message: str,
    phone: str,
    *,
    auth_key: str,
    sender: str,
) -> Dict[str, Any]:
    response = await client.post(
        f"{MSG91_API}/sendsms",
        json={
            "sender": sender,
            "route": MSG91_TRANSACTIONAL_ROUTE,
            "country": "91",
            "sms": [{"message": message, "to": [phone.lstrip("+")]}],
        },
        headers={"authkey": auth_key},
    )
    response.raise_for_status()
    body = response.json()
    if body.get("type") != "success":
        raise httpx.HTTPStatusError(
            f"MSG91 rejected message: {body.get('message')}",
            request=response.request,
            response=response,
        )
    return {"mode": "msg91", "request_id": body.get("message")}


async def send(
    message: str,
    phone: str,
    *,
    recipient_name: str = "",
    alert_id: str = "",
    provider: str = "simulation",
    api_key: Optional[str] = None,
    account_sid: Optional[str] = None,
    sender: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryAttempt:
    """
    Send one SMS.

    Parameters
    ----------
    message : str
        Pre-formatted body (see ``format_panic_sms``).
    phone : str
        Destination number, E.164.
    recipient_name : str
        For logs only.
    provider : str
        "twilio", "msg91" or "simulation".
    api_key : str | None
        Twilio auth token or MSG91 auth key (not needed for simulation).
    account_sid : str | None
        Twilio account SID.
    sender : str | None
        Twilio "From" number or MSG91 sender id.
    client : httpx.AsyncClient | None
        Shared client; required for real providers.

    Returns
    -------
    DeliveryAttempt
    """
    attempt = DeliveryAttempt(
        channel=NotificationChannel.SMS,
        recipient=phone,
        status=DeliveryStatus.SENDING,
    )

    try:
        if not phone:
            attempt.status = DeliveryStatus.SKIPPED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = "No phone number on file"
            return attempt

        if provider == "simulation":
            logger.info(
                "[SMS] Alert %s → %s (%s): %d chars",
                alert_id, phone, recipient_name, len(message),
                extra={"alert_id": alert_id, "channel": "sms"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "simulated",
                "message_length": len(message),
                "segments": 1 + (len(message) - 1) // SMS_MAX_GSM7,
                "phone": phone,
            }

        elif provider in ("twilio", "msg91"):
            missing = []
            if not api_key:
                missing.append("SMS_API_KEY")
            if not sender:
                missing.append("SMS_SENDER")
            if provider == "twilio" and not account_sid:
                missing.append("SMS_ACCOUNT_SID")
            if missing:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"{provider}: {', '.join(missing)} not configured"
            elif client is None:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"{provider}: no HTTP client"
            else:
                if provider == "twilio":
                    response = await _send_twilio(
                        client, message, phone,
                        account_sid=account_sid, auth_token=api_key, sender=sender,
                    )
                else:
                    response = await _send_msg91(
                        client, message, phone, auth_key=api_key, sender=sender,
                    )
                logger.info(
                    "[SMS/%s] Alert %s accepted for %s (%s)",
                    provider, alert_id, phone, recipient_name,
                    extra={"alert_id": alert_id, "channel": "sms"},
                )
                attempt.status = DeliveryStatus.DELIVERED
                attempt.provider_response = response

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown SMS provider: {provider}"

        attempt.completed_at = datetime.now(timezone.utc)

    except (httpx.HTTPError, ValueError) as exc:
        logger.error("[SMS/%s] Failed for %s: %s", provider, phone, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.error_message = str(exc)

    return attempt
