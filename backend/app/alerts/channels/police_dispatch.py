"""
police_dispatch.py — Hand an alert to the police control room.

═══════════════════════════════════════════════════════════════════════════
DISPATCH INTEGRATION
═══════════════════════════════════════════════════════════════════════════

    Tourist Safety API  →  HTTP POST (JSON)  →  Control-room dispatch API
                                                     │
                                                     └── nearest unit paged

Request body:
    {
        "alert_id": "ALERT...",
        "tourist_id": "T-001",
        "type": "panic_button",
        "severity": "critical",
        "lat": 26.63, "lon": 92.79,
        "address": "...",
        "unit": "nearest_police_unit"
    }

With no ``POLICE_DISPATCH_URL`` configured the request is logged and
reported as delivered (simulation mode).
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
    RecipientChannel,
)

logger = logging.getLogger(__name__)


def build_dispatch_request(alert: Alert, unit: RecipientChannel) -> Dict[str, Any]:
    return {
        "alert_id": alert.id,
        "tourist_id": alert.tourist_id,
        "type": alert.type.value,
        "severity": alert.severity.value,
        "lat": alert.location.latitude,
        "lon": alert.location.longitude,
        "address": alert.address,
        "description": alert.description,
        "unit": unit.value,
    }


async def send(
    alert: Alert,
    *,
    unit: RecipientChannel = RecipientChannel.NEAREST_POLICE_UNIT,
    client: Optional[httpx.AsyncClient] = None,
    dispatch_url: Optional[str] = None,
) -> DeliveryAttempt:
    """
    Notify the police dispatch service about an alert.

    Parameters
    ----------
    alert : Alert
    unit : RecipientChannel
        ``nearest_police_unit`` for panics, ``local_police`` for breaches.
    client : httpx.AsyncClient | None
        Shared client; required when ``dispatch_url`` is set.
    dispatch_url : str | None
        Webhook endpoint; simulation when None.

    Returns
    -------
    DeliveryAttempt
    """
    attempt = DeliveryAttempt(
        channel=NotificationChannel.POLICE_DISPATCH,
        recipient=unit.value,
        status=DeliveryStatus.SENDING,
    )

    try:
        request = build_dispatch_request(alert, unit)

        if not dispatch_url or client is None:
            logger.warning(
                "[DISPATCH] %s alert %s → %s (simulated)",
                alert.severity.value.upper(), alert.id, unit.value,
                extra={"alert_id": alert.id, "tourist_id": alert.tourist_id,
                       "channel": "police_dispatch"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {"mode": "simulated", "request": request}
        else:
            response = await client.post(dispatch_url, json=request)
            response.raise_for_status()
            logger.info(
                "[DISPATCH] Alert %s accepted by control room (%d)",
                alert.id, response.status_code,
                extra={"alert_id": alert.id, "status_code": response.status_code},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {
                "mode": "webhook",
                "status_code": response.status_code,
            }

        attempt.completed_at = datetime.now(timezone.utc)

    except httpx.HTTPError as exc:
        logger.error("[DISPATCH] Webhook failed for alert %s: %s", alert.id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.error_message = str(exc)

    return attempt
