"""
web_push.py — In-app push notification to the tourist's own device.

Used for geofence breaches: the tourist is told which zone they have
entered and why it is dangerous.

In production this would go through Firebase Cloud Messaging with the
device token registered by the mobile app. This module simulates the
push service: it builds the payload, logs it and reports delivery.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.alerts.models import (
    Alert,
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    Severity,
)

logger = logging.getLogger(__name__)


def build_push_payload(alert: Alert) -> Dict[str, Any]:
    urgent = alert.severity.rank >= Severity.HIGH.rank
    return {
        "notification": {
            "title": "Safety Alert" if urgent else "Safety Notice",
            "body": alert.description,
            "tag": alert.id,
            "data": {
                "alert_id": alert.id,
                "type": alert.type.value,
                "severity": alert.severity.value,
                "url": f"/alerts/{alert.id}",
            },
            "requireInteraction": urgent,
            "vibrate": [200, 100, 200] if urgent else [100],
        },
    }


async def send(
    alert: Alert,
    tourist_id: str,
    *,
    device_token: Optional[str] = None,
) -> DeliveryAttempt:
    """
    Push an alert to the tourist's app.

    Parameters
    ----------
    alert : Alert
    tourist_id : str
        Recipient (the alert's own tourist).
    device_token : str | None
        Push token; simulated delivery when absent.

    Returns
    -------
    DeliveryAttempt
    """
    attempt = DeliveryAttempt(
        channel=NotificationChannel.WEB_PUSH,
        recipient=tourist_id,
        status=DeliveryStatus.SENDING,
    )

    try:
        push_data = build_push_payload(alert)

        logger.info(
            "[WEB_PUSH] Alert %s → %s: %s",
            alert.id, tourist_id, push_data["notification"]["title"],
            extra={"alert_id": alert.id, "tourist_id": tourist_id, "channel": "web_push"},
        )

        attempt.status = DeliveryStatus.DELIVERED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.provider_response = {
            "mode": "simulated" if not device_token else "token",
            "push_payload_size": len(str(push_data)),
        }

    except Exception as exc:
        logger.error("[WEB_PUSH] Failed for %s: %s", tourist_id, exc)
        attempt.status = DeliveryStatus.FAILED
        attempt.completed_at = datetime.now(timezone.utc)
        attempt.error_message = str(exc)

    return attempt
