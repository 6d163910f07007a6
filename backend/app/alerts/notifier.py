"""
notifier.py — Notification Gateway: fan an alert out to its channels.

═══════════════════════════════════════════════════════════════════════════
ROUTING
═══════════════════════════════════════════════════════════════════════════

    Alert type        Channel            Recipient
    ──────────────    ───────────────    ────────────────────────────────
    panic_button      sms                every emergency contact
                      police_dispatch    nearest_police_unit
    geofence_breach   web_push           the tourist
                      police_dispatch    local_police (severity ≥ high only)

``notify_panic`` returns how many deliveries succeeded;
``notify_geofence`` returns whether the tourist was reached.
Neither ever raises: a failing channel is logged and counted as
undelivered. The pipeline treats notification as best-effort.

═══════════════════════════════════════════════════════════════════════════
RETRY POLICY
═══════════════════════════════════════════════════════════════════════════

    attempt 1 ──fail──► sleep(base) ──► attempt 2 ──fail──► sleep(2·base) ──► …

Up to ``max_retries`` extra attempts per channel+recipient; SKIPPED and
DELIVERED end the loop immediately. Sleeps use ``asyncio.sleep`` so a
slow channel never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx

from backend.app.alerts.channels import police_dispatch, sms_gateway, web_push
from backend.app.alerts.models import (
    Alert,
    DeliveryAttempt,
    DeliveryStatus,
    NotificationChannel,
    RecipientChannel,
    Severity,
)
from backend.app.tracking.models import Tourist

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Per-gateway retry parameters."""
    max_retries: int = 2
    backoff_base_seconds: float = 0.5
    backoff_type: str = "exponential"  # "exponential" or "linear"


def _compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Compute delay before next retry.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Current attempt number (1-based).

    Returns
    -------
    float
        Delay in seconds.
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


# ═══════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════

class NotificationGateway:
    """
    Concrete notification port backed by the ``channels`` package.

    Parameters
    ----------
    retry : RetryConfig
    sms_provider : str
        Passed through to ``sms_gateway.send``.
    sms_api_key : str | None
    sms_account_sid : str | None
        Twilio account SID.
    sms_sender : str | None
        Twilio "From" number or MSG91 sender id.
    dispatch_url : str | None
        Police dispatch webhook; simulated when None.
    timeout_seconds : float
        HTTP timeout for SMS provider and dispatch webhook calls.
    """

    def __init__(
        self,
        *,
        retry: Optional[RetryConfig] = None,
        sms_provider: str = "simulation",
        sms_api_key: Optional[str] = None,
        sms_account_sid: Optional[str] = None,
        sms_sender: Optional[str] = None,
        dispatch_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        self.retry = retry or RetryConfig()
        self.sms_provider = sms_provider
        self.sms_api_key = sms_api_key
        self.sms_account_sid = sms_account_sid
        self.sms_sender = sms_sender
        self.dispatch_url = dispatch_url
        self.timeout_seconds = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings) -> "NotificationGateway":
        return cls(
            retry=RetryConfig(
                max_retries=settings.NOTIFICATION_MAX_RETRIES,
                backoff_base_seconds=settings.NOTIFICATION_BACKOFF_SECONDS,
            ),
            sms_provider=settings.SMS_PROVIDER,
            sms_api_key=settings.SMS_API_KEY,
            sms_account_sid=settings.SMS_ACCOUNT_SID,
            sms_sender=settings.SMS_SENDER,
            dispatch_url=settings.POLICE_DISPATCH_URL,
            timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )

    async def _get_client(self) -> Optional[httpx.AsyncClient]:
        if not self.dispatch_url and self.sms_provider == "simulation":
            return None
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @property
    def mode(self) -> str:
        return "webhook" if self.dispatch_url else "simulation"

    # ── Delivery with retry ──

    async def _deliver(
        self,
        channel: NotificationChannel,
        recipient: str,
        send: Callable[[], Awaitable[DeliveryAttempt]],
    ) -> DeliveryAttempt:
        """Run ``send`` until delivered, skipped or out of retries."""
        last: Optional[DeliveryAttempt] = None

        for attempt_num in range(1, self.retry.max_retries + 2):
            try:
                result = await send()
            except Exception as exc:
                result = DeliveryAttempt(
                    channel=channel,
                    recipient=recipient,
                    status=DeliveryStatus.FAILED,
                    error_message=str(exc),
                )
            result.retry_count = attempt_num - 1
            last = result

            if result.status in (DeliveryStatus.DELIVERED, DeliveryStatus.SKIPPED):
                return result

            if attempt_num <= self.retry.max_retries:
                delay = _compute_backoff(self.retry, attempt_num)
                logger.info(
                    "Retry %d/%d for %s via %s in %.1fs",
                    attempt_num, self.retry.max_retries,
                    recipient, channel.value, delay,
                )
                await asyncio.sleep(delay)

        # All retries exhausted
        last = last or DeliveryAttempt(
            channel=channel,
            recipient=recipient,
            error_message="All retries exhausted",
        )
        last.status = DeliveryStatus.FAILED
        logger.warning(
            "Delivery via %s to %s failed after %d attempts: %s",
            channel.value, recipient, last.retry_count + 1, last.error_message,
            extra={"channel": channel.value, "delivered": False},
        )
        return last

    # ── Public port ──

    async def notify_panic(self, tourist: Tourist, alert: Alert) -> int:
        """SMS every emergency contact and page the nearest police unit."""
        attempts: List[DeliveryAttempt] = []
        try:
            body = sms_gateway.format_panic_sms(alert, tourist.name)
            client = await self._get_client()
            for contact in tourist.emergency_contacts:
                attempts.append(await self._deliver(
                    NotificationChannel.SMS,
                    contact.phone,
                    lambda c=contact: sms_gateway.send(
                        body, c.phone,
                        recipient_name=c.name,
                        alert_id=alert.id,
                        provider=self.sms_provider,
                        api_key=self.sms_api_key,
                        account_sid=self.sms_account_sid,
                        sender=self.sms_sender,
                        client=client,
                    ),
                ))

            attempts.append(await self._deliver(
                NotificationChannel.POLICE_DISPATCH,
                RecipientChannel.NEAREST_POLICE_UNIT.value,
                lambda: police_dispatch.send(
                    alert,
                    unit=RecipientChannel.NEAREST_POLICE_UNIT,
                    client=client,
                    dispatch_url=self.dispatch_url,
                ),
            ))
        except Exception as exc:
            logger.error(
                "Panic notification aborted for alert %s: %s", alert.id, exc,
                extra={"alert_id": alert.id, "tourist_id": tourist.id},
            )

        delivered = sum(1 for a in attempts if a.delivered)
        logger.info(
            "Panic alert %s: %d/%d notifications delivered",
            alert.id, delivered, len(tourist.emergency_contacts) + 1,
            extra={"alert_id": alert.id, "tourist_id": tourist.id},
        )
        return delivered

    async def notify_geofence(self, tourist: Tourist, alert: Alert) -> bool:
        """Push to the tourist; escalate high/critical breaches to local police."""
        try:
            push = await self._deliver(
                NotificationChannel.WEB_PUSH,
                tourist.id,
                lambda: web_push.send(alert, tourist.id),
            )

            if alert.severity.rank >= Severity.HIGH.rank:
                client = await self._get_client()
                await self._deliver(
                    NotificationChannel.POLICE_DISPATCH,
                    RecipientChannel.LOCAL_POLICE.value,
                    lambda: police_dispatch.send(
                        alert,
                        unit=RecipientChannel.LOCAL_POLICE,
                        client=client,
                        dispatch_url=self.dispatch_url,
                    ),
                )
            return push.delivered

        except Exception as exc:
            logger.error(
                "Geofence notification failed for alert %s: %s", alert.id, exc,
                extra={"alert_id": alert.id, "tourist_id": tourist.id},
            )
            return False
