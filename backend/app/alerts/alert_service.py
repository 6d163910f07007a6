"""
alert_service.py — The Alerting Pipeline.

═══════════════════════════════════════════════════════════════════════════
PIPELINE ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    report_panic(tourist, coord, address)
    │
    ├─ 1. tourist id present?            ── no ──► InvalidInputError
    ├─ 2. directory lookup               ── none ─► NotFoundError
    ├─ 3. coordinate in range?           ── no ──► InvalidInputError
    ├─ 4. AlertFactory.from_panic        (critical, police + contacts)
    ├─ 5. AlertStore.append              ── fail ─► UpstreamUnavailableError
    ├─ 6. audit panic_alert_triggered    (alert already durable: log on failure)
    └─ 7. notify_panic                   (background task, never awaited here)

    report_location(tourist, coord, address, telemetry)
    │
    ├─ 1-3. same validation, plus telemetry ranges
    ├─ 4. GeofenceEvaluator.evaluate(now)   (pure, fails open)
    ├─ 5. LocationStore.append              status = danger / warning / normal
    ├─ 6. touch last_seen
    └─ 7. violated?  ── yes ──► from_violation → append → audit geofence_breach
                                → notify_geofence (background task)

Nothing is written before validation passes, so a rejected report
leaves no alert, no sample and no audit entry behind. Once the alert
is stored the call succeeds; a lost audit record is logged at ERROR
with the alert id.

═══════════════════════════════════════════════════════════════════════════
TIMEOUTS AND BACKGROUND DELIVERY
═══════════════════════════════════════════════════════════════════════════

Every collaborator call runs under ``asyncio.wait_for``:

    Directory / stores / audit    UPSTREAM_TIMEOUT_SECONDS      → 503 on expiry
    Notification gateway          NOTIFICATION_TIMEOUT_SECONDS  → logged only

Notifications run as tasks tracked in ``_pending``; the request returns
as soon as the alert is stored. ``drain`` waits for them, ``close``
cancels whatever is still running at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar

from backend.app.alerts.alert_factory import AlertFactory
from backend.app.alerts.geo_fence import GeofenceEvaluator
from backend.app.alerts.models import (
    ActorRole,
    Alert,
    AuditEventKind,
    RESOLVED_BY_MAX_LEN,
    ViolationAction,
    ViolationVerdict,
)
from backend.app.core.errors import (
    InvalidInputError,
    NotFoundError,
    NotificationFailure,
    TouristSafetyError,
    UpstreamUnavailableError,
)
from backend.app.core.ids import IdGenerator, MonotonicClock
from backend.app.spatial.distance import (
    Coordinate,
    bounding_box,
    format_distance,
    haversine,
    inside_bounding_box,
)
from backend.app.storage.ports import (
    AlertStore,
    AuditSink,
    LocationStore,
    NotificationPort,
    TouristDirectory,
)
from backend.app.tracking.models import (
    LocationSample,
    LocationStatus,
    Telemetry,
    Tourist,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ACCURACY_M = 10.0


# ═══════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PanicResult:
    alert_id: str
    status: str
    timestamp: datetime
    notifications_dispatched: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "notifications_dispatched": self.notifications_dispatched,
        }


@dataclass
class LocationResult:
    location_id: str
    coordinates: List[float]
    timestamp: datetime
    geofence_alert: bool
    alert_id: Optional[str] = None
    verdict: Optional[ViolationVerdict] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "location_id": self.location_id,
            "coordinates": self.coordinates,
            "timestamp": self.timestamp.isoformat(),
            "geofence_alert": self.geofence_alert,
        }
        if self.alert_id:
            data["alert_id"] = self.alert_id
        if self.verdict is not None and self.verdict.violated:
            data["violation"] = self.verdict.to_dict()
        return data


@dataclass
class NearbyTourist:
    sample: LocationSample
    distance_m: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tourist_id": self.sample.tourist_id,
            "coordinates": self.sample.coordinate.to_list(),
            "timestamp": self.sample.timestamp.isoformat(),
            "status": self.sample.status.value,
            "distance_m": round(self.distance_m),
            "distance_display": format_distance(self.distance_m),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

def _require_id(tourist_id: Optional[str]) -> str:
    if not tourist_id or not str(tourist_id).strip():
        raise InvalidInputError("Tourist ID is required", field="tourist_id")
    return str(tourist_id).strip()


def _require_coordinate(coordinate: Optional[Coordinate]) -> Coordinate:
    if (
        coordinate is None
        or coordinate.longitude is None
        or coordinate.latitude is None
    ):
        raise InvalidInputError(
            "Location coordinates are required", field="coordinates",
        )
    return coordinate


def _check_range(coordinate: Coordinate) -> Coordinate:
    if not coordinate.is_valid:
        raise InvalidInputError(
            "Invalid coordinates",
            field="coordinates",
            coordinates=[coordinate.longitude, coordinate.latitude],
        )
    return coordinate


def _check_telemetry(telemetry: Telemetry) -> None:
    for name in ("accuracy", "speed"):
        value = getattr(telemetry, name)
        if value is not None and (math.isnan(value) or value < 0):
            raise InvalidInputError(f"{name} must be non-negative", field=name)
    if telemetry.altitude is not None and math.isnan(telemetry.altitude):
        raise InvalidInputError("altitude must be a number", field="altitude")
    heading = telemetry.heading
    if heading is not None and not 0 <= heading <= 360:
        raise InvalidInputError("heading must be in [0, 360]", field="heading")


def _location_status(verdict: ViolationVerdict) -> LocationStatus:
    if not verdict.violated:
        return LocationStatus.NORMAL
    if verdict.action == ViolationAction.IMMEDIATE_ALERT:
        return LocationStatus.DANGER
    return LocationStatus.WARNING


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════════════════

class AlertingPipeline:
    """
    Orchestrates validation, evaluation, alert creation, persistence,
    notification and audit.

    All collaborators are injected; see ``backend.app.storage.ports``.
    """

    def __init__(
        self,
        *,
        tourists: TouristDirectory,
        alerts: AlertStore,
        locations: LocationStore,
        audit: AuditSink,
        notifier: NotificationPort,
        evaluator: GeofenceEvaluator,
        factory: Optional[AlertFactory] = None,
        upstream_timeout: float = 5.0,
        notification_timeout: float = 10.0,
        location_ids: Optional[IdGenerator] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.tourists = tourists
        self.alerts = alerts
        self.locations = locations
        self.audit = audit
        self.notifier = notifier
        self.evaluator = evaluator
        self.factory = factory or AlertFactory()
        self.upstream_timeout = upstream_timeout
        self.notification_timeout = notification_timeout
        self.location_ids = location_ids or IdGenerator("LOC")
        self.clock = clock or MonotonicClock()
        self._pending: Set["asyncio.Task[Any]"] = set()

    # ── Collaborator wrappers ──

    async def _upstream(self, service: str, awaitable: Awaitable[T]) -> T:
        """Await a directory/store call; map timeouts and crashes to 503."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.upstream_timeout)
        except TouristSafetyError:
            raise
        except asyncio.TimeoutError:
            logger.error("%s timed out after %.1fs", service, self.upstream_timeout)
            raise UpstreamUnavailableError(
                service, f"{service} timed out",
                timeout_seconds=self.upstream_timeout,
            )
        except Exception as exc:
            logger.error("%s failed: %s", service, exc, exc_info=True)
            raise UpstreamUnavailableError(service, str(exc)) from exc

    async def _audit_committed(
        self,
        kind: AuditEventKind,
        actor: ActorRole,
        alert: Alert,
        details: str,
    ) -> None:
        """Audit a change that is already durable; failures are logged, not raised."""
        try:
            await self._upstream("audit_sink", self.audit.record(
                kind, alert.tourist_id, actor, details, alert_id=alert.id,
            ))
        except Exception as exc:
            logger.error(
                "Audit %s lost for stored alert %s: %s",
                kind.value, alert.id, exc,
                extra={"alert_id": alert.id, "tourist_id": alert.tourist_id},
            )

    async def _notify(
        self,
        channel: str,
        alert: Alert,
        call: Callable[[], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self.notification_timeout)
        except Exception as exc:
            reason = (
                f"timed out after {self.notification_timeout:.1f}s"
                if isinstance(exc, asyncio.TimeoutError) else str(exc)
            )
            failure = NotificationFailure(alert.id, channel, reason)
            logger.error(
                failure.message,
                extra={"alert_id": alert.id, "tourist_id": alert.tourist_id,
                       "channel": channel},
            )
            return default

    def _dispatch(
        self,
        channel: str,
        alert: Alert,
        call: Callable[[], Awaitable[Any]],
        default: Any,
    ) -> "asyncio.Task[Any]":
        """Start delivery in the background; the caller does not wait for it."""
        task = asyncio.create_task(self._notify(channel, alert, call, default))
        self._pending.add(task)
        task.add_done_callback(self._notification_done)
        return task

    def _notification_done(self, task: "asyncio.Task[Any]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Notification task cancelled before delivery finished")

    async def drain(self) -> None:
        """Wait until every in-flight notification has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self, grace_seconds: float = 0.0) -> None:
        """
        Give in-flight notifications ``grace_seconds`` to finish, then
        cancel the rest.
        """
        if not self._pending:
            return
        pending = set(self._pending)
        if grace_seconds > 0:
            _, pending = await asyncio.wait(pending, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d undelivered notification(s)", len(pending))

    async def _lookup(self, tourist_id: str, now: datetime) -> Tourist:
        tourist = await self._upstream(
            "tourist_directory", self.tourists.find_by_id(tourist_id),
        )
        if tourist is None:
            raise NotFoundError("Tourist", tourist_id=tourist_id)

        valid = await self._upstream(
            "tourist_directory", self.tourists.tourist_valid(tourist, now),
        )
        if not valid:
            logger.warning(
                "Tourist %s is outside their permit window or inactive",
                tourist_id, extra={"tourist_id": tourist_id},
            )
        return tourist

    # ── Entry points ──

    async def report_panic(
        self,
        tourist_id: Optional[str],
        coordinate: Optional[Coordinate],
        address: Optional[str] = None,
    ) -> PanicResult:
        tourist_id = _require_id(tourist_id)
        coordinate = _require_coordinate(coordinate)
        tourist = await self._lookup(tourist_id, self.clock.now())
        _check_range(coordinate)

        alert = self.factory.from_panic(tourist_id, coordinate, address)
        await self._upstream("alert_store", self.alerts.append(alert))

        logger.critical(
            "PANIC ALERT TRIGGERED by %s at %s",
            tourist.name, coordinate.to_list(),
            extra={"tourist_id": tourist_id, "alert_id": alert.id,
                   "severity": alert.severity.value,
                   "coordinates": coordinate.to_list()},
        )

        await self._audit_committed(
            AuditEventKind.PANIC_ALERT_TRIGGERED,
            ActorRole.TOURIST,
            alert,
            f"Panic alert triggered at {address or coordinate.to_list()}",
        )

        self._dispatch(
            "panic", alert, lambda: self.notifier.notify_panic(tourist, alert), 0,
        )

        return PanicResult(
            alert_id=alert.id,
            status=alert.status.value,
            timestamp=alert.timestamp,
            # every emergency contact plus the nearest police unit
            notifications_dispatched=len(tourist.emergency_contacts) + 1,
        )

    async def report_location(
        self,
        tourist_id: Optional[str],
        coordinate: Optional[Coordinate],
        address: Optional[str] = None,
        telemetry: Optional[Telemetry] = None,
    ) -> LocationResult:
        tourist_id = _require_id(tourist_id)
        coordinate = _require_coordinate(coordinate)
        now = self.clock.now()
        tourist = await self._lookup(tourist_id, now)
        _check_range(coordinate)
        telemetry = telemetry or Telemetry()
        _check_telemetry(telemetry)

        verdict = self.evaluator.evaluate(coordinate, now)

        sample = LocationSample(
            id=self.location_ids.next_id(),
            tourist_id=tourist_id,
            timestamp=now,
            coordinate=coordinate,
            address=address,
            status=_location_status(verdict),
            accuracy=(
                telemetry.accuracy if telemetry.accuracy is not None
                else DEFAULT_ACCURACY_M
            ),
            altitude=telemetry.altitude,
            speed=telemetry.speed,
            heading=telemetry.heading,
        )
        await self._upstream("location_store", self.locations.append(sample))
        await self._upstream(
            "tourist_directory", self.tourists.touch_last_seen(tourist_id, now),
        )

        logger.debug(
            "Location updated for %s: %s",
            tourist_id, coordinate.to_list(),
            extra={"tourist_id": tourist_id, "location_id": sample.id},
        )

        result = LocationResult(
            location_id=sample.id,
            coordinates=coordinate.to_list(),
            timestamp=now,
            geofence_alert=False,
            verdict=verdict,
        )
        if not verdict.violated:
            return result

        alert = self.factory.from_violation(tourist_id, coordinate, address, verdict)
        await self._upstream("alert_store", self.alerts.append(alert))

        await self._audit_committed(
            AuditEventKind.GEOFENCE_BREACH,
            ActorRole.TOURIST,
            alert,
            f"Entered {verdict.zone_type} zone {verdict.zone_id} ({verdict.zone_name})",
        )

        self._dispatch(
            "geofence", alert,
            lambda: self.notifier.notify_geofence(tourist, alert), False,
        )

        result.geofence_alert = True
        result.alert_id = alert.id
        return result

    async def resolve_alert(
        self,
        alert_id: Optional[str],
        resolved_by: Optional[str],
        notes: Optional[str] = None,
    ) -> Alert:
        if not alert_id:
            raise InvalidInputError("Alert ID is required", field="alert_id")
        if not resolved_by or not resolved_by.strip():
            raise InvalidInputError("resolved_by is required", field="resolved_by")
        if len(resolved_by) > RESOLVED_BY_MAX_LEN:
            raise InvalidInputError(
                f"resolved_by exceeds {RESOLVED_BY_MAX_LEN} characters",
                field="resolved_by",
            )

        alert = await self._upstream(
            "alert_store",
            self.alerts.resolve(alert_id, resolved_by, notes, self.clock.now()),
        )

        logger.info(
            "Alert %s resolved by %s after %s min",
            alert.id, resolved_by, alert.response_time_minutes,
            extra={"alert_id": alert.id, "tourist_id": alert.tourist_id},
        )

        await self._audit_committed(
            AuditEventKind.ALERT_RESOLVED,
            ActorRole.STAFF,
            alert,
            f"Alert resolved by {resolved_by}",
        )
        return alert

    # ── Read side ──

    async def tourist_alerts(
        self, tourist_id: str, limit: int = 20, offset: int = 0,
    ) -> List[Alert]:
        tourist_id = _require_id(tourist_id)
        return await self._upstream(
            "alert_store", self.alerts.list_by_tourist(tourist_id, limit, offset),
        )

    async def active_alerts(self) -> List[Alert]:
        return await self._upstream("alert_store", self.alerts.list_active())

    async def location_history(
        self, tourist_id: str, limit: int = 50, offset: int = 0,
    ) -> Tuple[Tourist, List[LocationSample]]:
        tourist_id = _require_id(tourist_id)
        tourist = await self._upstream(
            "tourist_directory", self.tourists.find_by_id(tourist_id),
        )
        if tourist is None:
            raise NotFoundError("Tourist", tourist_id=tourist_id)
        samples = await self._upstream(
            "location_store", self.locations.history(tourist_id, limit, offset),
        )
        return tourist, samples

    async def latest_location(self, tourist_id: str) -> LocationSample:
        tourist_id = _require_id(tourist_id)
        sample = await self._upstream(
            "location_store", self.locations.latest(tourist_id),
        )
        if sample is None:
            raise NotFoundError("Location", tourist_id=tourist_id)
        return sample

    async def nearby_tourists(
        self, coordinate: Optional[Coordinate], radius_m: float,
    ) -> List[NearbyTourist]:
        """Latest known position of every tourist within ``radius_m``, nearest first."""
        coordinate = _check_range(_require_coordinate(coordinate))
        if not radius_m > 0:
            raise InvalidInputError("radius must be positive", field="radius")

        box = bounding_box(coordinate.latitude, coordinate.longitude, radius_m)
        latest = await self._upstream(
            "location_store", self.locations.latest_per_tourist(),
        )

        hits: List[NearbyTourist] = []
        for sample in latest:
            point = sample.coordinate
            if not inside_bounding_box(point.latitude, point.longitude, box):
                continue
            dist = haversine(coordinate, point)
            if dist <= radius_m:
                hits.append(NearbyTourist(sample=sample, distance_m=dist))

        hits.sort(key=lambda h: h.distance_m)
        return hits
