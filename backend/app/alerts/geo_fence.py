"""
geo_fence.py — Decide whether a reported position violates a hazard zone.

═══════════════════════════════════════════════════════════════════════════
EVALUATION ORDER
═══════════════════════════════════════════════════════════════════════════

    evaluate(coordinate, evaluation_time)
        │
        ├─ coordinate out of range ───────────► safe (error=True)
        │
        ├─ pass 1: restricted zones, in order
        │     first zone with haversine ≤ radius ─► immediate_alert,
        │                                            zone severity
        │
        ├─ pass 2: only if local hour in night window (20 ≤ h or h ≤ 6)
        │     night zones, in order
        │     first match ─────────────────────► warning_alert,
        │                                          severity = medium,
        │                                          "(Night time: H:MM)"
        │
        └─ no match ───────────────────────────► safe

Tie-break is registration order, never distance: two overlapping zones
resolve to whichever was registered first. The radius boundary is
inclusive.

═══════════════════════════════════════════════════════════════════════════
FAIL-OPEN POLICY
═══════════════════════════════════════════════════════════════════════════

Any error inside evaluation (bad coordinate, corrupted zone entry)
yields ``violated=False, error=True``. A broken evaluator therefore
never invents a breach alert, and never sits in the panic path, which
does not consult the evaluator at all. The price is that evaluator
bugs look like "no violation"; the ``error`` flag and the ERROR log
line are the only trace, so monitor them.
"""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from backend.app.alerts.models import Severity, ViolationAction, ViolationVerdict
from backend.app.alerts.zones import TimeWindow, Zone, ZoneRegistry
from backend.app.spatial.distance import Coordinate, distance, format_distance

logger = logging.getLogger(__name__)

NIGHT_ZONE_TYPE = "night_restriction"
DEFAULT_NIGHT_WINDOW = TimeWindow(start_hour=20, end_hour=6)


def _first_match(
    coordinate: Coordinate, zones: Sequence[Zone],
) -> Optional[Tuple[Zone, float]]:
    """Linear scan; returns the first zone containing the point."""
    for zone in zones:
        dist = distance(
            coordinate.latitude, coordinate.longitude,
            zone.center.latitude, zone.center.longitude,
        )
        if dist <= zone.radius_m:
            return zone, dist
    return None


class GeofenceEvaluator:
    """
    Pure evaluator over a ``ZoneRegistry``.

    Parameters
    ----------
    registry : ZoneRegistry
        Source of zone snapshots; one snapshot is taken per call.
    local_tz : tzinfo | str
        Timezone used to read the "local hour" of aware datetimes.
        Naive datetimes are assumed to already be local.
    night_window : TimeWindow
        Hours during which night-only zones are eligible.
    """

    def __init__(
        self,
        registry: ZoneRegistry,
        *,
        local_tz: "tzinfo | str" = "Asia/Kolkata",
        night_window: TimeWindow = DEFAULT_NIGHT_WINDOW,
    ):
        self.registry = registry
        self.local_tz = ZoneInfo(local_tz) if isinstance(local_tz, str) else local_tz
        self.night_window = night_window

    def local_time(self, when: datetime) -> datetime:
        if when.tzinfo is None:
            return when
        return when.astimezone(self.local_tz)

    def evaluate(self, coordinate: Coordinate, evaluation_time: datetime) -> ViolationVerdict:
        """Return the verdict for one position at one instant."""
        try:
            if not coordinate.is_valid:
                logger.warning(
                    "Geofence check skipped: invalid coordinates %s",
                    coordinate.to_list(),
                )
                return ViolationVerdict.failed_open()

            snapshot = self.registry.snapshot()

            hit = _first_match(coordinate, snapshot.active)
            if hit is not None:
                zone, dist = hit
                logger.warning(
                    "Geofence violation detected: %s (%s from centre)",
                    zone.name, format_distance(dist),
                    extra={
                        "zone_id": zone.id,
                        "severity": zone.severity.value,
                        "coordinates": coordinate.to_list(),
                    },
                )
                return ViolationVerdict(
                    violated=True,
                    zone_id=zone.id,
                    zone_name=zone.name,
                    zone_type=zone.category.value,
                    severity=zone.severity,
                    description=zone.description,
                    distance_m=int(round(dist)),
                    action=ViolationAction.IMMEDIATE_ALERT,
                )

            local = self.local_time(evaluation_time)
            if self.night_window.contains(local.hour):
                eligible = [z for z in snapshot.night if z.applies_at(local.hour)]
                hit = _first_match(coordinate, eligible)
                if hit is not None:
                    zone, dist = hit
                    logger.warning(
                        "Night time geofence violation: %s at %s",
                        zone.name, local.isoformat(),
                        extra={"zone_id": zone.id, "coordinates": coordinate.to_list()},
                    )
                    return ViolationVerdict(
                        violated=True,
                        zone_id=zone.id,
                        zone_name=zone.name,
                        zone_type=NIGHT_ZONE_TYPE,
                        severity=Severity.MEDIUM,
                        description=(
                            f"{zone.description} "
                            f"(Night time: {local.hour}:{local.minute:02d})"
                        ),
                        distance_m=int(round(dist)),
                        action=ViolationAction.WARNING_ALERT,
                    )

            return ViolationVerdict.safe()

        except Exception as exc:
            logger.error("Geofence check error: %s", exc, exc_info=True)
            return ViolationVerdict.failed_open()
