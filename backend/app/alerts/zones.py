"""
zones.py — Hazard zone definitions and the Zone Registry.

═══════════════════════════════════════════════════════════════════════════
ZONE TABLE
═══════════════════════════════════════════════════════════════════════════

A zone is a circle (centre + radius in metres) with a category and a
severity. The registry keeps two ordered sequences:

    restricted   — always active, checked first
    night_time   — only checked inside the night window (20:00–06:00)

Order is evaluation priority: the first zone that contains the point
wins, even if a later zone's centre is nearer.

Built-in table (Northeast India):

    ID            Zone                          Radius   Category        Severity
    ───────────   ───────────────────────────   ──────   ─────────────   ────────
    DANGER_001    Military Area - Tezpur        2.0 km   military        critical
    DANGER_002    Landslide Area - Cherrapunji  1.5 km   natural_hazard  high
    DANGER_003    Indo-Myanmar Border           5.0 km   border          high
    CAUTION_001   Dense Forest - Kaziranga      3.0 km   wildlife        medium
    NIGHT_001     Remote Highway - NH37         1.0 km   highway         medium

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

Reads vastly outnumber writes. The registry publishes an immutable
``ZoneSnapshot`` (two tuples) through a single attribute; ``add_zone``
builds a new snapshot under a lock and swaps it in. An evaluator that
grabbed the old snapshot keeps iterating it undisturbed.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from backend.app.alerts.models import Severity, ZoneCategory
from backend.app.core.errors import InvalidInputError
from backend.app.core.ids import IdGenerator
from backend.app.spatial.distance import Coordinate

logger = logging.getLogger(__name__)

_custom_ids = IdGenerator("CUSTOM_")


# ═══════════════════════════════════════════════════════════════════════════
# Zone
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TimeWindow:
    """
    Inclusive local-hour window. ``start > end`` wraps midnight.

    >>> TimeWindow(20, 6).contains(23), TimeWindow(20, 6).contains(6)
    (True, True)
    >>> TimeWindow(20, 6).contains(7)
    False
    """
    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        for h in (self.start_hour, self.end_hour):
            if not 0 <= h <= 23:
                raise ValueError(f"Hour must be in [0, 23], got {h}")

    def contains(self, hour: int) -> bool:
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour <= self.end_hour
        return hour >= self.start_hour or hour <= self.end_hour

    def to_dict(self) -> Dict[str, int]:
        return {"start_hour": self.start_hour, "end_hour": self.end_hour}


@dataclass(frozen=True)
class Zone:
    """An immutable circular hazard zone."""
    id: str
    name: str
    center: Coordinate
    radius_m: float
    category: ZoneCategory
    severity: Severity
    description: str = ""
    time_window: Optional[TimeWindow] = None
    created_at: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Zone id is required")
        if not self.center.is_valid:
            raise ValueError(
                f"Zone {self.id}: invalid centre {self.center.to_list()}"
            )
        if not self.radius_m > 0:
            raise ValueError(
                f"Zone {self.id}: radius must be positive, got {self.radius_m}"
            )

    def applies_at(self, hour: int) -> bool:
        """Zone-specific window; zones without one always apply."""
        return self.time_window is None or self.time_window.contains(hour)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "coordinates": self.center.to_list(),
            "radius": self.radius_m,
            "type": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
            "time_window": self.time_window.to_dict() if self.time_window else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Zone":
        """Parse the config shape: ``coordinates`` is [lon, lat], ``radius`` in m."""
        lon, lat = data["coordinates"]
        window = data.get("time_window")
        return cls(
            id=data["id"],
            name=data["name"],
            center=Coordinate(longitude=float(lon), latitude=float(lat)),
            radius_m=float(data["radius"]),
            category=ZoneCategory(data.get("type", "custom")),
            severity=Severity(data.get("severity", "medium")),
            description=data.get("description", ""),
            time_window=TimeWindow(**window) if window else None,
        )


def new_custom_zone_id() -> str:
    return _custom_ids.next_id()


# ═══════════════════════════════════════════════════════════════════════════
# Built-in Table
# ═══════════════════════════════════════════════════════════════════════════

RESTRICTED_ZONES: Tuple[Zone, ...] = (
    Zone(
        id="DANGER_001",
        name="Restricted Military Area - Tezpur",
        center=Coordinate(longitude=92.7933, latitude=26.6337),
        radius_m=2000,
        category=ZoneCategory.MILITARY,
        severity=Severity.CRITICAL,
        description="Military restricted area - no civilian access",
    ),
    Zone(
        id="DANGER_002",
        name="Landslide Prone Area - Cherrapunji",
        center=Coordinate(longitude=91.7362, latitude=25.2624),
        radius_m=1500,
        category=ZoneCategory.NATURAL_HAZARD,
        severity=Severity.HIGH,
        description="High landslide risk area - avoid during monsoon",
    ),
    Zone(
        id="DANGER_003",
        name="Border Area - Indo-Myanmar Border",
        center=Coordinate(longitude=94.5980, latitude=25.2677),
        radius_m=5000,
        category=ZoneCategory.BORDER,
        severity=Severity.HIGH,
        description="International border area - requires special permits",
    ),
    Zone(
        id="CAUTION_001",
        name="Dense Forest Area - Kaziranga",
        center=Coordinate(longitude=93.3562, latitude=26.5775),
        radius_m=3000,
        category=ZoneCategory.WILDLIFE,
        severity=Severity.MEDIUM,
        description="Dense forest with wildlife - guided tours recommended",
    ),
)

NIGHT_TIME_ZONES: Tuple[Zone, ...] = (
    Zone(
        id="NIGHT_001",
        name="Remote Highway - NH37",
        center=Coordinate(longitude=91.7458, latitude=26.1733),
        radius_m=1000,
        category=ZoneCategory.HIGHWAY,
        severity=Severity.MEDIUM,
        description="Remote highway section - not safe for night travel",
    ),
)


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ZoneSnapshot:
    """A consistent view of both zone sequences."""
    active: Tuple[Zone, ...]
    night: Tuple[Zone, ...]

    def find(self, zone_id: str) -> Optional[Zone]:
        for zone in self.active + self.night:
            if zone.id == zone_id:
                return zone
        return None


class ZoneRegistry:
    """
    Ordered, copy-on-write zone table.

    Usage:
        registry = ZoneRegistry.default()
        snap = registry.snapshot()       # iterate freely
        registry.add_zone(zone)          # publishes a new snapshot
    """

    def __init__(
        self,
        active_zones: Iterable[Zone] = (),
        night_zones: Iterable[Zone] = (),
    ):
        active = tuple(active_zones)
        night = tuple(night_zones)
        ids = [z.id for z in active + night]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate zone ids: {duplicates}")
        self._lock = threading.Lock()
        self._snapshot = ZoneSnapshot(active=active, night=night)

    @classmethod
    def default(cls) -> "ZoneRegistry":
        return cls(RESTRICTED_ZONES, NIGHT_TIME_ZONES)

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> "ZoneRegistry":
        return cls(
            [Zone.from_dict(z) for z in data.get("restricted", [])],
            [Zone.from_dict(z) for z in data.get("night_time", [])],
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ZoneRegistry":
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        registry = cls.from_config(data)
        snap = registry.snapshot()
        logger.info(
            "Loaded %d restricted + %d night zones from %s",
            len(snap.active), len(snap.night), path,
        )
        return registry

    # ── Reads (lock-free) ──

    def snapshot(self) -> ZoneSnapshot:
        return self._snapshot

    def active_zones(self) -> Tuple[Zone, ...]:
        return self._snapshot.active

    def night_zones(self) -> Tuple[Zone, ...]:
        return self._snapshot.night

    def get(self, zone_id: str) -> Optional[Zone]:
        return self._snapshot.find(zone_id)

    # ── Writes ──

    def add_zone(self, zone: Zone) -> str:
        """Append to the always-active list; returns the zone id."""
        with self._lock:
            current = self._snapshot
            if current.find(zone.id) is not None:
                raise InvalidInputError(
                    f"Zone '{zone.id}' already registered", field="id",
                )
            if zone.created_at is None:
                zone = replace(zone, created_at=datetime.now(timezone.utc))
            self._snapshot = ZoneSnapshot(
                active=current.active + (zone,),
                night=current.night,
            )

        logger.info(
            "Custom geofence added: %s (%s, r=%.0f m)",
            zone.name, zone.category.value, zone.radius_m,
            extra={"zone_id": zone.id},
        )
        return zone.id

    def to_dict(self) -> Dict[str, Any]:
        snap = self._snapshot
        return {
            "restricted": [z.to_dict() for z in snap.active],
            "night_time": [z.to_dict() for z in snap.night],
        }
