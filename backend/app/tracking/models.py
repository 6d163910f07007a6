"""
Tourist and location-sample records.

The Tourist Directory owns registration and login; this service only
reads tourists, checks their permit window and bumps ``last_seen``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.spatial.distance import Coordinate


class TouristStatus(str, Enum):
    ACTIVE   = "active"
    INACTIVE = "inactive"
    EXPIRED  = "expired"


class LocationStatus(str, Enum):
    NORMAL  = "normal"
    WARNING = "warning"
    DANGER  = "danger"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EmergencyContact:
    name: str
    relationship: str
    phone: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "relationship": self.relationship, "phone": self.phone}


@dataclass
class Tourist:
    """A registered visitor holding a time-boxed digital permit."""
    id: str
    name: str
    valid_from: datetime
    valid_to: datetime
    phone_no: str = ""
    nationality: str = ""
    emergency_contacts: List[EmergencyContact] = field(default_factory=list)
    status: TouristStatus = TouristStatus.ACTIVE
    safety_score: int = 75
    last_seen: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Inside the permit window and still active."""
        now = now or _now()
        return (
            self.valid_from <= now <= self.valid_to
            and self.status == TouristStatus.ACTIVE
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone_no": self.phone_no,
            "nationality": self.nationality,
            "emergency_contacts": [c.to_dict() for c in self.emergency_contacts],
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
            "status": self.status.value,
            "safety_score": self.safety_score,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tourist":
        """Build from the seed-file / API shape (ISO-8601 timestamps)."""
        last_seen = data.get("last_seen")
        return cls(
            id=data["id"],
            name=data["name"],
            phone_no=data.get("phone_no", ""),
            nationality=data.get("nationality", ""),
            emergency_contacts=[
                EmergencyContact(**c) for c in data.get("emergency_contacts", [])
            ],
            valid_from=_parse_dt(data["valid_from"]),
            valid_to=_parse_dt(data["valid_to"]),
            status=TouristStatus(data.get("status", "active")),
            safety_score=int(data.get("safety_score", 75)),
            last_seen=_parse_dt(last_seen) if last_seen else None,
        )


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Telemetry:
    """Optional device readings that accompany a location report."""
    accuracy: Optional[float] = None   # metres, >= 0
    altitude: Optional[float] = None   # metres
    speed: Optional[float] = None      # m/s, >= 0
    heading: Optional[float] = None    # degrees, [0, 360]


@dataclass
class LocationSample:
    """One persisted position report."""
    id: str
    tourist_id: str
    timestamp: datetime
    coordinate: Coordinate
    address: Optional[str] = None
    status: LocationStatus = LocationStatus.NORMAL
    accuracy: float = 10.0
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tourist_id": self.tourist_id,
            "coordinates": self.coordinate.to_list(),
            "address": self.address,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "accuracy": self.accuracy,
            "altitude": self.altitude,
            "speed": self.speed,
            "heading": self.heading,
        }
