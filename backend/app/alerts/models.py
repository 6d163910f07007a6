"""
models.py — Shared data structures for geofencing and alerting.

Defines:
    • Severity / ZoneCategory     — zone classification
    • ViolationAction / ViolationVerdict — geofence evaluator output
    • AlertType / AlertStatus / RecipientChannel — alert classification
    • Alert                       — the durable alert record
    • AuditEventKind / ActorRole / AuditEvent — append-only audit trail
    • NotificationChannel / DeliveryStatus / DeliveryAttempt — delivery tracking

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    created (pending) ──► acknowledged ──► in_progress ──► resolved
                │                                             ▲
                └─────────────────────────────────────────────┘
                                  resolve()

An alert is created by the Alert Factory, appended to the Alert Store,
and afterwards only changes through ``resolve()``:

    status                = resolved
    resolved_at           = now
    response_time_minutes = round((resolved_at − timestamp) / 60 s)

Alerts are never deleted. ``pending``, ``acknowledged`` and
``in_progress`` count as *active*.

═══════════════════════════════════════════════════════════════════════════
RECIPIENT CHANNELS BY ALERT TYPE
═══════════════════════════════════════════════════════════════════════════

    Alert Type        Severity          sent_to
    ──────────────    ──────────────    ─────────────────────────────────
    panic_button      critical          nearest_police_unit, emergency_contacts
    geofence_breach   zone severity     tourist_app, local_police
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.spatial.distance import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Severity(str, Enum):
    """Zone / alert severity, ordered by ``rank``."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ZoneCategory(str, Enum):
    MILITARY       = "military"
    NATURAL_HAZARD = "natural_hazard"
    BORDER         = "border"
    WILDLIFE       = "wildlife"
    HIGHWAY        = "highway"
    CUSTOM         = "custom"


class ViolationAction(str, Enum):
    IMMEDIATE_ALERT = "immediate_alert"   # always-active zone
    WARNING_ALERT   = "warning_alert"     # night-only zone


class AlertType(str, Enum):
    PANIC_BUTTON      = "panic_button"
    GEOFENCE_BREACH   = "geofence_breach"
    INACTIVITY        = "inactivity"
    DEVICE_OFFLINE    = "device_offline"
    EMERGENCY_CONTACT = "emergency_contact"


class AlertStatus(str, Enum):
    PENDING      = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS  = "in_progress"
    RESOLVED     = "resolved"
    FALSE_ALARM  = "false_alarm"


ACTIVE_STATUSES = frozenset({
    AlertStatus.PENDING,
    AlertStatus.ACKNOWLEDGED,
    AlertStatus.IN_PROGRESS,
})


class RecipientChannel(str, Enum):
    """Who an alert is addressed to (recorded on the alert)."""
    TOURIST_APP         = "tourist_app"
    EMERGENCY_CONTACTS  = "emergency_contacts"
    NEAREST_POLICE_UNIT = "nearest_police_unit"
    LOCAL_POLICE        = "local_police"
    TOURISM_OFFICE      = "tourism_office"


class AuditEventKind(str, Enum):
    TOURIST_REGISTERED    = "tourist_registered"
    TOURIST_LOGIN         = "tourist_login"
    TOURIST_LOGOUT        = "tourist_logout"
    PANIC_ALERT_TRIGGERED = "panic_alert_triggered"
    GEOFENCE_BREACH       = "geofence_breach"
    LOCATION_UPDATED      = "location_updated"
    PROFILE_UPDATED       = "profile_updated"
    ALERT_RESOLVED        = "alert_resolved"
    SYSTEM_ACCESS         = "system_access"


class ActorRole(str, Enum):
    TOURIST = "tourist"
    STAFF   = "staff"
    POLICE  = "police"
    ADMIN   = "admin"
    SYSTEM  = "system"


class NotificationChannel(str, Enum):
    """How a notification physically travels."""
    SMS             = "sms"
    WEB_PUSH        = "web_push"
    POLICE_DISPATCH = "police_dispatch"


class DeliveryStatus(str, Enum):
    PENDING   = "pending"
    SENDING   = "sending"
    DELIVERED = "delivered"
    FAILED    = "failed"
    SKIPPED   = "skipped"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Geofence Verdict
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ViolationVerdict:
    """
    Result of one geofence evaluation.

    ``violated=False`` with ``error=True`` means evaluation failed open:
    the caller treats the point as safe.
    """
    violated: bool
    zone_id: Optional[str] = None
    zone_name: Optional[str] = None
    zone_type: Optional[str] = None
    severity: Optional[Severity] = None
    description: Optional[str] = None
    distance_m: Optional[int] = None
    action: Optional[ViolationAction] = None
    error: bool = False
    message: str = ""

    @classmethod
    def safe(cls) -> "ViolationVerdict":
        return cls(violated=False, message="Location is within safe zones")

    @classmethod
    def failed_open(cls, message: str = "Unable to check geofence - assuming safe") -> "ViolationVerdict":
        return cls(violated=False, error=True, message=message)

    def to_dict(self) -> Dict[str, Any]:
        if not self.violated:
            return {"violated": False, "error": self.error, "message": self.message}
        return {
            "violated": True,
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "zone_type": self.zone_type,
            "severity": self.severity.value if self.severity else None,
            "description": self.description,
            "distance_m": self.distance_m,
            "action": self.action.value if self.action else None,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Alert
# ═══════════════════════════════════════════════════════════════════════════

DESCRIPTION_MAX_LEN = 500
NOTES_MAX_LEN = 1000
RESOLVED_BY_MAX_LEN = 64


def response_minutes(started: datetime, finished: datetime) -> int:
    """Whole minutes between two instants, half-up rounded, never negative."""
    minutes = (finished - started).total_seconds() / 60.0
    return max(0, int(math.floor(minutes + 0.5)))


@dataclass
class Alert:
    """A panic or geofence alert for one tourist."""
    id: str
    tourist_id: str
    type: AlertType
    timestamp: datetime
    location: Coordinate
    description: str
    severity: Severity
    sent_to: List[RecipientChannel] = field(default_factory=list)
    address: Optional[str] = None
    status: AlertStatus = AlertStatus.PENDING
    response_time_minutes: Optional[int] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def resolve(
        self,
        resolved_by: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Alert":
        """Mark resolved and compute the response time in minutes."""
        self.status = AlertStatus.RESOLVED
        self.resolved_at = now or _now()
        self.resolved_by = resolved_by
        if notes is not None:
            self.notes = notes
        self.response_time_minutes = response_minutes(self.timestamp, self.resolved_at)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tourist_id": self.tourist_id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "location": {
                "type": "Point",
                "coordinates": self.location.to_list(),
            },
            "address": self.address,
            "description": self.description,
            "severity": self.severity.value,
            "sent_to": [c.value for c in self.sent_to],
            "status": self.status.value,
            "response_time": self.response_time_minutes,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "notes": self.notes,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Audit Trail
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AuditEvent:
    """One append-only audit entry."""
    id: str
    event_kind: AuditEventKind
    tourist_id: Optional[str]
    timestamp: datetime
    actor_role: ActorRole
    details: str
    alert_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event_kind.value,
            "tourist_id": self.tourist_id,
            "timestamp": self.timestamp.isoformat(),
            "user_role": self.actor_role.value,
            "details": self.details,
            "alert_id": self.alert_id,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Tracking
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt via one channel."""
    channel: NotificationChannel
    recipient: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "recipient": self.recipient,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "retry_count": self.retry_count,
            "error_message": self.error_message,
        }
