"""
ORM tables for the SQL storage adapters.

    Table             Domain object      Notes
    ───────────────   ────────────────   ─────────────────────────────────
    tourists          Tourist            contacts stored as JSON
    alerts            Alert              lon/lat columns + JSON sent_to
    location_samples  LocationSample     indexed (tourist_id, timestamp)
    audit_logs        AuditEvent         append-only

SQLite drops tzinfo on round-trip; ``_aware`` re-attaches UTC on read.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.alerts.models import (
    ActorRole,
    Alert,
    AlertStatus,
    AlertType,
    AuditEvent,
    AuditEventKind,
    RESOLVED_BY_MAX_LEN,
    RecipientChannel,
    Severity,
)
from backend.app.core.database import Base
from backend.app.spatial.distance import Coordinate
from backend.app.tracking.models import (
    EmergencyContact,
    LocationSample,
    LocationStatus,
    Tourist,
    TouristStatus,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TouristRow(Base):
    __tablename__ = "tourists"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    phone_no: Mapped[str] = mapped_column(String(32), default="")
    nationality: Mapped[str] = mapped_column(String(100), default="")
    emergency_contacts: Mapped[List[Dict[str, str]]] = mapped_column(JSON, default=list)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16), default=TouristStatus.ACTIVE.value)
    safety_score: Mapped[int] = mapped_column(Integer, default=75)
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def from_domain(cls, tourist: Tourist) -> "TouristRow":
        return cls(
            id=tourist.id,
            name=tourist.name,
            phone_no=tourist.phone_no,
            nationality=tourist.nationality,
            emergency_contacts=[c.to_dict() for c in tourist.emergency_contacts],
            valid_from=tourist.valid_from,
            valid_to=tourist.valid_to,
            status=tourist.status.value,
            safety_score=tourist.safety_score,
            last_seen=tourist.last_seen,
        )

    def to_domain(self) -> Tourist:
        return Tourist(
            id=self.id,
            name=self.name,
            phone_no=self.phone_no,
            nationality=self.nationality,
            emergency_contacts=[EmergencyContact(**c) for c in self.emergency_contacts or []],
            valid_from=_aware(self.valid_from),
            valid_to=_aware(self.valid_to),
            status=TouristStatus(self.status),
            safety_score=self.safety_score,
            last_seen=_aware(self.last_seen),
        )


class AlertRow(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_tourist_ts", "tourist_id", "timestamp"),
        Index("ix_alerts_status_ts", "status", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    tourist_id: Mapped[str] = mapped_column(String(64))
    type: Mapped[str] = mapped_column(String(32))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    longitude: Mapped[float] = mapped_column(Float)
    latitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[str] = mapped_column(String(500))
    severity: Mapped[str] = mapped_column(String(16))
    sent_to: Mapped[List[str]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default=AlertStatus.PENDING.value)
    response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(RESOLVED_BY_MAX_LEN), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # ``metadata`` is reserved on declarative classes
    extra: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    @classmethod
    def from_domain(cls, alert: Alert) -> "AlertRow":
        return cls(
            id=alert.id,
            tourist_id=alert.tourist_id,
            type=alert.type.value,
            timestamp=alert.timestamp,
            longitude=alert.location.longitude,
            latitude=alert.location.latitude,
            address=alert.address,
            description=alert.description,
            severity=alert.severity.value,
            sent_to=[c.value for c in alert.sent_to],
            status=alert.status.value,
            response_time=alert.response_time_minutes,
            resolved_at=alert.resolved_at,
            resolved_by=alert.resolved_by,
            notes=alert.notes,
            extra=dict(alert.metadata),
        )

    def to_domain(self) -> Alert:
        return Alert(
            id=self.id,
            tourist_id=self.tourist_id,
            type=AlertType(self.type),
            timestamp=_aware(self.timestamp),
            location=Coordinate(longitude=self.longitude, latitude=self.latitude),
            address=self.address,
            description=self.description,
            severity=Severity(self.severity),
            sent_to=[RecipientChannel(c) for c in self.sent_to or []],
            status=AlertStatus(self.status),
            response_time_minutes=self.response_time,
            resolved_at=_aware(self.resolved_at),
            resolved_by=self.resolved_by,
            notes=self.notes,
            metadata=dict(self.extra or {}),
        )


class LocationRow(Base):
    __tablename__ = "location_samples"
    __table_args__ = (
        Index("ix_locations_tourist_ts", "tourist_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    tourist_id: Mapped[str] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    longitude: Mapped[float] = mapped_column(Float)
    latitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=LocationStatus.NORMAL.value)
    accuracy: Mapped[float] = mapped_column(Float, default=10.0)
    altitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    @classmethod
    def from_domain(cls, sample: LocationSample) -> "LocationRow":
        return cls(
            id=sample.id,
            tourist_id=sample.tourist_id,
            timestamp=sample.timestamp,
            longitude=sample.coordinate.longitude,
            latitude=sample.coordinate.latitude,
            address=sample.address,
            status=sample.status.value,
            accuracy=sample.accuracy,
            altitude=sample.altitude,
            speed=sample.speed,
            heading=sample.heading,
        )

    def to_domain(self) -> LocationSample:
        return LocationSample(
            id=self.id,
            tourist_id=self.tourist_id,
            timestamp=_aware(self.timestamp),
            coordinate=Coordinate(longitude=self.longitude, latitude=self.latitude),
            address=self.address,
            status=LocationStatus(self.status),
            accuracy=self.accuracy,
            altitude=self.altitude,
            speed=self.speed,
            heading=self.heading,
        )


class AuditRow(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_tourist_ts", "tourist_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    event: Mapped[str] = mapped_column(String(32))
    tourist_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    user_role: Mapped[str] = mapped_column(String(16))
    details: Mapped[str] = mapped_column(Text, default="")
    alert_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    @classmethod
    def from_domain(cls, event: AuditEvent) -> "AuditRow":
        return cls(
            id=event.id,
            event=event.event_kind.value,
            tourist_id=event.tourist_id,
            timestamp=event.timestamp,
            user_role=event.actor_role.value,
            details=event.details,
            alert_id=event.alert_id,
        )

    def to_domain(self) -> AuditEvent:
        return AuditEvent(
            id=self.id,
            event_kind=AuditEventKind(self.event),
            tourist_id=self.tourist_id,
            timestamp=_aware(self.timestamp),
            actor_role=ActorRole(self.user_role),
            details=self.details,
            alert_id=self.alert_id,
        )
