"""
Ports — the collaborator interfaces the Alerting Pipeline is built on.

The pipeline receives one implementation of each through its
constructor. Two adapter families ship with the service:

    Port               memory.py                 sql_store.py
    ─────────────────  ────────────────────────  ─────────────────────
    TouristDirectory   InMemoryTouristDirectory  SqlTouristDirectory
    AlertStore         InMemoryAlertStore        SqlAlertStore
    LocationStore      InMemoryLocationStore     SqlLocationStore
    AuditSink          InMemoryAuditSink         SqlAuditSink

The notification port is implemented by
``backend.app.alerts.notifier.NotificationGateway``.

All listing methods return newest first.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from backend.app.alerts.models import (
    ActorRole,
    Alert,
    AuditEvent,
    AuditEventKind,
)
from backend.app.tracking.models import LocationSample, Tourist


@runtime_checkable
class TouristDirectory(Protocol):
    async def find_by_id(self, tourist_id: str) -> Optional[Tourist]: ...

    async def tourist_valid(self, tourist: Tourist, now: datetime) -> bool: ...

    async def touch_last_seen(self, tourist_id: str, now: datetime) -> None: ...

    async def add(self, tourist: Tourist) -> None: ...


@runtime_checkable
class AlertStore(Protocol):
    async def append(self, alert: Alert) -> None: ...

    async def get(self, alert_id: str) -> Optional[Alert]: ...

    async def resolve(
        self,
        alert_id: str,
        resolved_by: str,
        notes: Optional[str],
        now: datetime,
    ) -> Alert:
        """Resolve in place; raises NotFoundError / InvalidInputError."""
        ...

    async def list_by_tourist(
        self, tourist_id: str, limit: int = 20, offset: int = 0,
    ) -> List[Alert]: ...

    async def list_active(self) -> List[Alert]: ...


@runtime_checkable
class LocationStore(Protocol):
    async def append(self, sample: LocationSample) -> None: ...

    async def history(
        self, tourist_id: str, limit: int = 50, offset: int = 0,
    ) -> List[LocationSample]: ...

    async def latest(self, tourist_id: str) -> Optional[LocationSample]: ...

    async def latest_per_tourist(self) -> List[LocationSample]: ...


@runtime_checkable
class AuditSink(Protocol):
    async def record(
        self,
        event_kind: AuditEventKind,
        tourist_id: Optional[str],
        actor_role: ActorRole,
        details: str,
        alert_id: Optional[str] = None,
    ) -> AuditEvent: ...

    async def by_tourist(self, tourist_id: str, limit: int = 50) -> List[AuditEvent]: ...


@runtime_checkable
class NotificationPort(Protocol):
    async def notify_panic(self, tourist: Tourist, alert: Alert) -> int: ...

    async def notify_geofence(self, tourist: Tourist, alert: Alert) -> bool: ...
