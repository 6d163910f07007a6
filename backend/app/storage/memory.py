"""
In-memory adapters for every storage port.

Each adapter guards its containers with one ``asyncio.Lock`` so that
concurrent request tasks see consistent state. Nothing survives a
restart; use ``STORAGE_BACKEND=sql`` for durability.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from backend.app.alerts.models import (
    ActorRole,
    Alert,
    AuditEvent,
    AuditEventKind,
    NOTES_MAX_LEN,
)
from backend.app.core.errors import InvalidInputError, NotFoundError
from backend.app.core.ids import IdGenerator, utc_now
from backend.app.tracking.models import LocationSample, Tourist


def _newest_first(items, key):
    # Reverse first so equal timestamps list the later insert first
    return sorted(reversed(list(items)), key=key, reverse=True)


def check_resolvable(alert: Optional[Alert], alert_id: str) -> Alert:
    """Shared guard for ``resolve`` across adapters."""
    if alert is None:
        raise NotFoundError("Alert", alert_id=alert_id)
    if not alert.is_active:
        raise InvalidInputError(
            f"Alert {alert_id} is already {alert.status.value}",
            field="alert_id",
        )
    return alert


def check_notes(notes: Optional[str]) -> Optional[str]:
    if notes is not None and len(notes) > NOTES_MAX_LEN:
        raise InvalidInputError(
            f"Notes exceed {NOTES_MAX_LEN} characters", field="notes",
        )
    return notes


# ═══════════════════════════════════════════════════════════════════════════
# Tourist Directory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryTouristDirectory:

    def __init__(self, tourists: Iterable[Tourist] = ()):
        self._tourists: Dict[str, Tourist] = {t.id: t for t in tourists}
        self._lock = asyncio.Lock()

    async def find_by_id(self, tourist_id: str) -> Optional[Tourist]:
        async with self._lock:
            return self._tourists.get(tourist_id)

    async def tourist_valid(self, tourist: Tourist, now: datetime) -> bool:
        return tourist.is_valid(now)

    async def touch_last_seen(self, tourist_id: str, now: datetime) -> None:
        async with self._lock:
            tourist = self._tourists.get(tourist_id)
            if tourist is not None:
                tourist.last_seen = now

    async def add(self, tourist: Tourist) -> None:
        async with self._lock:
            self._tourists[tourist.id] = tourist

    async def count(self) -> int:
        async with self._lock:
            return len(self._tourists)


# ═══════════════════════════════════════════════════════════════════════════
# Alert Store
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryAlertStore:

    def __init__(self):
        self._alerts: Dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def append(self, alert: Alert) -> None:
        async with self._lock:
            if alert.id in self._alerts:
                raise InvalidInputError(f"Alert {alert.id} already stored", field="id")
            self._alerts[alert.id] = alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._lock:
            return self._alerts.get(alert_id)

    async def resolve(
        self,
        alert_id: str,
        resolved_by: str,
        notes: Optional[str],
        now: datetime,
    ) -> Alert:
        check_notes(notes)
        async with self._lock:
            alert = check_resolvable(self._alerts.get(alert_id), alert_id)
            return alert.resolve(resolved_by, notes, now=now)

    async def list_by_tourist(
        self, tourist_id: str, limit: int = 20, offset: int = 0,
    ) -> List[Alert]:
        async with self._lock:
            mine = [a for a in self._alerts.values() if a.tourist_id == tourist_id]
        return _newest_first(mine, key=lambda a: a.timestamp)[offset:offset + limit]

    async def list_active(self) -> List[Alert]:
        async with self._lock:
            active = [a for a in self._alerts.values() if a.is_active]
        return _newest_first(active, key=lambda a: a.timestamp)

    async def count(self) -> int:
        async with self._lock:
            return len(self._alerts)


# ═══════════════════════════════════════════════════════════════════════════
# Location Store
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryLocationStore:

    def __init__(self):
        self._samples: Dict[str, List[LocationSample]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, sample: LocationSample) -> None:
        async with self._lock:
            self._samples[sample.tourist_id].append(sample)

    async def history(
        self, tourist_id: str, limit: int = 50, offset: int = 0,
    ) -> List[LocationSample]:
        async with self._lock:
            samples = list(self._samples.get(tourist_id, ()))
        return _newest_first(samples, key=lambda s: s.timestamp)[offset:offset + limit]

    async def latest(self, tourist_id: str) -> Optional[LocationSample]:
        newest = await self.history(tourist_id, limit=1)
        return newest[0] if newest else None

    async def latest_per_tourist(self) -> List[LocationSample]:
        async with self._lock:
            groups = [list(s) for s in self._samples.values() if s]
        return [_newest_first(g, key=lambda s: s.timestamp)[0] for g in groups]


# ═══════════════════════════════════════════════════════════════════════════
# Audit Sink
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryAuditSink:

    def __init__(self, id_generator: Optional[IdGenerator] = None):
        self._events: List[AuditEvent] = []
        self._ids = id_generator or IdGenerator("LOG")
        self._lock = asyncio.Lock()

    async def record(
        self,
        event_kind: AuditEventKind,
        tourist_id: Optional[str],
        actor_role: ActorRole,
        details: str,
        alert_id: Optional[str] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            id=self._ids.next_id(),
            event_kind=event_kind,
            tourist_id=tourist_id,
            timestamp=utc_now(),
            actor_role=actor_role,
            details=details,
            alert_id=alert_id,
        )
        async with self._lock:
            self._events.append(event)
        return event

    async def by_tourist(self, tourist_id: str, limit: int = 50) -> List[AuditEvent]:
        async with self._lock:
            mine = [e for e in self._events if e.tourist_id == tourist_id]
        return _newest_first(mine, key=lambda e: e.timestamp)[:limit]

    @property
    def events(self) -> List[AuditEvent]:
        return list(self._events)
