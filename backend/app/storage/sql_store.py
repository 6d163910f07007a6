"""
SQLAlchemy async adapters for the storage ports.

Each adapter takes a ``Database`` and opens one short session per call,
so a failing statement never leaks a half-open transaction into the
next request. Listing queries order by ``(timestamp DESC, id DESC)``;
ids are monotonic, so ties still come back newest first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from backend.app.alerts.models import (
    ACTIVE_STATUSES,
    ActorRole,
    Alert,
    AuditEvent,
    AuditEventKind,
)
from backend.app.core.database import Database
from backend.app.core.errors import InvalidInputError
from backend.app.core.ids import IdGenerator, utc_now
from backend.app.storage.memory import check_notes, check_resolvable
from backend.app.storage.sql_models import AlertRow, AuditRow, LocationRow, TouristRow
from backend.app.tracking.models import LocationSample, Tourist

logger = logging.getLogger(__name__)


class SqlTouristDirectory:

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, tourist_id: str) -> Optional[Tourist]:
        async with self.db.session() as session:
            row = await session.get(TouristRow, tourist_id)
            return row.to_domain() if row else None

    async def tourist_valid(self, tourist: Tourist, now: datetime) -> bool:
        return tourist.is_valid(now)

    async def touch_last_seen(self, tourist_id: str, now: datetime) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(TouristRow)
                .where(TouristRow.id == tourist_id)
                .values(last_seen=now)
            )

    async def add(self, tourist: Tourist) -> None:
        async with self.db.session() as session:
            await session.merge(TouristRow.from_domain(tourist))

    async def count(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(select(func.count()).select_from(TouristRow))


class SqlAlertStore:

    def __init__(self, db: Database):
        self.db = db

    async def append(self, alert: Alert) -> None:
        try:
            async with self.db.session() as session:
                session.add(AlertRow.from_domain(alert))
                await session.flush()
        except IntegrityError as exc:
            raise InvalidInputError(f"Alert {alert.id} already stored", field="id") from exc

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self.db.session() as session:
            row = await session.get(AlertRow, alert_id)
            return row.to_domain() if row else None

    async def resolve(
        self,
        alert_id: str,
        resolved_by: str,
        notes: Optional[str],
        now: datetime,
    ) -> Alert:
        check_notes(notes)
        async with self.db.session() as session:
            row = await session.get(AlertRow, alert_id, with_for_update=True)
            alert = check_resolvable(row.to_domain() if row else None, alert_id)
            alert.resolve(resolved_by, notes, now=now)
            row.status = alert.status.value
            row.resolved_at = alert.resolved_at
            row.resolved_by = alert.resolved_by
            row.notes = alert.notes
            row.response_time = alert.response_time_minutes
            return alert

    async def list_by_tourist(
        self, tourist_id: str, limit: int = 20, offset: int = 0,
    ) -> List[Alert]:
        stmt = (
            select(AlertRow)
            .where(AlertRow.tourist_id == tourist_id)
            .order_by(AlertRow.timestamp.desc(), AlertRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self.db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [r.to_domain() for r in rows]

    async def list_active(self) -> List[Alert]:
        stmt = (
            select(AlertRow)
            .where(AlertRow.status.in_([s.value for s in ACTIVE_STATUSES]))
            .order_by(AlertRow.timestamp.desc(), AlertRow.id.desc())
        )
        async with self.db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [r.to_domain() for r in rows]

    async def count(self) -> int:
        async with self.db.session() as session:
            return await session.scalar(select(func.count()).select_from(AlertRow))


class SqlLocationStore:

    def __init__(self, db: Database):
        self.db = db

    async def append(self, sample: LocationSample) -> None:
        async with self.db.session() as session:
            session.add(LocationRow.from_domain(sample))

    async def history(
        self, tourist_id: str, limit: int = 50, offset: int = 0,
    ) -> List[LocationSample]:
        stmt = (
            select(LocationRow)
            .where(LocationRow.tourist_id == tourist_id)
            .order_by(LocationRow.timestamp.desc(), LocationRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self.db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [r.to_domain() for r in rows]

    async def latest(self, tourist_id: str) -> Optional[LocationSample]:
        newest = await self.history(tourist_id, limit=1)
        return newest[0] if newest else None

    async def latest_per_tourist(self) -> List[LocationSample]:
        ranked = (
            select(
                LocationRow.id.label("id"),
                func.row_number().over(
                    partition_by=LocationRow.tourist_id,
                    order_by=(LocationRow.timestamp.desc(), LocationRow.id.desc()),
                ).label("rn"),
            )
            .subquery()
        )
        stmt = (
            select(LocationRow)
            .join(ranked, ranked.c.id == LocationRow.id)
            .where(ranked.c.rn == 1)
        )
        async with self.db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [r.to_domain() for r in rows]


class SqlAuditSink:

    def __init__(self, db: Database, id_generator: Optional[IdGenerator] = None):
        self.db = db
        self._ids = id_generator or IdGenerator("LOG")

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
        async with self.db.session() as session:
            session.add(AuditRow.from_domain(event))
        return event

    async def by_tourist(self, tourist_id: str, limit: int = 50) -> List[AuditEvent]:
        stmt = (
            select(AuditRow)
            .where(AuditRow.tourist_id == tourist_id)
            .order_by(AuditRow.timestamp.desc(), AuditRow.id.desc())
            .limit(limit)
        )
        async with self.db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [r.to_domain() for r in rows]
