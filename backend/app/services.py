"""
Service wiring — build every collaborator from ``Settings``.

    Settings ─► ZoneRegistry (built-in table or ZONES_FILE)
            ─► storage adapters (memory | sql via Database)
            ─► NotificationGateway (simulation | webhook)
            ─► GeofenceEvaluator(registry, LOCAL_TIMEZONE, night window)
            ─► AlertingPipeline(all of the above)

``main.lifespan`` calls ``build_services`` on startup and
``Services.close`` on shutdown. Tests build a ``Services`` directly
with in-memory adapters and hand it to ``create_app``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from backend.app.alerts.alert_factory import AlertFactory
from backend.app.alerts.alert_service import AlertingPipeline
from backend.app.alerts.geo_fence import GeofenceEvaluator
from backend.app.alerts.notifier import NotificationGateway
from backend.app.alerts.zones import TimeWindow, ZoneRegistry
from backend.app.core.config import Settings
from backend.app.core.database import Database
from backend.app.storage.memory import (
    InMemoryAlertStore,
    InMemoryAuditSink,
    InMemoryLocationStore,
    InMemoryTouristDirectory,
)
from backend.app.storage.sql_store import (
    SqlAlertStore,
    SqlAuditSink,
    SqlLocationStore,
    SqlTouristDirectory,
)
from backend.app.tracking.models import Tourist

logger = logging.getLogger(__name__)


@dataclass
class Services:
    registry: ZoneRegistry
    pipeline: AlertingPipeline
    notifier: NotificationGateway
    db: Optional[Database] = None

    async def close(self) -> None:
        await self.pipeline.close(grace_seconds=self.pipeline.notification_timeout)
        await self.notifier.close()
        if self.db is not None:
            await self.db.close()


def build_registry(settings: Settings) -> ZoneRegistry:
    if settings.ZONES_FILE:
        return ZoneRegistry.from_file(settings.ZONES_FILE)
    return ZoneRegistry.default()


async def _seed_tourists(directory, path: str) -> int:
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    for item in data:
        await directory.add(Tourist.from_dict(item))
    logger.info("Seeded %d tourists from %s", len(data), path)
    return len(data)


async def build_services(settings: Settings) -> Services:
    registry = build_registry(settings)

    db: Optional[Database] = None
    if settings.uses_sql_storage:
        db = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        await db.init()
        tourists = SqlTouristDirectory(db)
        alerts = SqlAlertStore(db)
        locations = SqlLocationStore(db)
        audit = SqlAuditSink(db)
    else:
        tourists = InMemoryTouristDirectory()
        alerts = InMemoryAlertStore()
        locations = InMemoryLocationStore()
        audit = InMemoryAuditSink()

    if settings.TOURISTS_FILE:
        await _seed_tourists(tourists, settings.TOURISTS_FILE)

    notifier = NotificationGateway.from_settings(settings)
    evaluator = GeofenceEvaluator(
        registry,
        local_tz=settings.LOCAL_TIMEZONE,
        night_window=TimeWindow(settings.NIGHT_START_HOUR, settings.NIGHT_END_HOUR),
    )
    pipeline = AlertingPipeline(
        tourists=tourists,
        alerts=alerts,
        locations=locations,
        audit=audit,
        notifier=notifier,
        evaluator=evaluator,
        factory=AlertFactory(),
        upstream_timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        notification_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
    )

    logger.info(
        "Services ready: storage=%s, zones=%d+%d, notifications=%s/%s",
        "sql" if db else "memory",
        len(registry.active_zones()), len(registry.night_zones()),
        notifier.sms_provider, notifier.mode,
    )
    return Services(registry=registry, pipeline=pipeline, notifier=notifier, db=db)
