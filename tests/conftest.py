"""
Shared fixtures: tourists, in-memory adapters and a wired pipeline.

Notifications run in simulation mode with zero backoff so retries
never slow the suite down.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.alerts.alert_factory import AlertFactory
from backend.app.alerts.alert_service import AlertingPipeline
from backend.app.alerts.geo_fence import GeofenceEvaluator
from backend.app.alerts.notifier import NotificationGateway, RetryConfig
from backend.app.alerts.zones import ZoneRegistry
from backend.app.services import Services
from backend.app.storage.memory import (
    InMemoryAlertStore,
    InMemoryAuditSink,
    InMemoryLocationStore,
    InMemoryTouristDirectory,
)
from backend.app.tracking.models import EmergencyContact, Tourist


def _make_tourist(
    tid: str = "T-001",
    name: str = "Asha Menon",
    contacts: int = 2,
    valid_days: int = 10,
) -> Tourist:
    now = datetime.now(timezone.utc)
    return Tourist(
        id=tid,
        name=name,
        phone_no="+919800000000",
        nationality="Indian",
        emergency_contacts=[
            EmergencyContact(
                name=f"Contact {i}",
                relationship="family",
                phone=f"+91980000000{i}",
            )
            for i in range(1, contacts + 1)
        ],
        valid_from=now - timedelta(days=1),
        valid_to=now + timedelta(days=valid_days),
    )


@pytest.fixture
def make_tourist():
    """Factory for tourists with a configurable permit window."""
    return _make_tourist


@pytest.fixture
def tourist() -> Tourist:
    return _make_tourist()


@pytest.fixture
def directory(tourist) -> InMemoryTouristDirectory:
    return InMemoryTouristDirectory([tourist])


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def location_store() -> InMemoryLocationStore:
    return InMemoryLocationStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def registry() -> ZoneRegistry:
    return ZoneRegistry.default()


@pytest.fixture
def notifier() -> NotificationGateway:
    return NotificationGateway(retry=RetryConfig(max_retries=1, backoff_base_seconds=0.0))


@pytest.fixture
async def pipeline(
    directory, alert_store, location_store, audit_sink, notifier, registry,
):
    """Wired pipeline; background notifications are cancelled on teardown."""
    pipeline = AlertingPipeline(
        tourists=directory,
        alerts=alert_store,
        locations=location_store,
        audit=audit_sink,
        notifier=notifier,
        evaluator=GeofenceEvaluator(registry),
        factory=AlertFactory(),
        upstream_timeout=0.5,
        notification_timeout=0.5,
    )
    yield pipeline
    await pipeline.close()


@pytest.fixture
def services(pipeline, registry, notifier) -> Services:
    return Services(registry=registry, pipeline=pipeline, notifier=notifier)
