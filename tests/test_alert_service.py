"""
test_alert_service.py — Alerting Pipeline end to end over in-memory
adapters: validation order, panic path, location path, resolution,
read side and upstream failure mapping.

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from backend.app.alerts.models import (
    ActorRole,
    AlertStatus,
    AlertType,
    AuditEventKind,
    RecipientChannel,
    Severity,
)
from backend.app.core.errors import (
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)
from backend.app.spatial.distance import Coordinate
from backend.app.storage.memory import InMemoryAlertStore
from backend.app.tracking.models import LocationStatus, Telemetry

TEZPUR = Coordinate(longitude=92.7933, latitude=26.6337)
SAFE = Coordinate(longitude=91.7362, latitude=26.1445)


class _SlowAlertStore(InMemoryAlertStore):
    async def append(self, alert):
        await asyncio.sleep(1.0)
        await super().append(alert)


class _BrokenAlertStore(InMemoryAlertStore):
    async def append(self, alert):
        raise ConnectionError("database is down")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Validation order
# ═══════════════════════════════════════════════════════════════════════════

class TestValidation:

    @pytest.mark.parametrize("tid", [None, "", "   "])
    async def test_missing_tourist_id(self, pipeline, alert_store, tid):
        with pytest.raises(InvalidInputError) as exc:
            await pipeline.report_panic(tid, TEZPUR)
        assert exc.value.status_code == 400
        assert await alert_store.count() == 0

    async def test_missing_coordinate(self, pipeline):
        with pytest.raises(InvalidInputError):
            await pipeline.report_panic("T-001", None)
        with pytest.raises(InvalidInputError):
            await pipeline.report_location("T-001", Coordinate(None, 26.0))

    async def test_unknown_tourist_leaves_nothing(self, pipeline, alert_store, audit_sink):
        with pytest.raises(NotFoundError) as exc:
            await pipeline.report_panic("T-404", TEZPUR)
        assert exc.value.status_code == 404
        assert exc.value.message == "Tourist not found"
        assert await alert_store.count() == 0
        assert audit_sink.events == []

    async def test_lookup_precedes_range_check(self, pipeline):
        # Unknown tourist with a bad coordinate reports 404, not 400
        with pytest.raises(NotFoundError):
            await pipeline.report_panic("T-404", Coordinate(500.0, 0.0))

    @pytest.mark.parametrize("coord", [
        Coordinate(181.0, 0.0), Coordinate(0.0, 91.0), Coordinate(float("nan"), 0.0),
    ])
    async def test_out_of_range(self, pipeline, alert_store, location_store, coord):
        with pytest.raises(InvalidInputError):
            await pipeline.report_panic("T-001", coord)
        with pytest.raises(InvalidInputError):
            await pipeline.report_location("T-001", coord)
        assert await alert_store.count() == 0
        assert await location_store.latest("T-001") is None

    @pytest.mark.parametrize("telemetry", [
        Telemetry(accuracy=-1.0),
        Telemetry(speed=-0.1),
        Telemetry(speed=float("nan")),
        Telemetry(altitude=float("nan")),
        Telemetry(heading=361.0),
        Telemetry(heading=-1.0),
    ])
    async def test_bad_telemetry(self, pipeline, location_store, telemetry):
        with pytest.raises(InvalidInputError):
            await pipeline.report_location("T-001", SAFE, telemetry=telemetry)
        assert await location_store.latest("T-001") is None

    async def test_boundary_telemetry_accepted(self, pipeline):
        result = await pipeline.report_location(
            "T-001", SAFE,
            telemetry=Telemetry(accuracy=0.0, speed=0.0, heading=360.0, altitude=-20.0),
        )
        assert not result.geofence_alert


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Panic path
# ═══════════════════════════════════════════════════════════════════════════

class TestReportPanic:

    async def test_creates_critical_alert(self, pipeline, alert_store, audit_sink):
        result = await pipeline.report_panic("T-001", TEZPUR, "Tezpur, Assam")

        assert result.status == "pending"
        assert result.notifications_dispatched == 3  # two contacts + police

        alert = await alert_store.get(result.alert_id)
        assert alert.type == AlertType.PANIC_BUTTON
        assert alert.severity == Severity.CRITICAL
        assert set(alert.sent_to) == {
            RecipientChannel.NEAREST_POLICE_UNIT,
            RecipientChannel.EMERGENCY_CONTACTS,
        }
        assert alert.timestamp == result.timestamp

        [event] = audit_sink.events
        assert event.event_kind == AuditEventKind.PANIC_ALERT_TRIGGERED
        assert event.actor_role == ActorRole.TOURIST
        assert event.alert_id == result.alert_id

    async def test_logged_critical(self, pipeline, caplog):
        caplog.set_level(logging.INFO)
        await pipeline.report_panic("T-001", TEZPUR)
        assert any(
            r.levelno == logging.CRITICAL and "PANIC ALERT TRIGGERED" in r.getMessage()
            for r in caplog.records
        )

    async def test_notifier_crash_still_succeeds(self, pipeline, alert_store, caplog):
        pipeline.notifier = AsyncMock()
        pipeline.notifier.notify_panic.side_effect = RuntimeError("smtp exploded")
        caplog.set_level(logging.ERROR)

        result = await pipeline.report_panic("T-001", TEZPUR)
        await pipeline.drain()

        assert result.notifications_dispatched == 3
        assert await alert_store.get(result.alert_id) is not None
        assert any("delivery failed on panic" in r.getMessage() for r in caplog.records)

    async def test_notifier_timeout_still_succeeds(self, pipeline, alert_store, caplog):
        async def hang(tourist, alert):
            await asyncio.sleep(5)

        pipeline.notifier = AsyncMock()
        pipeline.notifier.notify_panic.side_effect = hang
        pipeline.notification_timeout = 0.05
        caplog.set_level(logging.ERROR)

        await pipeline.report_panic("T-001", TEZPUR)
        await pipeline.drain()

        assert await alert_store.count() == 1
        assert any("timed out" in r.getMessage() for r in caplog.records)

    async def test_returns_before_delivery(self, pipeline, alert_store):
        delivered = []

        async def slow_delivery(tourist, alert):
            await asyncio.sleep(0.4)
            delivered.append(alert.id)
            return 3

        pipeline.notifier = AsyncMock()
        pipeline.notifier.notify_panic.side_effect = slow_delivery

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await pipeline.report_panic("T-001", TEZPUR)
        assert loop.time() - started < 0.2
        assert delivered == []
        assert await alert_store.get(result.alert_id) is not None

        await pipeline.drain()
        assert delivered == [result.alert_id]

    async def test_close_cancels_pending_delivery(self, pipeline, caplog):
        async def hang(tourist, alert):
            await asyncio.sleep(5)

        pipeline.notifier = AsyncMock()
        pipeline.notifier.notify_panic.side_effect = hang
        pipeline.notification_timeout = 10.0
        caplog.set_level(logging.WARNING)

        await pipeline.report_panic("T-001", TEZPUR)
        assert len(pipeline._pending) == 1

        await pipeline.close(grace_seconds=0.05)
        assert pipeline._pending == set()
        assert any("Cancelled 1 undelivered" in r.getMessage() for r in caplog.records)

    async def test_expired_tourist_accepted(self, pipeline, directory, make_tourist, caplog):
        expired = make_tourist(tid="T-OLD", valid_days=-5)
        await directory.add(expired)
        caplog.set_level(logging.WARNING)

        result = await pipeline.report_panic("T-OLD", TEZPUR)
        assert result.alert_id
        assert any("permit window" in r.getMessage() for r in caplog.records)

    async def test_ids_unique_across_reports(self, pipeline):
        results = await asyncio.gather(*(
            pipeline.report_panic("T-001", TEZPUR) for _ in range(20)
        ))
        assert len({r.alert_id for r in results}) == 20


class TestUpstreamFailures:

    async def test_store_timeout_is_503(self, pipeline, audit_sink):
        pipeline.alerts = _SlowAlertStore()
        pipeline.upstream_timeout = 0.05
        with pytest.raises(UpstreamUnavailableError) as exc:
            await pipeline.report_panic("T-001", TEZPUR)
        assert exc.value.status_code == 503
        assert audit_sink.events == []

    async def test_store_crash_is_503(self, pipeline, audit_sink):
        pipeline.alerts = _BrokenAlertStore()
        with pytest.raises(UpstreamUnavailableError):
            await pipeline.report_panic("T-001", TEZPUR)
        assert await pipeline.alerts.count() == 0
        assert audit_sink.events == []

    async def test_audit_failure_after_panic_stored(self, pipeline, alert_store, caplog):
        pipeline.audit = AsyncMock()
        pipeline.audit.record.side_effect = ConnectionError("audit db down")
        caplog.set_level(logging.ERROR)

        result = await pipeline.report_panic("T-001", TEZPUR)

        assert result.status == "pending"
        assert await alert_store.count() == 1
        assert any(
            result.alert_id in r.getMessage() and "lost" in r.getMessage()
            for r in caplog.records
        )

    async def test_audit_failure_after_breach_stored(self, pipeline, alert_store):
        pipeline.audit = AsyncMock()
        pipeline.audit.record.side_effect = ConnectionError("audit db down")

        result = await pipeline.report_location("T-001", TEZPUR)
        assert result.geofence_alert
        assert await alert_store.get(result.alert_id) is not None

    async def test_audit_timeout_after_resolve(self, pipeline, alert_store):
        created = await pipeline.report_panic("T-001", TEZPUR)

        async def slow_record(*args, **kwargs):
            await asyncio.sleep(1.0)

        pipeline.audit = AsyncMock()
        pipeline.audit.record.side_effect = slow_record
        pipeline.upstream_timeout = 0.05

        alert = await pipeline.resolve_alert(created.alert_id, "Officer Das")
        assert alert.status == AlertStatus.RESOLVED
        assert (await alert_store.get(created.alert_id)).status == AlertStatus.RESOLVED

    async def test_directory_crash_is_503(self, pipeline):
        pipeline.tourists = AsyncMock()
        pipeline.tourists.find_by_id.side_effect = OSError("directory unreachable")
        with pytest.raises(UpstreamUnavailableError):
            await pipeline.report_location("T-001", SAFE)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Location path
# ═══════════════════════════════════════════════════════════════════════════

class TestReportLocation:

    async def test_inside_danger_zone(self, pipeline, alert_store, location_store, audit_sink):
        result = await pipeline.report_location("T-001", TEZPUR, "Tezpur")

        assert result.geofence_alert
        assert result.verdict.zone_id == "DANGER_001"
        assert result.to_dict()["violation"]["severity"] == "critical"

        sample = await location_store.latest("T-001")
        assert sample.id == result.location_id
        assert sample.status == LocationStatus.DANGER
        assert sample.accuracy == 10.0

        alert = await alert_store.get(result.alert_id)
        assert alert.type == AlertType.GEOFENCE_BREACH
        assert alert.description == (
            "Tourist entered military zone: Restricted Military Area - Tezpur"
        )

        [event] = audit_sink.events
        assert event.event_kind == AuditEventKind.GEOFENCE_BREACH
        assert "DANGER_001" in event.details

    async def test_safe_location(self, pipeline, alert_store, location_store, audit_sink):
        result = await pipeline.report_location(
            "T-001", SAFE, telemetry=Telemetry(accuracy=4.5, speed=1.2, heading=90.0),
        )

        assert not result.geofence_alert
        assert result.alert_id is None
        assert "violation" not in result.to_dict()
        assert await alert_store.count() == 0
        assert audit_sink.events == []

        sample = await location_store.latest("T-001")
        assert sample.status == LocationStatus.NORMAL
        assert sample.accuracy == 4.5
        assert sample.heading == 90.0

    async def test_updates_last_seen(self, pipeline, directory):
        result = await pipeline.report_location("T-001", SAFE)
        tourist = await directory.find_by_id("T-001")
        assert tourist.last_seen == result.timestamp

    async def test_geofence_notifier_crash_keeps_alert(self, pipeline, alert_store):
        pipeline.notifier = AsyncMock()
        pipeline.notifier.notify_geofence.side_effect = RuntimeError("push down")

        result = await pipeline.report_location("T-001", TEZPUR)
        assert result.geofence_alert
        assert await alert_store.get(result.alert_id) is not None

    async def test_evaluator_failure_is_safe(self, pipeline, alert_store):
        pipeline.evaluator.registry = MagicMock()
        pipeline.evaluator.registry.snapshot.side_effect = RuntimeError("boom")

        result = await pipeline.report_location("T-001", TEZPUR)
        assert not result.geofence_alert
        assert await alert_store.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Resolution
# ═══════════════════════════════════════════════════════════════════════════

class TestResolveAlert:

    async def test_round_trip(self, pipeline, alert_store, audit_sink):
        created = await pipeline.report_panic("T-001", TEZPUR)
        alert = await pipeline.resolve_alert(created.alert_id, "Officer Das", "Tourist found safe")

        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolved_by == "Officer Das"
        assert alert.notes == "Tourist found safe"
        assert alert.resolved_at >= alert.timestamp
        assert alert.response_time_minutes == 0
        assert await pipeline.active_alerts() == []

        assert audit_sink.events[-1].event_kind == AuditEventKind.ALERT_RESOLVED
        assert audit_sink.events[-1].actor_role == ActorRole.STAFF

    async def test_response_time_minutes(self, pipeline, alert_store):
        created = await pipeline.report_panic("T-001", TEZPUR)
        alert = await alert_store.get(created.alert_id)
        alert.timestamp -= timedelta(minutes=7, seconds=40)

        resolved = await pipeline.resolve_alert(created.alert_id, "Officer Das")
        assert resolved.response_time_minutes == 8

    async def test_unknown_alert(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.resolve_alert("ALERT-NOPE", "Officer Das")

    async def test_double_resolve(self, pipeline):
        created = await pipeline.report_panic("T-001", TEZPUR)
        await pipeline.resolve_alert(created.alert_id, "Officer Das")
        with pytest.raises(InvalidInputError):
            await pipeline.resolve_alert(created.alert_id, "Officer Roy")

    async def test_notes_too_long(self, pipeline):
        created = await pipeline.report_panic("T-001", TEZPUR)
        with pytest.raises(InvalidInputError):
            await pipeline.resolve_alert(created.alert_id, "Officer Das", "x" * 1001)

    async def test_resolver_required(self, pipeline):
        created = await pipeline.report_panic("T-001", TEZPUR)
        with pytest.raises(InvalidInputError):
            await pipeline.resolve_alert(created.alert_id, "  ")

    async def test_resolver_too_long(self, pipeline, alert_store):
        created = await pipeline.report_panic("T-001", TEZPUR)
        with pytest.raises(InvalidInputError):
            await pipeline.resolve_alert(created.alert_id, "x" * 65)
        assert (await alert_store.get(created.alert_id)).is_active

    async def test_empty_notes_kept_verbatim(self, pipeline):
        created = await pipeline.report_panic("T-001", TEZPUR)
        alert = await pipeline.resolve_alert(created.alert_id, "Officer Das", "")
        assert alert.notes == ""


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Read side
# ═══════════════════════════════════════════════════════════════════════════

class TestReadSide:

    async def test_tourist_alerts_newest_first(self, pipeline):
        first = await pipeline.report_panic("T-001", TEZPUR)
        second = await pipeline.report_location("T-001", TEZPUR)

        alerts = await pipeline.tourist_alerts("T-001")
        assert [a.id for a in alerts] == [second.alert_id, first.alert_id]
        assert [a.id for a in await pipeline.tourist_alerts("T-001", limit=1, offset=1)] == [
            first.alert_id,
        ]

    async def test_active_alerts(self, pipeline):
        a = await pipeline.report_panic("T-001", TEZPUR)
        b = await pipeline.report_panic("T-001", TEZPUR)
        await pipeline.resolve_alert(a.alert_id, "Officer Das")
        assert [x.id for x in await pipeline.active_alerts()] == [b.alert_id]

    async def test_history_and_latest(self, pipeline):
        first = await pipeline.report_location("T-001", SAFE)
        second = await pipeline.report_location("T-001", TEZPUR)

        tourist, samples = await pipeline.location_history("T-001")
        assert tourist.name == "Asha Menon"
        assert [s.id for s in samples] == [second.location_id, first.location_id]
        assert (await pipeline.latest_location("T-001")).id == second.location_id

    async def test_history_unknown_tourist(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.location_history("T-404")

    async def test_latest_without_samples(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.latest_location("T-001")

    async def test_nearby_sorted_and_filtered(self, pipeline, directory, make_tourist):
        await directory.add(make_tourist(tid="T-002", name="Ravi"))
        await directory.add(make_tourist(tid="T-003", name="Meera"))

        await pipeline.report_location("T-001", Coordinate(91.7400, 26.1445))  # ~380 m
        await pipeline.report_location("T-002", Coordinate(91.7372, 26.1445))  # ~100 m
        await pipeline.report_location("T-003", TEZPUR)                        # ~140 km

        hits = await pipeline.nearby_tourists(SAFE, 1000)
        assert [h.sample.tourist_id for h in hits] == ["T-002", "T-001"]
        assert hits[0].distance_m < hits[1].distance_m <= 1000
        assert hits[0].to_dict()["distance_display"].endswith(" m")

    async def test_nearby_uses_latest_sample(self, pipeline):
        await pipeline.report_location("T-001", SAFE)
        await pipeline.report_location("T-001", TEZPUR)
        assert await pipeline.nearby_tourists(SAFE, 1000) == []

    async def test_nearby_across_antimeridian(self, pipeline, directory, make_tourist):
        await directory.add(make_tourist(tid="T-FJ", name="Sione"))
        await pipeline.report_location("T-FJ", Coordinate(-179.9995, 0.0))

        hits = await pipeline.nearby_tourists(Coordinate(179.9995, 0.0), 1000)
        assert [h.sample.tourist_id for h in hits] == ["T-FJ"]
        assert hits[0].distance_m == pytest.approx(111.2, abs=0.5)

    async def test_nearby_rejects_bad_radius(self, pipeline):
        with pytest.raises(InvalidInputError):
            await pipeline.nearby_tourists(SAFE, 0)
