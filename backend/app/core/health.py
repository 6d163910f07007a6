"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Zone registry loaded (restricted + night zones)
    • Storage backend reachable (SQL ping, or in-memory)
    • Notification gateway mode (simulation / webhook)
    • Disk space for the SQLite file / logs

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core.config import settings

if TYPE_CHECKING:
    from backend.app.services import Services

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_zone_registry(services: "Services") -> ComponentHealth:
    """An empty restricted table means every report evaluates as safe."""
    comp = ComponentHealth(name="zone_registry")
    start = time.monotonic()
    snap = services.registry.snapshot()
    comp.details = {"restricted": len(snap.active), "night_time": len(snap.night)}
    if not snap.active:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No restricted zones loaded"
    else:
        comp.message = f"{len(snap.active) + len(snap.night)} zones loaded"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_storage(services: "Services") -> ComponentHealth:
    """Ping the SQL database, or report the in-memory backend."""
    comp = ComponentHealth(name="storage")
    start = time.monotonic()
    if services.db is None:
        comp.message = "In-memory storage (not durable)"
        comp.details = {"backend": "memory"}
    else:
        comp.details = {"backend": "sql", "url": services.db.safe_url}
        try:
            await services.db.ping()
            comp.message = "Database reachable"
        except Exception as e:
            logger.error("Database health check failed: %s", e)
            comp.status = HealthStatus.UNHEALTHY
            comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_notifier(services: "Services") -> ComponentHealth:
    """Simulation mode is fine in development, degraded in production."""
    comp = ComponentHealth(name="notification_gateway")
    start = time.monotonic()
    notifier = services.notifier
    comp.details = {
        "sms_provider": notifier.sms_provider,
        "police_dispatch": notifier.mode,
    }
    simulated = notifier.sms_provider == "simulation" or notifier.mode == "simulation"
    if simulated and settings.is_production:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Notifications are simulated in production"
    else:
        comp.message = "Notification channels configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_disk_space() -> ComponentHealth:
    """Check available disk space."""
    comp = ComponentHealth(name="disk_space")
    start = time.monotonic()
    try:
        total, used, free = shutil.disk_usage(".")
        free_gb = free / (1024 ** 3)
        comp.details = {
            "total_gb": round(total / (1024 ** 3), 1),
            "free_gb": round(free_gb, 1),
            "used_pct": round((used / total) * 100, 1),
        }
        if free_gb < 1.0:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Low disk space: {free_gb:.1f} GB free"
        else:
            comp.message = f"{free_gb:.1f} GB free"
    except OSError as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(services: "Services") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_zone_registry(services),
        check_storage(services),
        check_notifier(services),
        check_disk_space(),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
