"""
FastAPI routes: panic button and alert management.

    POST /api/alerts/panic                 — raise a critical panic alert (201)
    GET  /api/alerts/active                — every unresolved alert, newest first
    GET  /api/alerts/{tourist_id}          — one tourist's alerts, paginated
    POST /api/alerts/{alert_id}/resolve    — close an alert, record response time
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import AlertingPipeline
from backend.app.api.deps import get_pipeline
from backend.app.api.schemas import PanicRequest, ResolveRequest

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.post(
    "/panic",
    status_code=201,
    summary="Trigger the panic button",
    description=(
        "Creates a critical alert regardless of geofence state, then pages "
        "the nearest police unit and texts the tourist's emergency contacts "
        "in the background. Returns once the alert is stored; notification "
        "failures never fail the request."
    ),
)
async def panic(
    request: PanicRequest,
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    result = await pipeline.report_panic(
        request.tourist_id, request.coordinate(), request.address,
    )
    return {
        "success": True,
        "message": "Panic alert sent successfully",
        "alert": {
            "id": result.alert_id,
            "timestamp": result.timestamp.isoformat(),
            "status": result.status,
        },
        "notifications_dispatched": result.notifications_dispatched,
    }


@router.get("/active", summary="All active alerts")
async def active(pipeline: AlertingPipeline = Depends(get_pipeline)):
    alerts = await pipeline.active_alerts()
    return {
        "success": True,
        "alerts": [a.to_dict() for a in alerts],
        "count": len(alerts),
    }


@router.get("/{tourist_id}", summary="Alerts raised for one tourist")
async def tourist_alerts(
    tourist_id: str,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    alerts = await pipeline.tourist_alerts(tourist_id, limit, offset)
    return {
        "success": True,
        "alerts": [a.to_dict() for a in alerts],
        "count": len(alerts),
    }


@router.post("/{alert_id}/resolve", summary="Resolve an alert")
async def resolve(
    alert_id: str,
    request: ResolveRequest,
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    alert = await pipeline.resolve_alert(alert_id, request.resolved_by, request.notes)
    return {
        "success": True,
        "message": "Alert resolved successfully",
        "alert": alert.to_dict(),
    }
