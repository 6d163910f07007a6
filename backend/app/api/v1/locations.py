"""
FastAPI routes: location reporting and lookup.

    POST /api/locations/update                 — report a position (geofence checked)
    GET  /api/locations/history/{tourist_id}   — newest first, paginated
    GET  /api/locations/latest/{tourist_id}    — last known position
    GET  /api/locations/nearby                 — tourists around a point
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import AlertingPipeline
from backend.app.api.deps import get_pipeline
from backend.app.api.schemas import LocationUpdateRequest
from backend.app.core.config import settings
from backend.app.spatial.distance import Coordinate

router = APIRouter(prefix="/api/locations", tags=["locations"])


@router.post(
    "/update",
    summary="Report the tourist's current position",
    description=(
        "Stores the position, runs the geofence check and raises a "
        "geofence-breach alert when the tourist is inside a hazard zone."
    ),
)
async def update_location(
    request: LocationUpdateRequest,
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    result = await pipeline.report_location(
        request.tourist_id,
        request.coordinate(),
        request.address,
        request.telemetry(),
    )
    location = result.to_dict()
    location["id"] = location.pop("location_id")
    return {
        "success": True,
        "message": "Location updated successfully",
        "location": location,
    }


@router.get("/nearby", summary="Tourists whose last position is within a radius")
async def nearby(
    longitude: Optional[float] = Query(None),
    latitude: Optional[float] = Query(None),
    radius: Optional[float] = Query(None, description="Metres"),
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    coordinate = (
        Coordinate(longitude=longitude, latitude=latitude)
        if longitude is not None and latitude is not None else None
    )
    hits = await pipeline.nearby_tourists(
        coordinate,
        radius if radius is not None else settings.DEFAULT_NEARBY_RADIUS_M,
    )
    return {
        "success": True,
        "nearby_tourists": [h.to_dict() for h in hits],
        "count": len(hits),
    }


@router.get("/history/{tourist_id}", summary="Location history, newest first")
async def history(
    tourist_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    tourist, samples = await pipeline.location_history(tourist_id, limit, offset)
    return {
        "success": True,
        "tourist": {"id": tourist.id, "name": tourist.name},
        "locations": [s.to_dict() for s in samples],
        "count": len(samples),
    }


@router.get("/latest/{tourist_id}", summary="Most recent reported position")
async def latest(
    tourist_id: str,
    pipeline: AlertingPipeline = Depends(get_pipeline),
):
    sample = await pipeline.latest_location(tourist_id)
    return {"success": True, "location": sample.to_dict()}
