"""
FastAPI routes: hazard zone table.

    GET  /api/zones   — restricted + night-time zones in evaluation order
    POST /api/zones   — append a custom always-active zone (201)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.alerts.zones import TimeWindow, Zone, ZoneRegistry, new_custom_zone_id
from backend.app.api.deps import get_registry
from backend.app.api.schemas import ZoneCreateRequest
from backend.app.core.errors import InvalidInputError
from backend.app.spatial.distance import Coordinate

router = APIRouter(prefix="/api/zones", tags=["zones"])


@router.get("", summary="List hazard zones")
async def list_zones(registry: ZoneRegistry = Depends(get_registry)):
    return {"success": True, **registry.to_dict()}


@router.post("", status_code=201, summary="Register a custom hazard zone")
async def create_zone(
    request: ZoneCreateRequest,
    registry: ZoneRegistry = Depends(get_registry),
):
    window = request.time_window
    try:
        zone = Zone(
            id=request.id or new_custom_zone_id(),
            name=request.name,
            center=Coordinate(longitude=request.longitude, latitude=request.latitude),
            radius_m=request.radius,
            category=request.type,
            severity=request.severity,
            description=request.description,
            time_window=TimeWindow(window.start_hour, window.end_hour) if window else None,
        )
    except ValueError as exc:
        raise InvalidInputError(str(exc))

    zone_id = registry.add_zone(zone)
    return {
        "success": True,
        "message": "Custom geofence added",
        "zone_id": zone_id,
        "zone": registry.get(zone_id).to_dict(),
    }
