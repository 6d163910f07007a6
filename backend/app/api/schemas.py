"""
Pydantic schemas for the tourist safety API.

Separated from the route handlers so they are reusable across
the codebase (tests, seed scripts).

Coordinates are not range-constrained here. The pipeline looks the
tourist up before it checks the range, so an unknown tourist gets 404
even with a bad position.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from backend.app.alerts.models import (
    DESCRIPTION_MAX_LEN,
    NOTES_MAX_LEN,
    RESOLVED_BY_MAX_LEN,
    Severity,
    ZoneCategory,
)
from backend.app.spatial.distance import Coordinate
from backend.app.tracking.models import Telemetry


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PositionInput(BaseModel):
    """A position as reported by the tourist app."""
    tourist_id: Optional[str] = Field(
        None, description="Digital tourist ID", examples=["TID1718035200123"],
    )
    latitude: Optional[float] = Field(
        None, description="Latitude in decimal degrees", examples=[26.6337],
    )
    longitude: Optional[float] = Field(
        None, description="Longitude in decimal degrees", examples=[92.7933],
    )
    address: Optional[str] = Field(None, max_length=500, examples=["Tezpur, Assam"])

    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(longitude=self.longitude, latitude=self.latitude)


class PanicRequest(PositionInput):
    """Request body for POST /api/alerts/panic."""


class LocationUpdateRequest(PositionInput):
    """Request body for POST /api/locations/update."""
    accuracy: Optional[float] = Field(None, description="Metres", examples=[8.5])
    altitude: Optional[float] = Field(None, description="Metres", examples=[74.0])
    speed: Optional[float] = Field(None, description="m/s", examples=[1.2])
    heading: Optional[float] = Field(None, description="Degrees 0–360", examples=[270.0])

    def telemetry(self) -> Telemetry:
        return Telemetry(
            accuracy=self.accuracy,
            altitude=self.altitude,
            speed=self.speed,
            heading=self.heading,
        )


class ResolveRequest(BaseModel):
    """Request body for POST /api/alerts/{alert_id}/resolve."""
    resolved_by: str = Field(
        ..., min_length=1, max_length=RESOLVED_BY_MAX_LEN, examples=["officer-17"],
    )
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LEN)


class TimeWindowInput(BaseModel):
    start_hour: int = Field(..., ge=0, le=23, examples=[20])
    end_hour: int = Field(..., ge=0, le=23, examples=[6])


class ZoneCreateRequest(BaseModel):
    """Request body for POST /api/zones."""
    id: Optional[str] = Field(None, description="Generated when omitted")
    name: str = Field(..., min_length=1, examples=["Flooded riverbank - Majuli"])
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[26.95])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[94.17])
    radius: float = Field(..., gt=0, description="Metres", examples=[800])
    type: ZoneCategory = Field(ZoneCategory.CUSTOM)
    severity: Severity = Field(Severity.MEDIUM)
    description: str = Field("", max_length=DESCRIPTION_MAX_LEN)
    time_window: Optional[TimeWindowInput] = None

