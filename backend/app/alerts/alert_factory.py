"""
alert_factory.py — Build well-formed Alert records.

    Trigger          Type              Severity        sent_to
    ──────────────   ───────────────   ─────────────   ──────────────────────────────────
    panic button     panic_button      critical        nearest_police_unit, emergency_contacts
    zone violation   geofence_breach   zone severity   tourist_app, local_police

Every alert gets a fresh id and a creation timestamp from the factory's
clock, and starts ``pending`` with no resolution fields set. The
factory never persists anything; that is the pipeline's job.
"""

from __future__ import annotations

import logging
from typing import Optional

from backend.app.alerts.models import (
    DESCRIPTION_MAX_LEN,
    Alert,
    AlertStatus,
    AlertType,
    RecipientChannel,
    Severity,
    ViolationVerdict,
)
from backend.app.core.ids import IdGenerator, MonotonicClock
from backend.app.spatial.distance import Coordinate

logger = logging.getLogger(__name__)

PANIC_DESCRIPTION = "Emergency panic button pressed by tourist"

PANIC_RECIPIENTS = (
    RecipientChannel.NEAREST_POLICE_UNIT,
    RecipientChannel.EMERGENCY_CONTACTS,
)
GEOFENCE_RECIPIENTS = (
    RecipientChannel.TOURIST_APP,
    RecipientChannel.LOCAL_POLICE,
)


def _truncate(text: str, limit: int = DESCRIPTION_MAX_LEN) -> str:
    return text if len(text) <= limit else text[:limit]


class AlertFactory:
    """Stateless apart from its id generator and clock."""

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.id_generator = id_generator or IdGenerator("ALERT")
        self.clock = clock or MonotonicClock()

    def from_panic(
        self,
        tourist_id: str,
        coordinate: Coordinate,
        address: Optional[str] = None,
    ) -> Alert:
        return Alert(
            id=self.id_generator.next_id(),
            tourist_id=tourist_id,
            type=AlertType.PANIC_BUTTON,
            timestamp=self.clock.now(),
            location=coordinate,
            address=address,
            description=PANIC_DESCRIPTION,
            severity=Severity.CRITICAL,
            sent_to=list(PANIC_RECIPIENTS),
            status=AlertStatus.PENDING,
        )

    def from_violation(
        self,
        tourist_id: str,
        coordinate: Coordinate,
        address: Optional[str],
        verdict: ViolationVerdict,
    ) -> Alert:
        """
        Build a geofence-breach alert.

        Raises
        ------
        ValueError
            If ``verdict`` is not a violation.
        """
        if not verdict.violated or verdict.severity is None:
            raise ValueError("Cannot build a geofence alert from a safe verdict")

        return Alert(
            id=self.id_generator.next_id(),
            tourist_id=tourist_id,
            type=AlertType.GEOFENCE_BREACH,
            timestamp=self.clock.now(),
            location=coordinate,
            address=address,
            description=_truncate(
                f"Tourist entered {verdict.zone_type} zone: {verdict.zone_name}"
            ),
            severity=verdict.severity,
            sent_to=list(GEOFENCE_RECIPIENTS),
            status=AlertStatus.PENDING,
            metadata={"violation": verdict.to_dict()},
        )
