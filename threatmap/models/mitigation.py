"""
Mitigation models — the collaborator wire shape and the coordinator's results.

Import hierarchy (no circular dependencies):
  threat.py       <- no internal imports
  geometry.py     <- threat.py
  mitigation.py   <- threat.py
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from threatmap.models.threat import ThreatStatus

# Backend's message for an id that has already left its (bounded) working set.
NOT_FOUND_MESSAGE = "Threat not found"


class MitigationResponse(BaseModel):
    """Body of POST /mitigate/{id} as returned by the backend."""

    model_config = ConfigDict(extra="ignore")

    ok: bool
    message: Optional[str] = None

    @property
    def is_not_found(self) -> bool:
        return not self.ok and self.message == NOT_FOUND_MESSAGE


class MitigationPhase(str, Enum):
    """Coordinator bookkeeping. PENDING never appears as a ThreatEvent status."""

    DETECTED = "detected"
    PENDING = "pending"
    MITIGATED = "mitigated"


class MitigationOutcome(str, Enum):
    CONFIRMED = "confirmed"          # backend accepted the request
    ALREADY_GONE = "already_gone"    # backend no longer knows the id
    OPTIMISTIC = "optimistic"        # backend unreachable; advanced locally
    REJECTED = "rejected"            # backend refused; status unchanged


class MitigationResult(BaseModel):
    threat_id: str
    outcome: MitigationOutcome
    status: ThreatStatus
    error: Optional[str] = None      # operator-facing message, REJECTED only

    @property
    def succeeded(self) -> bool:
        return self.outcome is not MitigationOutcome.REJECTED
