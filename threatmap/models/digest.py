"""
Digest models — read-only aggregates over the current working set.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from threatmap.models.threat import ThreatEvent


class DashboardDigest(BaseModel):
    total: int = 0
    active: int = 0          # not yet mitigated
    mitigated: int = 0
    critical: int = 0
    fresh: int = 0           # inside the freshness window at generated_at
    renderable: int = 0      # drawn on the maps
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_attack_type: dict[str, int] = Field(default_factory=dict)
    by_location: dict[str, int] = Field(default_factory=dict)
    recent: list[ThreatEvent] = Field(default_factory=list)
    mitigation_log: list[ThreatEvent] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
