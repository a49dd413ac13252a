"""
Threat models — the record every feed source delivers.

ThreatEvent is the canonical internal format. Snapshot and push-channel
payloads are validated into it at the store boundary; anything that fails
validation is dropped there, never here.

Severity and AttackType are closed enumerations. Wire labels that don't
match fall back to an explicit default instead of failing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, raw: Any) -> Optional[Severity]:
        """Case-insensitive lookup. Returns None for anything unrecognised."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return None
        return _SEVERITY_BY_LABEL.get(raw.strip().lower())


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

_SEVERITY_BY_LABEL: dict[str, Severity] = {s.value.lower(): s for s in Severity}


class ThreatStatus(str, Enum):
    DETECTED = "Detected"
    MITIGATED = "Mitigated"

    def advanced(self, other: ThreatStatus) -> ThreatStatus:
        """Return whichever of the two statuses is further along."""
        if ThreatStatus.MITIGATED in (self, other):
            return ThreatStatus.MITIGATED
        return ThreatStatus.DETECTED


class AttackType(str, Enum):
    DDOS = "DDoS"
    BRUTE_FORCE = "Brute Force"
    RANSOMWARE = "Ransomware"
    PHISHING = "Phishing"
    SQL_INJECTION = "SQL Injection"
    ZERO_DAY = "Zero-Day Exploit"
    SUPPLY_CHAIN = "Supply Chain Attack"
    AI_POWERED = "AI-Powered Attack"
    CRYPTOJACKING = "Cryptojacking"
    API_ABUSE = "API Abuse"
    IOT_BOTNET = "IoT Botnet"
    CREDENTIAL_STUFFING = "Credential Stuffing"
    PORT_SCAN = "Port Scan"
    UNAUTHORIZED_ACCESS = "Unauthorized Access"
    OTHER = "Other"

    @classmethod
    def from_label(cls, raw: Any) -> AttackType:
        """Resolve a free-form category label. Unknown labels map to OTHER."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return cls.OTHER
        return _ATTACK_TYPE_BY_LABEL.get(raw.strip().lower(), cls.OTHER)


_ATTACK_TYPE_BY_LABEL: dict[str, AttackType] = {a.value.lower(): a for a in AttackType}


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    # the feed calls this "city"
    label: str = Field(default="", validation_alias=AliasChoices("label", "city"))

    @field_validator("label", mode="before")
    @classmethod
    def _blank_label(cls, value: Any) -> Any:
        return "" if value is None else value


class ThreatEvent(BaseModel):
    """A single detected security incident, as held in the working set."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    timestamp: datetime
    type: str
    severity: Severity
    status: ThreatStatus = ThreatStatus.DETECTED
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    source_coords: Optional[GeoPoint] = None
    target_coords: Optional[GeoPoint] = None

    source: Optional[str] = None        # attacking host / address
    target: Optional[str] = None        # targeted host / service
    location: Optional[str] = None      # origin region label, e.g. "Russia"
    attribution: Optional[str] = None   # attributed actor, if any

    analysis: Optional[Any] = None                             # opaque enrichment
    mitigation_suggestions: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @field_validator("mitigation_suggestions", mode="before")
    @classmethod
    def _listify_suggestions(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Any:
        if value is None:
            return value  # let the required-field check reject it
        severity = Severity.parse(value)
        if severity is None:
            logger.warning("threat_model.unknown_severity", extra={"severity": str(value)})
            return Severity.LOW
        return severity

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "mitigated":
            return ThreatStatus.MITIGATED
        return ThreatStatus.DETECTED

    @property
    def attack_type(self) -> AttackType:
        return AttackType.from_label(self.type)

    @property
    def has_route(self) -> bool:
        """True when both endpoints are attributed and the event can be drawn."""
        return self.source_coords is not None and self.target_coords is not None

    @property
    def is_mitigated(self) -> bool:
        return self.status is ThreatStatus.MITIGATED
