"""
Dashboard digest — counts, filters and short lists over a working-set view.

Pure functions of (events, now). They never touch the store; callers pass
ThreatStore.current_view().
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

from threatmap.engine.fusion import DEFAULT_FRESHNESS_WINDOW, is_fresh
from threatmap.engine.geo import renderable
from threatmap.models.digest import DashboardDigest
from threatmap.models.threat import Severity, ThreatEvent

ALL_TYPES = "All"
UNKNOWN_LOCATION = "Unknown"
RECENT_LIMIT = 5
MITIGATION_LOG_LIMIT = 10


def filter_by_type(
    events: Sequence[ThreatEvent], attack_type: Optional[str]
) -> list[ThreatEvent]:
    """Keep events whose category label matches *attack_type* (case-insensitive).

    None, "" and "All" keep everything.
    """
    if not attack_type or attack_type.strip().lower() == ALL_TYPES.lower():
        return list(events)
    wanted = attack_type.strip().lower()
    return [e for e in events if e.type.strip().lower() == wanted]


def mitigation_log(
    events: Sequence[ThreatEvent], limit: int = MITIGATION_LOG_LIMIT
) -> list[ThreatEvent]:
    return [e for e in events if e.is_mitigated][:limit]


def build_digest(
    events: Sequence[ThreatEvent],
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> DashboardDigest:
    if now is None:
        now = datetime.now(timezone.utc)

    mitigated = sum(1 for e in events if e.is_mitigated)
    by_severity = Counter(e.severity.value for e in events)
    by_attack_type = Counter(e.type for e in events)
    by_location = Counter(e.location or UNKNOWN_LOCATION for e in events)

    return DashboardDigest(
        total=len(events),
        active=len(events) - mitigated,
        mitigated=mitigated,
        critical=by_severity.get(Severity.CRITICAL.value, 0),
        fresh=sum(1 for e in events if is_fresh(e, now, window)),
        renderable=len(renderable(events)),
        by_severity={s.value: by_severity.get(s.value, 0) for s in Severity},
        by_attack_type=dict(by_attack_type.most_common()),
        by_location=dict(by_location.most_common()),
        recent=list(events[:RECENT_LIMIT]),
        mitigation_log=mitigation_log(events),
        generated_at=now,
    )
