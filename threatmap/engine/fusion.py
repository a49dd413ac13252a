"""
ThreatStore — the bounded, ordered, de-duplicated working set of threats.

Two sources feed it:
  - load_snapshot()  full fetch; replaces the working set
  - ingest_one()     a single pushed event; inserted at the front

Merge rules (hold for any interleaving of the two):
  - ids are unique; a known id is updated in place, keeping its position
  - the latest delivery wins for every field except status
  - status never regresses: Mitigated stays Mitigated, including for ids
    remembered from earlier mitigations after they were evicted
  - the working set never exceeds capacity; the oldest arrivals drop first

Readers get an immutable tuple of frozen ThreatEvents. Mutations swap in a
new tuple under a lock, so reads never block and never see a partial update.

Malformed records are dropped silently and never touch existing state.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError

from threatmap.models.threat import ThreatEvent, ThreatStatus

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50
DEFAULT_FRESHNESS_WINDOW = timedelta(seconds=10)
DEFAULT_MITIGATED_MEMORY = 1000

RawEvent = Union[ThreatEvent, Mapping[str, Any]]


def is_fresh(
    event: ThreatEvent,
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_FRESHNESS_WINDOW,
) -> bool:
    """True while less than *window* has passed since the event's timestamp.

    Computed on demand from the clock, so freshness decays without anyone
    having to clear a flag.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - event.timestamp < window


def _coerce(raw: RawEvent) -> Optional[ThreatEvent]:
    """Validate a raw record. Returns None (and logs at debug) if malformed."""
    if isinstance(raw, ThreatEvent):
        return raw
    if not isinstance(raw, Mapping):
        logger.debug("fusion.dropped_malformed", extra={"reason": f"not a mapping: {type(raw).__name__}"})
        return None
    try:
        return ThreatEvent.model_validate(raw)
    except ValidationError as e:
        logger.debug(
            "fusion.dropped_malformed",
            extra={"threat_id": raw.get("id"), "errors": e.error_count()},
        )
        return None


class ThreatStore:
    """Canonical working set. One instance per running monitor."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        mitigated_memory: int = DEFAULT_MITIGATED_MEMORY,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.freshness_window = freshness_window
        self._mitigated_memory = mitigated_memory

        self._lock = threading.Lock()
        self._events: tuple[ThreatEvent, ...] = ()
        # ids known to be mitigated locally, oldest first; outlives eviction
        self._mitigated: OrderedDict[str, None] = OrderedDict()

    # ------------------------------------------------------------------
    # Reads: lock-free against the current immutable tuple
    # ------------------------------------------------------------------

    def current_view(self) -> tuple[ThreatEvent, ...]:
        """The working set, newest arrival first."""
        return self._events

    def get(self, threat_id: str) -> Optional[ThreatEvent]:
        for event in self._events:
            if event.id == threat_id:
                return event
        return None

    def is_fresh(self, event: ThreatEvent, now: Optional[datetime] = None) -> bool:
        return is_fresh(event, now, self.freshness_window)

    def is_mitigated(self, threat_id: str) -> bool:
        return threat_id in self._mitigated

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, threat_id: object) -> bool:
        return any(event.id == threat_id for event in self._events)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def load_snapshot(self, records: Iterable[RawEvent]) -> int:
        """Replace the working set with the first *capacity* valid records.

        Source order is preserved. Duplicate ids within the snapshot keep
        their first occurrence. Returns the number of events kept.
        """
        incoming: list[ThreatEvent] = []
        seen: set[str] = set()
        dropped = 0

        for raw in records:
            if len(incoming) >= self.capacity:
                break
            event = _coerce(raw)
            if event is None:
                dropped += 1
                continue
            if event.id in seen:
                continue
            seen.add(event.id)
            incoming.append(event)

        with self._lock:
            previous = {event.id: event for event in self._events}
            merged = tuple(self._merge(previous.get(e.id), e) for e in incoming)
            self._events = merged

        logger.info(
            "fusion.snapshot_loaded",
            extra={"kept": len(merged), "dropped": dropped, "capacity": self.capacity},
        )
        return len(merged)

    def ingest_one(self, raw: RawEvent) -> Optional[ThreatEvent]:
        """Apply one pushed event. Returns the stored event, or None if dropped."""
        event = _coerce(raw)
        if event is None:
            return None

        with self._lock:
            events = list(self._events)
            for index, existing in enumerate(events):
                if existing.id == event.id:
                    stored = self._merge(existing, event)
                    events[index] = stored
                    self._events = tuple(events)
                    logger.debug("fusion.updated", extra={"threat_id": event.id, "position": index})
                    return stored

            stored = self._merge(None, event)
            events.insert(0, stored)
            evicted = events[self.capacity:]
            self._events = tuple(events[: self.capacity])

        logger.debug("fusion.inserted", extra={"threat_id": stored.id, "evicted": len(evicted)})
        return stored

    def mark_mitigated(self, threat_id: str) -> Optional[ThreatEvent]:
        """Advance *threat_id* to Mitigated. Used by the mitigation coordinator.

        The id is remembered even when it isn't in the working set, so a
        later delivery of it arrives already mitigated. Returns the updated
        event, or None if the id isn't currently held.
        """
        with self._lock:
            self._remember_mitigated(threat_id)
            events = list(self._events)
            for index, existing in enumerate(events):
                if existing.id == threat_id:
                    if existing.is_mitigated:
                        return existing
                    updated = existing.model_copy(update={"status": ThreatStatus.MITIGATED})
                    events[index] = updated
                    self._events = tuple(events)
                    return updated
        return None

    def clear(self) -> None:
        """Drop the working set and mitigation memory (shutdown/disposal)."""
        with self._lock:
            self._events = ()
            self._mitigated.clear()

    # ------------------------------------------------------------------
    # Internals: callers hold self._lock
    # ------------------------------------------------------------------

    def _merge(self, existing: Optional[ThreatEvent], incoming: ThreatEvent) -> ThreatEvent:
        status = incoming.status
        if existing is not None:
            status = status.advanced(existing.status)
        if incoming.id in self._mitigated:
            status = ThreatStatus.MITIGATED

        if status is ThreatStatus.MITIGATED:
            self._remember_mitigated(incoming.id)
        if status is incoming.status:
            return incoming
        return incoming.model_copy(update={"status": status})

    def _remember_mitigated(self, threat_id: str) -> None:
        if self._mitigated_memory <= 0:
            return
        self._mitigated[threat_id] = None
        self._mitigated.move_to_end(threat_id)
        while len(self._mitigated) > self._mitigated_memory:
            self._mitigated.popitem(last=False)
