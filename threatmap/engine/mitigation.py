"""
MitigationCoordinator — operator "mitigate" command → reconciled status.

Per-threat state machine:

    Detected --request--> Pending --confirmed------------> Mitigated
                                  --"Threat not found"---> Mitigated
                                  --backend unreachable--> Mitigated (optimistic)
                                  --any other rejection--> Detected (+ message)

Pending is bookkeeping only. ThreatEvent.status stays Detected until the
call resolves, so a rejected request never shows Mitigated and then
flips back. Adapters that want to show "in flight" ask is_pending().

On transport failure the operator's view advances even though the backend
never confirmed, and nothing retries. Backend and client can disagree
permanently after that.

Overlapping calls for the same id are allowed and all converge on
Mitigated unless every one of them is rejected. In-flight calls are never
cancelled; they update the store whenever they resolve.

Entry point: async def mitigate(threat_id) -> MitigationResult
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING

from threatmap.engine.fusion import ThreatStore
from threatmap.integrations.backend import BackendUnavailable
from threatmap.models.mitigation import (
    MitigationOutcome,
    MitigationPhase,
    MitigationResult,
)
from threatmap.models.threat import ThreatStatus

if TYPE_CHECKING:
    from threatmap.integrations.backend import BackendClient

logger = logging.getLogger(__name__)

_UNKNOWN_ERROR = "Unknown error"


class MitigationCoordinator:
    def __init__(self, store: ThreatStore, backend: BackendClient) -> None:
        self.store = store
        self.backend = backend
        self._in_flight: Counter[str] = Counter()

    def phase(self, threat_id: str) -> MitigationPhase:
        if self.store.is_mitigated(threat_id):
            return MitigationPhase.MITIGATED
        event = self.store.get(threat_id)
        if event is not None and event.is_mitigated:
            return MitigationPhase.MITIGATED
        if self._in_flight[threat_id] > 0:
            return MitigationPhase.PENDING
        return MitigationPhase.DETECTED

    def is_pending(self, threat_id: str) -> bool:
        return self.phase(threat_id) is MitigationPhase.PENDING

    def pending_ids(self) -> set[str]:
        return {tid for tid, count in self._in_flight.items() if count > 0}

    async def mitigate(self, threat_id: str) -> MitigationResult:
        """Request mitigation of *threat_id* and reconcile the local status.

        Never raises for backend behaviour: rejections come back as a
        REJECTED result carrying the backend's message for display.
        """
        self._in_flight[threat_id] += 1
        logger.info("mitigation.requested", extra={"threat_id": threat_id})

        try:
            try:
                response = await self.backend.mitigate(threat_id)
            except BackendUnavailable as e:
                logger.warning(
                    "mitigation.backend_unavailable",
                    extra={"threat_id": threat_id, "error": str(e)},
                )
                return self._advance(threat_id, MitigationOutcome.OPTIMISTIC)

            if response.ok:
                return self._advance(threat_id, MitigationOutcome.CONFIRMED)

            if response.is_not_found:
                logger.warning("mitigation.expired_upstream", extra={"threat_id": threat_id})
                return self._advance(threat_id, MitigationOutcome.ALREADY_GONE)

            message = response.message or _UNKNOWN_ERROR
            logger.error(
                "mitigation.rejected",
                extra={"threat_id": threat_id, "backend_message": message},
            )
            event = self.store.get(threat_id)
            status = event.status if event is not None else ThreatStatus.DETECTED
            if self.store.is_mitigated(threat_id):
                status = ThreatStatus.MITIGATED
            return MitigationResult(
                threat_id=threat_id,
                outcome=MitigationOutcome.REJECTED,
                status=status,
                error=message,
            )
        finally:
            self._in_flight[threat_id] -= 1
            if self._in_flight[threat_id] <= 0:
                del self._in_flight[threat_id]

    def _advance(self, threat_id: str, outcome: MitigationOutcome) -> MitigationResult:
        self.store.mark_mitigated(threat_id)
        logger.info(
            "mitigation.complete",
            extra={"threat_id": threat_id, "outcome": outcome.value},
        )
        return MitigationResult(
            threat_id=threat_id,
            outcome=outcome,
            status=ThreatStatus.MITIGATED,
        )
