"""
Backend client — snapshot fetch and mitigation call over HTTP.

  GET  {base}/threats          → JSON array of threat records
  POST {base}/mitigate/{id}    → {"ok": bool, "message": str}

Every transport-level problem (connection refused, timeout, non-JSON body,
unexpected shape) is raised as BackendUnavailable so callers handle one
exception type. Domain answers, including HTTP 4xx with a JSON body, come
back as data.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from threatmap.config import Settings
from threatmap.models.mitigation import MitigationResponse

logger = logging.getLogger(__name__)


class BackendUnavailable(Exception):
    """The backend could not be reached or answered with something unusable."""


class BackendClient:
    """Thin async wrapper around httpx.AsyncClient.

    Pass *transport* in tests (httpx.MockTransport) to avoid the network.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.closed = False

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> BackendClient:
        return cls(
            settings.threat_backend_url,
            timeout=settings.request_timeout_seconds,
            api_token=settings.backend_api_token,
            transport=transport,
        )

    async def aclose(self) -> None:
        self.closed = True
        await self._client.aclose()

    def _ensure_open(self, operation: str) -> None:
        if self.closed:
            raise BackendUnavailable(f"{operation} failed: client is closed")

    async def fetch_snapshot(self) -> list[dict[str, Any]]:
        """Fetch the backend's current threat list, in the backend's order.

        Raises:
            BackendUnavailable: On transport errors, non-2xx status, or a
                body that isn't a JSON array.
        """
        self._ensure_open("snapshot fetch")
        try:
            response = await self._client.get("/threats")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BackendUnavailable(f"snapshot fetch failed: {e}") from e

        if not isinstance(data, list):
            raise BackendUnavailable(
                f"snapshot fetch failed: expected a JSON array, got {type(data).__name__}"
            )
        logger.debug("backend.snapshot_fetched", extra={"records": len(data)})
        return data

    async def mitigate(self, threat_id: str) -> MitigationResponse:
        """Ask the backend to mitigate *threat_id*.

        A 2xx with no "ok" field counts as ok; a non-2xx with no "ok" field
        counts as a rejection carrying the body's message.

        Raises:
            BackendUnavailable: On transport errors or a non-JSON body.
        """
        self._ensure_open("mitigation call")
        try:
            response = await self._client.post(f"/mitigate/{quote(threat_id, safe='')}")
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BackendUnavailable(f"mitigation call failed: {e}") from e

        if not isinstance(data, dict):
            raise BackendUnavailable(
                f"mitigation call failed: expected a JSON object, got {type(data).__name__}"
            )

        data.setdefault("ok", response.is_success)
        try:
            return MitigationResponse.model_validate(data)
        except ValidationError as e:
            raise BackendUnavailable(f"mitigation call failed: unexpected body: {e}") from e
