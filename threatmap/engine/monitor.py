"""
ThreatMonitor — constructs and owns one running instance of the core.

    store        ThreatStore            canonical working set
    backend      BackendClient          snapshot + mitigation HTTP calls
    coordinator  MitigationCoordinator  operator commands
    feed         FeedRunner             snapshot refresh + push channel

Lifecycle is explicit: build with from_settings(), await start() at
startup, await stop() at shutdown. Nothing here is a module-level singleton.
A stopped monitor has released its HTTP client and cannot be started
again; build a new one instead.

stop() tears down the feeds but leaves in-flight mitigation calls alone;
they keep the HTTP client until the last one resolves.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from threatmap.config import Settings
from threatmap.engine.feed import FeedRunner
from threatmap.engine.fusion import ThreatStore
from threatmap.engine.mitigation import MitigationCoordinator
from threatmap.integrations.backend import BackendClient
from threatmap.integrations.stream import PushChannel
from threatmap.models.mitigation import MitigationResult

logger = logging.getLogger(__name__)


class ThreatMonitor:
    def __init__(
        self,
        store: ThreatStore,
        backend: BackendClient,
        feed: FeedRunner,
        globe_radius: float = 2.0,
        arc_segments: int = 50,
    ) -> None:
        self.store = store
        self.backend = backend
        self.feed = feed
        self.coordinator = MitigationCoordinator(store, backend)
        self.globe_radius = globe_radius
        self.arc_segments = arc_segments

        self.started_at: Optional[datetime] = None
        self._mitigations: set[asyncio.Task[Any]] = set()
        self._closing = False
        self._close_task: Optional[asyncio.Future[Any]] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        with_stream: bool = True,
    ) -> ThreatMonitor:
        """Build every component from *settings*.

        Raises:
            RuntimeError: If settings required by a component are missing.
        """
        if settings.require_auth:
            settings.validate_for("authenticated")

        store = ThreatStore(
            capacity=settings.feed_capacity,
            freshness_window=timedelta(seconds=settings.freshness_window_seconds),
            mitigated_memory=settings.mitigated_memory,
        )
        backend = BackendClient.from_settings(settings, transport=transport)

        feed = FeedRunner(store, backend, refresh_interval=settings.snapshot_refresh_seconds)
        if with_stream:
            feed.channel = PushChannel(
                settings.resolved_stream_url(),
                feed.handle_pushed,
                reconnect_delay=settings.stream_reconnect_seconds,
                max_reconnect_delay=settings.stream_max_reconnect_seconds,
                api_token=settings.backend_api_token,
            )

        return cls(
            store,
            backend,
            feed,
            globe_radius=settings.globe_radius,
            arc_segments=settings.arc_segments,
        )

    @property
    def running(self) -> bool:
        return self.started_at is not None

    async def start(self) -> None:
        if self._closing:
            raise RuntimeError("ThreatMonitor cannot be restarted after stop(); build a new one")
        if self.running:
            return
        self.started_at = datetime.now(timezone.utc)
        self.feed.start()
        logger.info("monitor.started", extra={"capacity": self.store.capacity})

    async def stop(self) -> None:
        """Stop the feeds. Outstanding mitigations finish on their own."""
        await self.feed.stop()
        self.started_at = None
        self._closing = True
        if not self._mitigations:
            await self.backend.aclose()
        logger.info("monitor.stopped", extra={"in_flight_mitigations": len(self._mitigations)})

    async def mitigate(self, threat_id: str) -> MitigationResult:
        """Run a mitigation to completion, shielded from the caller's cancellation."""
        task = asyncio.ensure_future(self.coordinator.mitigate(threat_id))
        self._mitigations.add(task)
        task.add_done_callback(self._mitigation_done)
        return await asyncio.shield(task)

    def _mitigation_done(self, task: asyncio.Task[Any]) -> None:
        self._mitigations.discard(task)
        if self._closing and not self._mitigations:
            self._close_task = asyncio.ensure_future(self.backend.aclose())
