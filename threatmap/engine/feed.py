"""
FeedRunner — drives the snapshot fetch and the push channel into a ThreatStore.

Both sources deliver through synchronous store calls, so neither blocks the
other; suspension happens only while awaiting the network. Transport
failures are absorbed here: the previous working set stays as it was and
nothing is surfaced to the operator.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from threatmap.engine.fusion import ThreatStore
from threatmap.integrations.backend import BackendClient, BackendUnavailable
from threatmap.integrations.stream import PushChannel

logger = logging.getLogger(__name__)


class FeedRunner:
    def __init__(
        self,
        store: ThreatStore,
        backend: BackendClient,
        channel: Optional[PushChannel] = None,
        refresh_interval: float = 0.0,
    ) -> None:
        self.store = store
        self.backend = backend
        self.channel = channel
        self.refresh_interval = refresh_interval
        self._tasks: list[asyncio.Task[Any]] = []

        self.stats = {
            "snapshots_loaded": 0,
            "snapshot_failures": 0,
            "events_pushed": 0,
        }

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def handle_pushed(self, record: dict[str, Any]) -> None:
        """Push-channel callback: one record into the store."""
        self.stats["events_pushed"] += 1
        self.store.ingest_one(record)

    async def refresh(self) -> Optional[int]:
        """Fetch a snapshot and load it. Returns events kept, or None on failure."""
        try:
            records = await self.backend.fetch_snapshot()
        except BackendUnavailable as e:
            self.stats["snapshot_failures"] += 1
            logger.warning("feed.snapshot_failed", extra={"error": str(e)})
            return None

        kept = self.store.load_snapshot(records)
        self.stats["snapshots_loaded"] += 1
        return kept

    async def _refresh_loop(self) -> None:
        await self.refresh()
        if self.refresh_interval <= 0:
            return
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh()

    def start(self) -> None:
        """Schedule the initial snapshot, the periodic refresh and the push channel."""
        if self.running:
            return
        self._tasks = [asyncio.create_task(self._refresh_loop(), name="threatmap-snapshot")]
        if self.channel is not None:
            self.channel.reset()
            self._tasks.append(asyncio.create_task(self.channel.run(), name="threatmap-stream"))
        logger.info(
            "feed.started",
            extra={"stream": self.channel is not None, "refresh_interval": self.refresh_interval},
        )

    async def stop(self) -> None:
        """Tear down both sources. Safe to call more than once."""
        if self.channel is not None:
            self.channel.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("feed.stopped", extra=dict(self.stats))
