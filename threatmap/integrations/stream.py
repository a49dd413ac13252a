"""
Push channel — long-lived WebSocket delivering one threat record per message.

The listener reconnects forever with capped exponential backoff until it is
stopped or its task is cancelled. Connection failures and unparseable
messages are logged and skipped; the caller's state is never touched on
failure.

_open_connection() is the patchable seam for tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

RecordHandler = Callable[[dict[str, Any]], Any]


def _open_connection(url: str, headers: Optional[dict[str, str]] = None) -> Any:
    """Return an async context manager yielding a connected WebSocket."""
    return websockets.connect(url, additional_headers=headers)


class PushChannel:
    def __init__(
        self,
        url: str,
        on_record: RecordHandler,
        reconnect_delay: float = 2.0,
        max_reconnect_delay: float = 60.0,
        api_token: Optional[str] = None,
    ) -> None:
        self.url = url
        self.on_record = on_record
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._headers = {"Authorization": f"Bearer {api_token}"} if api_token else None
        self._stopping = asyncio.Event()

        self.connected = False
        self.stats = {
            "connections": 0,
            "messages": 0,
            "malformed": 0,
            "failures": 0,
        }

    def stop(self) -> None:
        self._stopping.set()

    def reset(self) -> None:
        """Clear a previous stop() so run() can listen again."""
        self._stopping.clear()

    async def run(self) -> None:
        """Listen until stop() is called or the task is cancelled."""
        delay = self.reconnect_delay
        while not self._stopping.is_set():
            try:
                async with _open_connection(self.url, self._headers) as ws:
                    self.connected = True
                    self.stats["connections"] += 1
                    delay = self.reconnect_delay
                    logger.info("stream.connected", extra={"url": self.url})
                    async for message in ws:
                        self._dispatch(message)
                        if self._stopping.is_set():
                            break
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                self.stats["failures"] += 1
                logger.warning(
                    "stream.connection_failed",
                    extra={"url": self.url, "error": str(e), "retry_in": delay},
                )
            finally:
                self.connected = False

            if self._stopping.is_set():
                break
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, self.max_reconnect_delay)

        logger.info("stream.stopped", extra={"url": self.url})

    def _dispatch(self, message: Any) -> None:
        self.stats["messages"] += 1
        try:
            record = json.loads(message)
        except (TypeError, ValueError):
            self.stats["malformed"] += 1
            logger.debug("stream.malformed_message", extra={"preview": str(message)[:100]})
            return

        if not isinstance(record, dict):
            self.stats["malformed"] += 1
            logger.debug("stream.malformed_message", extra={"preview": str(message)[:100]})
            return
        self.on_record(record)
