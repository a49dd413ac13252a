"""Tests for threatmap/integrations/stream.py — _open_connection is patched out."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from threatmap.integrations.stream import PushChannel

URL = "ws://backend.test/ws/threats"
OPEN_CONNECTION = "threatmap.integrations.stream._open_connection"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeConnection:
    """Async context manager yielding itself; iterates over *messages*."""

    def __init__(self, messages=(), fail: Exception = None, hang: bool = False):
        self.messages = list(messages)
        self.fail = fail
        self.hang = hang

    async def __aenter__(self):
        if self.fail is not None:
            raise self.fail
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hang:
            await asyncio.Event().wait()


def patch_connections(*connections):
    """Patch _open_connection to hand out *connections* in order, then hang.

    Returns the patcher and the list of (url, headers) it was opened with.
    """
    opened = []
    pending = list(connections)

    def fake_open(url, headers=None):
        opened.append((url, headers))
        if pending:
            return pending.pop(0)
        return FakeConnection(hang=True)

    return patch(OPEN_CONNECTION, side_effect=fake_open), opened


def record(threat_id: str) -> str:
    return json.dumps({"id": threat_id, "type": "DDoS", "severity": "High"})


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class TestDispatch:
    @pytest.mark.asyncio
    async def test_delivers_each_record_in_order(self):
        patcher, _ = patch_connections(FakeConnection([record("A"), record("B")]))
        received = []

        def on_record(data):
            received.append(data["id"])
            if len(received) == 2:
                channel.stop()

        channel = PushChannel(URL, on_record)
        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert received == ["A", "B"]
        assert channel.stats["messages"] == 2
        assert channel.stats["connections"] == 1
        assert not channel.connected

    @pytest.mark.asyncio
    async def test_malformed_messages_are_skipped(self):
        patcher, _ = patch_connections(
            FakeConnection(["not json", "[1, 2]", "42", record("A")])
        )
        received = []

        def on_record(data):
            received.append(data)
            channel.stop()

        channel = PushChannel(URL, on_record)
        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert len(received) == 1
        assert channel.stats["messages"] == 4
        assert channel.stats["malformed"] == 3

    @pytest.mark.asyncio
    async def test_connected_while_listening(self):
        patcher, _ = patch_connections(FakeConnection([record("A")]))
        seen = []

        def on_record(data):
            seen.append(channel.connected)
            channel.stop()

        channel = PushChannel(URL, on_record)
        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert seen == [True]
        assert not channel.connected

    @pytest.mark.asyncio
    async def test_bearer_header_when_token_set(self):
        patcher, opened = patch_connections(FakeConnection([record("A")]))
        channel = PushChannel(URL, lambda data: channel.stop(), api_token="tok")

        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert opened == [(URL, {"Authorization": "Bearer tok"})]

    @pytest.mark.asyncio
    async def test_no_header_without_token(self):
        patcher, opened = patch_connections(FakeConnection([record("A")]))
        channel = PushChannel(URL, lambda data: channel.stop())

        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert opened == [(URL, None)]


# ---------------------------------------------------------------------------
# Reconnection
# ---------------------------------------------------------------------------

class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnects_after_connection_failure(self):
        patcher, opened = patch_connections(
            FakeConnection(fail=OSError("connection refused")),
            FakeConnection([record("A")]),
        )
        received = []

        def on_record(data):
            received.append(data["id"])
            channel.stop()

        channel = PushChannel(URL, on_record, reconnect_delay=0.001)
        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert received == ["A"]
        assert len(opened) == 2
        assert channel.stats["failures"] == 1
        assert channel.stats["connections"] == 1

    @pytest.mark.asyncio
    async def test_reconnects_after_stream_ends(self):
        patcher, opened = patch_connections(
            FakeConnection([]),
            FakeConnection([record("B")]),
        )
        channel = PushChannel(URL, lambda data: channel.stop(), reconnect_delay=0.001)

        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert len(opened) == 2
        assert channel.stats["connections"] == 2

    @pytest.mark.asyncio
    async def test_keeps_retrying_until_stopped(self):
        opened = []

        def always_fail(url, headers=None):
            opened.append(url)
            return FakeConnection(fail=OSError("down"))

        channel = PushChannel(URL, lambda data: None, reconnect_delay=0.001, max_reconnect_delay=0.004)

        with patch(OPEN_CONNECTION, side_effect=always_fail):
            task = asyncio.create_task(channel.run())
            await asyncio.sleep(0.05)
            channel.stop()
            await asyncio.wait_for(task, timeout=1)

        assert len(opened) >= 3
        assert channel.stats["failures"] == len(opened)
        assert not channel.connected

    @pytest.mark.asyncio
    async def test_stop_interrupts_backoff_wait(self):
        patcher, _ = patch_connections(FakeConnection(fail=OSError("down")))
        channel = PushChannel(URL, lambda data: None, reconnect_delay=30)

        with patcher:
            task = asyncio.create_task(channel.run())
            await asyncio.sleep(0.01)
            channel.stop()
            await asyncio.wait_for(task, timeout=1)

        assert channel.stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_cancel_while_listening(self):
        patcher, _ = patch_connections(FakeConnection(hang=True))
        channel = PushChannel(URL, lambda data: None)

        with patcher:
            task = asyncio.create_task(channel.run())
            await asyncio.sleep(0.01)
            assert channel.connected

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert not channel.connected


# ---------------------------------------------------------------------------
# Stop / reset
# ---------------------------------------------------------------------------

class TestStopReset:
    @pytest.mark.asyncio
    async def test_run_after_stop_returns_immediately(self):
        patcher, opened = patch_connections(FakeConnection([record("A")]))
        channel = PushChannel(URL, lambda data: None)
        channel.stop()

        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)

        assert opened == []

    @pytest.mark.asyncio
    async def test_reset_lets_a_stopped_channel_listen_again(self):
        patcher, opened = patch_connections(
            FakeConnection([record("A")]),
            FakeConnection([record("B")]),
        )
        received = []

        def on_record(data):
            received.append(data["id"])
            channel.stop()

        channel = PushChannel(URL, on_record)
        with patcher:
            await asyncio.wait_for(channel.run(), timeout=1)
            channel.reset()
            await asyncio.wait_for(channel.run(), timeout=1)

        assert received == ["A", "B"]
        assert len(opened) == 2
        assert channel.stats["connections"] == 2
