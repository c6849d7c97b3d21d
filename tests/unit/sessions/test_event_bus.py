"""Tests for the session event bus."""

import pytest

from streamhub.sessions.events import Connected, Disconnected, EventBus, EventKind


class TestEventBus:
    """Listener registration and delivery."""

    @pytest.mark.asyncio
    async def test_emit_reaches_kind_listeners_only(self):
        bus = EventBus()
        connected, disconnected = [], []
        bus.on(EventKind.CONNECTED, connected.append)
        bus.on("disconnected", disconnected.append)

        await bus.emit(Connected(stream_id="s1", url="rtmp://h/live/s1"))

        assert connected == [Connected(stream_id="s1", url="rtmp://h/live/s1")]
        assert disconnected == []

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self):
        bus = EventBus()
        seen = []

        async def listener(event):
            seen.append(event.stream_id)

        bus.on(EventKind.DISCONNECTED, listener)
        await bus.emit(Disconnected(stream_id="s1"))

        assert seen == ["s1"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.on(EventKind.DISCONNECTED, broken)
        bus.on(EventKind.DISCONNECTED, seen.append)
        await bus.emit(Disconnected(stream_id="s1"))

        assert len(seen) == 1

    def test_off_and_remove_all(self):
        bus = EventBus()
        listener = bus.on(EventKind.CONNECTED, lambda e: None)
        bus.on(EventKind.ERROR, lambda e: None)

        assert bus.off(EventKind.CONNECTED, listener)
        assert not bus.off(EventKind.CONNECTED, listener)
        assert bus.listener_count("connected") == 0
        assert bus.listener_count(EventKind.ERROR) == 1

        bus.remove_all_listeners()
        assert bus.listener_count(EventKind.ERROR) == 0

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            EventBus().on("exploded", lambda e: None)
