"""Tests for the in-process control channel."""

import pytest

from streamhub.domain.exceptions import ConnectionError
from streamhub.sessions.channel import ChannelHub, ControlChannel, InProcessChannel


class TestChannelHub:
    """Topic fan-out."""

    @pytest.mark.asyncio
    async def test_publish_counts_deliveries(self):
        hub = ChannelHub()
        received = []

        async def async_handler(payload):
            received.append(("async", payload))

        def broken(payload):
            raise RuntimeError("handler bug")

        hub.subscribe("t", received.append)
        hub.subscribe("t", async_handler)
        hub.subscribe("t", broken)

        assert await hub.publish("t", {"a": 1}) == 2
        assert received == [{"a": 1}, ("async", {"a": 1})]
        assert await hub.publish("other", {}) == 0


class TestInProcessChannel:
    """Channel lifecycle."""

    def test_satisfies_protocol(self):
        assert isinstance(InProcessChannel("rtmp://h/live/s1"), ControlChannel)

    @pytest.mark.asyncio
    async def test_emit_requires_open(self, hub):
        channel = InProcessChannel("rtmp://h/live/s1", hub)

        with pytest.raises(ConnectionError):
            await channel.emit("stream:publish:stop", {})

        await channel.open()
        assert channel.is_open
        await channel.emit("stream:publish:stop", {})

    @pytest.mark.asyncio
    async def test_close_drops_subscriptions(self, hub):
        channel = InProcessChannel("rtmp://h/live/s1", hub)
        await channel.open()
        channel.on("stream:subscribe:stats", lambda payload: None)
        assert hub.subscriber_count("stream:subscribe:stats") == 1

        await channel.close()

        assert hub.subscriber_count("stream:subscribe:stats") == 0
        assert not channel.is_open
