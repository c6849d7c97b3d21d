"""Tests for the publisher session."""

import os
import signal
from pathlib import Path

import pytest

from streamhub.domain.exceptions import (
    ConfigurationError,
    ConnectionError,
    ProtocolNotSupportedError,
    PublisherStateError,
)
from streamhub.domain.models import (
    MediaBlob,
    PublisherOptions,
    PublisherStatus,
    SubscriberOptions,
    VideoQuality,
)
from streamhub.sessions.events import EventKind
from streamhub.sessions.publisher import Publisher, blob_suffix

RTMP_URL = "rtmp://localhost:1935/live/s1"
HLS_URL = "http://localhost/live/s1.m3u8"


def input_of(command):
    return command[command.index("-i") + 1]


@pytest.fixture
def make_publisher(session_kwargs):
    def _make(url=RTMP_URL, **options):
        return Publisher("s1", PublisherOptions(url=url, **options), **session_kwargs)

    return _make


@pytest.fixture
def record_events():
    def _record(session):
        seen = []
        for kind in EventKind:
            session.on(kind, lambda event: seen.append(event.kind))
        return seen

    return _record


class TestConnect:
    """Connecting the control channel."""

    @pytest.mark.asyncio
    async def test_connect_emits_in_order(self, make_publisher, record_events):
        publisher = make_publisher()
        seen = record_events(publisher)

        await publisher.connect()

        assert publisher.status == PublisherStatus.CONNECTED
        assert publisher.channel.is_open
        assert seen == [EventKind.CONNECTING, EventKind.CONNECTED]

    @pytest.mark.asyncio
    async def test_connect_needs_url(self, session_kwargs):
        publisher = Publisher("s1", **session_kwargs)

        with pytest.raises(ConfigurationError):
            await publisher.connect()
        assert publisher.status == PublisherStatus.IDLE

    @pytest.mark.asyncio
    async def test_connect_merges_options(self, session_kwargs, spawner, media_file):
        publisher = Publisher("s1", **session_kwargs)
        quality = VideoQuality(width=640, height=360, bitrate=800, fps=25)

        await publisher.connect(RTMP_URL, PublisherOptions(loop=True, quality=quality))
        await publisher.publish(media_file)

        command = spawner.last_command
        assert publisher.url == RTMP_URL
        assert publisher.options.loop is True
        assert publisher.options.audio_enabled is True
        assert command[command.index("-stream_loop") + 1] == "-1"
        assert command[command.index("-b:v") + 1] == "800k"
        assert command[-1] == RTMP_URL

        await publisher.stop()

    @pytest.mark.asyncio
    async def test_connect_url_from_options(self, session_kwargs):
        publisher = Publisher("s1", **session_kwargs)

        await publisher.connect(options=PublisherOptions(url=RTMP_URL))

        assert publisher.url == RTMP_URL
        assert publisher.status == PublisherStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_rejects_subscriber_options(self, make_publisher):
        publisher = make_publisher()

        with pytest.raises(ConfigurationError):
            await publisher.connect(options=SubscriberOptions())
        assert publisher.status == PublisherStatus.IDLE

    @pytest.mark.asyncio
    async def test_connect_twice(self, make_publisher):
        publisher = make_publisher()
        await publisher.connect()

        with pytest.raises(PublisherStateError) as exc_info:
            await publisher.connect()
        assert exc_info.value.current == "connected"
        assert exc_info.value.expected == ["idle"]

    @pytest.mark.asyncio
    async def test_channel_open_failure(self, controller, record_events):
        class RefusingChannel:
            closed = False
            is_open = False

            async def open(self):
                raise ConnectionError("signaling unreachable")

            async def emit(self, event, payload):
                pass

            def on(self, event, handler):
                pass

            async def close(self):
                RefusingChannel.closed = True

        publisher = Publisher(
            "s1",
            PublisherOptions(url=RTMP_URL),
            controller=controller,
            channel_factory=lambda url: RefusingChannel(),
        )
        seen = record_events(publisher)

        with pytest.raises(ConnectionError):
            await publisher.connect()

        assert publisher.status == PublisherStatus.ERROR
        assert RefusingChannel.closed
        assert seen == [EventKind.CONNECTING, EventKind.ERROR]


class TestPublish:
    """Starting the media pipeline."""

    @pytest.mark.asyncio
    async def test_publish_requires_connection(self, make_publisher, spawner, media_file):
        publisher = make_publisher()

        with pytest.raises(PublisherStateError):
            await publisher.publish(str(media_file))

        assert spawner.commands == []
        assert publisher.status == PublisherStatus.IDLE

    @pytest.mark.asyncio
    async def test_publish_rtmp(self, make_publisher, spawner, media_file, record_events):
        registered = []
        publisher = make_publisher()
        publisher._register_process = lambda stream_id, handle: registered.append(stream_id)
        seen = record_events(publisher)
        await publisher.connect()

        await publisher.publish(media_file)

        command = spawner.last_command
        assert command[0] == "ffmpeg"
        assert input_of(command) == str(media_file)
        assert command[-1] == RTMP_URL
        assert publisher.status == PublisherStatus.PUBLISHING
        assert publisher.process is not None
        assert publisher.hls_playlist_path is None
        assert registered == ["s1"]
        assert seen[-1] == EventKind.PUBLISHING

    @pytest.mark.asyncio
    async def test_publish_hls(self, make_publisher, spawner, media_file):
        publisher = make_publisher(HLS_URL)
        await publisher.connect()

        await publisher.publish(str(media_file))

        playlist = Path(publisher.hls_playlist_path)
        assert playlist.name == "playlist.m3u8"
        assert playlist.parent.is_dir()
        assert spawner.last_command[-1] == str(playlist)
        assert publisher.process is None

        await publisher.stop()

        assert not playlist.parent.exists()
        assert spawner.processes[0].signals == [signal.SIGTERM]

    @pytest.mark.asyncio
    async def test_publish_bytes_uses_temp_file(self, make_publisher, spawner):
        publisher = make_publisher()
        await publisher.connect()

        await publisher.publish(b"\x00\x00\x00\x18ftypmp42")

        source = Path(input_of(spawner.last_command))
        assert source.suffix == ".mp4"
        assert source.read_bytes() == b"\x00\x00\x00\x18ftypmp42"

        await publisher.stop()
        assert not source.exists()

    @pytest.mark.asyncio
    async def test_publish_blob_keeps_mime_extension(self, make_publisher, spawner):
        publisher = make_publisher()
        await publisher.connect()

        await publisher.publish(MediaBlob(data=b"webm", mime_type="video/webm;codecs=vp8"))

        assert input_of(spawner.last_command).endswith(".webm")
        await publisher.stop()

    @pytest.mark.asyncio
    async def test_device_source_is_not_checked(self, make_publisher, spawner):
        publisher = make_publisher()
        await publisher.connect()

        await publisher.publish("/dev/video0")

        assert spawner.last_command[1:5] == ["-f", "v4l2", "-i", "/dev/video0"]
        await publisher.stop()

    @pytest.mark.asyncio
    async def test_missing_file(self, make_publisher, spawner, record_events, tmp_path):
        publisher = make_publisher()
        seen = record_events(publisher)
        await publisher.connect()

        with pytest.raises(ConnectionError) as exc_info:
            await publisher.publish(str(tmp_path / "nope.mp4"))

        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert publisher.status == PublisherStatus.ERROR
        assert seen[-1] == EventKind.ERROR
        assert spawner.commands == []

    @pytest.mark.asyncio
    async def test_unsupported_source_type(self, make_publisher):
        publisher = make_publisher()
        await publisher.connect()

        with pytest.raises(ConfigurationError):
            await publisher.publish(12345)

        assert publisher.status == PublisherStatus.ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["wss://localhost/webrtc/s1", "http://localhost/live/s1.mpd"])
    async def test_unsupported_protocols(self, make_publisher, spawner, media_file, url):
        publisher = make_publisher(url)
        await publisher.connect()

        with pytest.raises(ProtocolNotSupportedError):
            await publisher.publish(media_file)

        assert publisher.status == PublisherStatus.ERROR
        assert spawner.commands == []

    @pytest.mark.asyncio
    async def test_spawn_failure(self, make_publisher, spawner, media_file):
        spawner.error = FileNotFoundError("ffmpeg")
        publisher = make_publisher()
        await publisher.connect()

        with pytest.raises(ConnectionError):
            await publisher.publish(media_file)

        assert publisher.status == PublisherStatus.ERROR
        await publisher.stop()
        assert publisher.status == PublisherStatus.STOPPED


class TestStop:
    """Tear down."""

    @pytest.mark.asyncio
    async def test_stop_publishing(self, make_publisher, spawner, media_file, hub, record_events):
        stops = []
        hub.subscribe("stream:publish:stop", stops.append)
        publisher = make_publisher()
        seen = record_events(publisher)
        await publisher.connect()
        await publisher.publish(media_file)

        await publisher.stop()

        assert publisher.status == PublisherStatus.STOPPED
        assert publisher.process is None
        assert publisher.channel is None
        assert spawner.processes[0].signals == [signal.SIGTERM]
        assert stops == [{"streamId": "s1"}]
        assert seen[-1] == EventKind.DISCONNECTED
        assert publisher.events.listener_count(EventKind.DISCONNECTED) == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, make_publisher, spawner, media_file):
        publisher = make_publisher()
        await publisher.stop()
        assert publisher.status == PublisherStatus.IDLE

        await publisher.connect()
        await publisher.publish(media_file)
        await publisher.stop()
        await publisher.stop()

        assert spawner.processes[0].signals == [signal.SIGTERM]
        assert publisher.status == PublisherStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_from_connected(self, make_publisher, spawner):
        publisher = make_publisher()
        await publisher.connect()

        await publisher.stop()

        assert publisher.status == PublisherStatus.STOPPED
        assert spawner.commands == []

    @pytest.mark.asyncio
    async def test_stop_while_connecting_is_rejected(self, make_publisher):
        publisher = make_publisher()
        publisher._status = PublisherStatus.CONNECTING

        with pytest.raises(PublisherStateError):
            await publisher.stop()

        assert publisher.status == PublisherStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_stubborn_process_is_killed(self, make_publisher, spawner, media_file):
        spawner.exit_on_term = False
        publisher = make_publisher()
        await publisher.connect()
        await publisher.publish(media_file)

        await publisher.stop()

        assert spawner.processes[0].signals == [signal.SIGTERM, signal.SIGKILL]
        assert publisher.status == PublisherStatus.STOPPED


class TestLiveChanges:
    """Quality and track toggles."""

    @pytest.mark.asyncio
    async def test_quality_change_while_publishing(self, make_publisher, spawner, media_file, hub):
        messages = []
        hub.subscribe("stream:publish:quality", messages.append)
        changes = []
        publisher = make_publisher()
        publisher.on(EventKind.QUALITY_CHANGED, changes.append)
        await publisher.connect()
        await publisher.publish(media_file)
        quality = VideoQuality(width=640, height=360, bitrate=800, fps=25)

        await publisher.set_video_quality(quality)

        assert publisher.options.quality == quality
        assert messages == [{"streamId": "s1", "quality": quality.to_dict()}]
        assert changes[0].quality == quality
        assert len(spawner.commands) == 1
        stats = publisher.get_statistics()
        assert stats.bitrate == 800
        assert stats.resolution.width == 640

    @pytest.mark.asyncio
    async def test_toggles_before_publishing_are_stored(self, make_publisher, spawner, media_file, hub):
        messages = []
        hub.subscribe("stream:publish:audio", messages.append)
        publisher = make_publisher()
        await publisher.connect()

        await publisher.set_audio_enabled(False)
        await publisher.set_video_enabled(True)
        await publisher.publish(media_file)

        assert messages == []
        assert "-an" in spawner.last_command

    @pytest.mark.asyncio
    async def test_audio_toggle_while_publishing(self, make_publisher, media_file, spawner, hub):
        messages = []
        hub.subscribe("stream:publish:audio", messages.append)
        publisher = make_publisher()
        await publisher.connect()
        await publisher.publish(media_file)

        await publisher.set_audio_enabled(False)

        assert messages == [{"streamId": "s1", "enabled": False}]

    def test_idle_statistics(self, make_publisher):
        stats = make_publisher().get_statistics()
        assert stats.status == PublisherStatus.IDLE
        assert stats.bitrate == 0
        assert stats.uptime == 0


class TestBlobSuffix:
    """Extension selection."""

    def test_known_mime(self):
        assert blob_suffix(MediaBlob(b"", mime_type="video/x-matroska")) == ".mkv"

    def test_filename_fallback(self):
        assert blob_suffix(MediaBlob(b"", filename="clip.MOV")) == ".mov"

    def test_default(self):
        assert blob_suffix(MediaBlob(b"")) == ".mp4"
