"""Driver for bare ffmpeg pushing to an RTMP endpoint.

There is no server to talk to: streams are local registrations, and the
"stream" only exists once a publisher's ffmpeg process reaches the RTMP
endpoint described by the config.
"""

import logging
from typing import Dict, Optional

from pydantic import Field

from streamhub.domain.exceptions import AdapterError, ErrorContext
from streamhub.domain.models import (
    CreateStreamOptions,
    RecordingOptions,
    RecordingResult,
    Stream,
    StreamProtocol,
)
from streamhub.infrastructure.adapters.base import AdapterConfig, BaseStreamAdapter
from streamhub.infrastructure.media.ffmpeg import Recording, record_stream_realtime
from streamhub.utils.ids import generate_stream_id
from streamhub.utils.protocol import validate_protocol
from streamhub.utils.urls import generate_rtmp_url, generate_subscriber_url

logger = logging.getLogger(__name__)


class FFmpegAdapterConfig(AdapterConfig):
    port: int = Field(default=1935, description="RTMP port")
    stream_key_prefix: str = Field(default="stream", description="Prefix for stream keys")


class FFmpegAdapter(BaseStreamAdapter):
    """Process-only backend."""

    name = "ffmpeg"
    config_model = FFmpegAdapterConfig

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._recordings: Dict[str, Recording] = {}

    def _subscriber_url(self, protocol: StreamProtocol, key: str) -> str:
        if protocol == StreamProtocol.RTMP:
            return generate_rtmp_url(self.config.host, self.config.port, self.config.app, key)
        if protocol == StreamProtocol.DASH:
            return f"http://{self.config.host}/{self.config.app}/{key}.mpd"
        return generate_subscriber_url(protocol, self.config.host, self.config.app, key)

    def _make_key(self, stream_id: str) -> str:
        prefix = self.config.stream_key_prefix
        if not prefix or stream_id.startswith(f"{prefix}-"):
            return stream_id
        return f"{prefix}-{stream_id}"

    async def create_stream(self, options: CreateStreamOptions) -> Stream:
        stream_id = generate_stream_id()
        key = self._make_key(stream_id)
        protocol = validate_protocol(options.protocol)
        stream = Stream(
            id=stream_id,
            name=options.name,
            protocol=protocol,
            room_id=options.room_id,
            publisher_url=generate_rtmp_url(
                self.config.host, self.config.port, self.config.app, key
            ),
            subscriber_urls={protocol: self._subscriber_url(protocol, key)},
        )
        self._register_stream(stream, key)
        logger.info(f"Created stream {stream_id} ({options.name}) at {stream.publisher_url}")
        return stream

    async def delete_stream(self, stream_id: str) -> None:
        stream = self._forget_stream(stream_id)
        handle = self.unregister_process(stream_id)
        if handle is not None:
            await self.controller.stop(handle)
        if stream is not None:
            logger.info(f"Deleted stream {stream_id}")

    async def start_recording(
        self, stream_id: str, options: Optional[RecordingOptions] = None
    ) -> Recording:
        """Record the stream's RTMP feed in the background."""
        stream = self._require_stream(stream_id)
        if stream_id in self._recordings:
            raise AdapterError(
                f"Stream {stream_id} is already being recorded",
                context=ErrorContext(stream_id=stream_id, operation="start_recording"),
            )
        options = options or RecordingOptions()
        source = stream.subscriber_urls.get(StreamProtocol.RTMP) or stream.publisher_url
        recording = await record_stream_realtime(
            source, output=options.output, duration=options.duration, controller=self.controller
        )
        self._recordings[stream_id] = recording
        self.register_process(f"recording-{stream_id}", recording.handle)
        return recording

    async def stop_recording(self, stream_id: str) -> RecordingResult:
        recording = self._recordings.pop(stream_id, None)
        if recording is None:
            raise AdapterError(
                f"No active recording for stream {stream_id}",
                context=ErrorContext(stream_id=stream_id, operation="stop_recording"),
            )
        self.unregister_process(f"recording-{stream_id}")
        result = await recording.stop()
        logger.info(f"Recording of {stream_id} saved to {result.output_path} ({result.size} bytes)")
        return result

    async def cleanup(self, max_age: float = 300.0) -> int:
        """Forget finished processes and stop orphans older than ``max_age`` seconds.

        Returns:
            int: Number of processes dropped
        """
        dropped = 0
        for key, handle in list(self._processes.items()):
            owner = key[len("recording-"):] if key.startswith("recording-") else key
            orphaned = owner not in self._streams and handle.uptime > max_age
            if handle.running and not orphaned:
                continue
            if handle.running:
                await self.controller.stop(handle)
            del self._processes[key]
            dropped += 1
        if dropped:
            logger.info(f"Cleaned up {dropped} processes")
        return dropped
