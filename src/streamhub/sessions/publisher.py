"""Server-side publisher session."""

import logging
import mimetypes
import os
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from streamhub.domain.exceptions import (
    ConfigurationError,
    ConnectionError,
    ErrorContext,
    ProtocolNotSupportedError,
    PublisherStateError,
)
from streamhub.domain.models import (
    MediaBlob,
    PublisherOptions,
    PublisherStatistics,
    PublisherStatus,
    Resolution,
    StreamProtocol,
    VideoQuality,
)
from streamhub.infrastructure.media.ffmpeg import (
    EncodeOptions,
    build_hls_args,
    build_publish_args,
    is_device_source,
)
from streamhub.infrastructure.media.resources import ResourceKind
from streamhub.sessions.base import BaseSession, CleanupStep
from streamhub.sessions.events import Publishing, QualityChanged
from streamhub.utils.protocol import detect_protocol

logger = logging.getLogger(__name__)

MediaSource = Union[str, "os.PathLike[str]", bytes, bytearray, MediaBlob]

_MIME_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/x-matroska": ".mkv",
    "video/quicktime": ".mov",
    "video/x-flv": ".flv",
    "video/mp2t": ".ts",
    "audio/webm": ".webm",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
}


def blob_suffix(blob: MediaBlob) -> str:
    """Pick a file extension for ``blob`` from its MIME type or filename."""
    if blob.mime_type:
        mime = blob.mime_type.split(";")[0].strip().lower()
        suffix = _MIME_EXTENSIONS.get(mime) or mimetypes.guess_extension(mime)
        if suffix:
            return suffix
    if blob.filename:
        suffix = Path(blob.filename).suffix
        if suffix:
            return suffix.lower()
    return ".mp4"


class Publisher(BaseSession[PublisherStatus]):
    """Pushes one media source to a stream.

    RTMP and FLV URLs get an encode-and-push process. HLS URLs get a
    transcode into a local playlist directory; the playlist path is
    available from :attr:`hls_playlist_path` as soon as ``publish`` returns,
    which may be before ffmpeg has written it.

    Quality and audio/video toggles made while publishing are sent to the
    control channel and stored, but only take effect on the next
    ``publish``.
    """

    role = "Publisher"
    status_enum = PublisherStatus
    state_error = PublisherStateError
    topic_prefix = "stream:publish"

    def __init__(self, stream_id: str, options: Optional[PublisherOptions] = None, **kwargs: Any):
        super().__init__(stream_id, **kwargs)
        self.options = replace(options) if options else PublisherOptions()
        self.url = self.options.url
        self._hls_playlist_path: Optional[str] = None
        self._published_at: Optional[float] = None
        self._protocol: Optional[StreamProtocol] = None

    @property
    def hls_playlist_path(self) -> Optional[str]:
        return self._hls_playlist_path

    @property
    def protocol(self) -> Optional[StreamProtocol]:
        return self._protocol

    async def publish(self, source: MediaSource) -> None:
        """Start publishing ``source`` to the connected URL.

        Args:
            source: File path, device (``/dev/video0``), ``screen://``,
                URL, raw bytes or a :class:`MediaBlob`

        Raises:
            PublisherStateError: If the publisher is not connected
            ProtocolNotSupportedError: For WebRTC or unknown protocols
            ConfigurationError: For an unsupported source type
            ConnectionError: If the source is missing or ffmpeg fails to start
        """
        self._require("publish", PublisherStatus.CONNECTED)
        protocol = detect_protocol(self.url)

        try:
            if protocol in (StreamProtocol.RTMP, StreamProtocol.FLV):
                source_path = self._resolve_source(source)
                handle = await self.controller.spawn(
                    build_publish_args(source_path, self.url, self._encode_options()),
                    stream_id=self.stream_id,
                )
                self._primary = self._track_process(handle)
            elif protocol == StreamProtocol.HLS:
                source_path = self._resolve_source(source)
                output_dir = self.resources.create_temp_dir(prefix="hls-")
                playlist = output_dir / "playlist.m3u8"
                self._hls_playlist_path = str(playlist)
                handle = await self.controller.spawn(
                    build_hls_args(source_path, str(playlist), self._encode_options()),
                    stream_id=self.stream_id,
                )
                self._auxiliary = self._track_process(handle)
            elif protocol == StreamProtocol.WEBRTC:
                raise ProtocolNotSupportedError(
                    protocol,
                    "WebRTC publishing needs a signaling-aware client, not a server-side publisher",
                    context=ErrorContext(stream_id=self.stream_id, operation="publish"),
                )
            else:
                raise ProtocolNotSupportedError(
                    protocol, context=ErrorContext(stream_id=self.stream_id, operation="publish")
                )
        except Exception as e:
            await self._fail(e)
            raise

        self._protocol = protocol
        self._published_at = time.monotonic()
        self._set_status(PublisherStatus.PUBLISHING)
        logger.info(f"Publisher {self.stream_id} publishing over {protocol.value}")
        await self.events.emit(
            Publishing(
                stream_id=self.stream_id,
                protocol=protocol.value,
                playlist_path=self._hls_playlist_path,
            )
        )

    def _resolve_source(self, source: MediaSource) -> str:
        if isinstance(source, (bytes, bytearray)):
            source = MediaBlob(data=bytes(source))
        if isinstance(source, MediaBlob):
            path = self.resources.create_temp_file(suffix=blob_suffix(source), data=source.data)
            logger.debug(f"Wrote {len(source.data)} byte media source to {path}")
            return str(path)
        if isinstance(source, (str, os.PathLike)):
            path = os.fspath(source)
            if not is_device_source(path) and "://" not in path and not os.path.exists(path):
                cause = FileNotFoundError(f"No such media source: {path}")
                raise ConnectionError(
                    f"Media source not found: {path}",
                    context=ErrorContext(stream_id=self.stream_id, operation="publish"),
                    cause=cause,
                ) from cause
            return path
        raise ConfigurationError(
            f"Unsupported media source type: {type(source).__name__}",
            context=ErrorContext(stream_id=self.stream_id, operation="publish"),
        )

    def _encode_options(self) -> EncodeOptions:
        return EncodeOptions(
            quality=self.options.quality,
            audio_enabled=self.options.audio_enabled,
            video_enabled=self.options.video_enabled,
            loop=self.options.loop,
        )

    async def set_video_quality(self, quality: VideoQuality) -> None:
        self.options.quality = quality
        if self._status == PublisherStatus.PUBLISHING:
            await self._notify("quality", {"quality": quality.to_dict()})
            await self.events.emit(QualityChanged(stream_id=self.stream_id, quality=quality))

    async def set_audio_enabled(self, enabled: bool) -> None:
        self.options.audio_enabled = enabled
        if self._status == PublisherStatus.PUBLISHING:
            await self._notify("audio", {"enabled": enabled})
            await self.events.emit(QualityChanged(stream_id=self.stream_id, audio_enabled=enabled))

    async def set_video_enabled(self, enabled: bool) -> None:
        self.options.video_enabled = enabled
        if self._status == PublisherStatus.PUBLISHING:
            await self._notify("video", {"enabled": enabled})
            await self.events.emit(QualityChanged(stream_id=self.stream_id, video_enabled=enabled))

    def get_statistics(self) -> PublisherStatistics:
        publishing = self._status == PublisherStatus.PUBLISHING
        quality = self.options.quality
        return PublisherStatistics(
            stream_id=self.stream_id,
            status=self._status,
            bitrate=quality.bitrate if publishing and quality else 0,
            fps=quality.fps if publishing and quality else 0,
            resolution=Resolution(quality.width, quality.height) if quality else Resolution(),
            uptime=time.monotonic() - self._published_at if publishing and self._published_at else 0,
        )

    def _cleanup_steps(self) -> Iterable[CleanupStep]:
        timeouts = self.timeouts
        return [
            ("Control channel close", self._close_channel, timeouts.channel_close),
            ("HLS transcode stop", self._stop_auxiliary, timeouts.transcode_stop),
            (
                "HLS output removal",
                lambda: self._release(ResourceKind.DIRECTORY),
                timeouts.transcode_stop,
            ),
            ("Publish process stop", self._stop_primary, timeouts.process_stop),
            ("Temp file removal", self._release, timeouts.process_stop),
        ]

    async def stop(self) -> None:
        await super().stop()
        self._published_at = None
