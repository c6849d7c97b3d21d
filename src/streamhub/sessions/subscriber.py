"""Server-side subscriber session."""

import logging
import os
import tempfile
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, Optional

from streamhub.domain.exceptions import ErrorContext, ProtocolNotSupportedError, SubscriberStateError
from streamhub.domain.models import (
    StreamProtocol,
    SubscriberOptions,
    SubscriberStatistics,
    SubscriberStatus,
    SubscriptionDescriptor,
    VideoQuality,
)
from streamhub.infrastructure.media.ffmpeg import build_subscribe_args
from streamhub.sessions.base import BaseSession, CleanupStep
from streamhub.sessions.channel import ControlChannel
from streamhub.sessions.events import Buffering, Playing, QualityChanged
from streamhub.utils.protocol import detect_protocol

logger = logging.getLogger(__name__)


class Subscriber(BaseSession[SubscriberStatus]):
    """Pulls one stream.

    RTMP and FLV streams are recorded by an ffmpeg process into a temp
    ``.flv`` file that the caller owns. HLS and DASH need no process; the
    URL is handed back for playback elsewhere.

    Playback controls only update local bookkeeping and notify the control
    channel; position and buffer figures arrive from remote participants
    as ``stream:subscribe:stats`` messages.
    """

    role = "Subscriber"
    status_enum = SubscriberStatus
    state_error = SubscriberStateError
    topic_prefix = "stream:subscribe"

    def __init__(self, stream_id: str, options: Optional[SubscriberOptions] = None, **kwargs: Any):
        super().__init__(stream_id, **kwargs)
        self.options = replace(options) if options else SubscriberOptions()
        self.url = self.options.url
        self.buffered = 0.0
        self.current_time = 0.0
        self.duration = 0.0
        self._descriptor: Optional[SubscriptionDescriptor] = None
        self._playing_since: Optional[float] = None

    @property
    def descriptor(self) -> Optional[SubscriptionDescriptor]:
        return self._descriptor

    def _on_channel_open(self, channel: ControlChannel) -> None:
        channel.on(f"{self.topic_prefix}:stats", self._handle_stats)

    def _handle_stats(self, payload: Dict[str, Any]) -> None:
        if payload.get("streamId", self.stream_id) != self.stream_id:
            return
        self.buffered = float(payload.get("buffered", self.buffered))
        self.current_time = float(payload.get("currentTime", self.current_time))
        self.duration = float(payload.get("duration", self.duration))

    async def subscribe(self) -> SubscriptionDescriptor:
        """Start receiving the connected stream.

        Raises:
            SubscriberStateError: If the subscriber is not connected
            ProtocolNotSupportedError: For WebRTC or unknown protocols
            ConnectionError: If ffmpeg fails to start
        """
        self._require("subscribe", SubscriberStatus.CONNECTED)
        protocol = detect_protocol(self.url)

        try:
            if protocol in (StreamProtocol.RTMP, StreamProtocol.FLV):
                output_path = self._make_output_path()
                try:
                    handle = await self.controller.spawn(
                        build_subscribe_args(self.url, output_path), stream_id=self.stream_id
                    )
                except Exception:
                    self._discard_output(output_path)
                    raise
                self._primary = self._track_process(handle)
                descriptor = SubscriptionDescriptor(
                    stream_id=self.stream_id,
                    url=self.url,
                    protocol=protocol,
                    output_path=output_path,
                )
            elif protocol in (StreamProtocol.HLS, StreamProtocol.DASH):
                descriptor = SubscriptionDescriptor(
                    stream_id=self.stream_id, url=self.url, protocol=protocol, output_path=self.url
                )
            elif protocol == StreamProtocol.WEBRTC:
                raise ProtocolNotSupportedError(
                    protocol,
                    "WebRTC playback needs a signaling-aware client, not a server-side subscriber",
                    context=ErrorContext(stream_id=self.stream_id, operation="subscribe"),
                )
            else:
                raise ProtocolNotSupportedError(
                    protocol, context=ErrorContext(stream_id=self.stream_id, operation="subscribe")
                )
        except Exception as e:
            await self._fail(e)
            raise

        self._descriptor = descriptor
        self._playing_since = time.monotonic()
        self._set_status(SubscriberStatus.PLAYING)
        logger.info(f"Subscriber {self.stream_id} receiving {protocol.value} from {self.url}")
        await self.events.emit(Playing(stream_id=self.stream_id, protocol=protocol.value))
        return descriptor

    def _make_output_path(self) -> str:
        fd, name = tempfile.mkstemp(prefix=f"{self.stream_id}-", suffix=".flv")
        os.close(fd)
        return name

    def _discard_output(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove unused output {path}: {e}")

    async def play(self) -> None:
        if self._status == SubscriberStatus.PLAYING:
            return
        self._require("play", SubscriberStatus.CONNECTED, SubscriberStatus.BUFFERING)
        self._set_status(SubscriberStatus.PLAYING)
        if self._playing_since is None:
            self._playing_since = time.monotonic()
        await self._notify("play")
        await self.events.emit(Playing(stream_id=self.stream_id))

    async def pause(self) -> None:
        if self._status == SubscriberStatus.BUFFERING:
            return
        self._require("pause", SubscriberStatus.PLAYING)
        self._set_status(SubscriberStatus.BUFFERING)
        await self._notify("pause")
        await self.events.emit(Buffering(stream_id=self.stream_id))

    async def seek(self, position: float) -> None:
        self._require("seek", SubscriberStatus.PLAYING, SubscriberStatus.BUFFERING)
        self.current_time = position
        await self._notify("seek", {"time": position})

    async def set_quality(self, quality: VideoQuality) -> None:
        self.options.quality = quality
        if self._status == SubscriberStatus.PLAYING:
            await self._notify("quality", {"quality": quality.to_dict()})
            await self.events.emit(QualityChanged(stream_id=self.stream_id, quality=quality))

    def get_statistics(self) -> SubscriberStatistics:
        return SubscriberStatistics(
            stream_id=self.stream_id,
            status=self._status,
            buffered=self.buffered,
            current_time=self.current_time,
            duration=self.duration,
            uptime=time.monotonic() - self._playing_since if self._playing_since else 0,
        )

    def _cleanup_steps(self) -> Iterable[CleanupStep]:
        timeouts = self.timeouts
        return [
            ("Control channel close", self._close_channel, timeouts.channel_close),
            ("Subscribe process stop", self._stop_primary, timeouts.process_stop),
            ("Temp file removal", self._release, timeouts.process_stop),
        ]

    async def stop(self) -> None:
        await super().stop()
        self._playing_since = None
