"""Domain model for streams, rooms and sessions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StreamProtocol(str, Enum):
    """Transport protocols understood by the dispatcher."""

    RTMP = "rtmp"
    HLS = "hls"
    FLV = "flv"
    WEBRTC = "webrtc"
    DASH = "dash"

    def __str__(self) -> str:
        return self.value


class StreamStatus(str, Enum):
    """Backend-side stream status."""

    IDLE = "idle"
    PUBLISHING = "publishing"
    PLAYING = "playing"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class PublisherStatus(str, Enum):
    """Publisher session status."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PUBLISHING = "publishing"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class SubscriberStatus(str, Enum):
    """Subscriber session status."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PLAYING = "playing"
    BUFFERING = "buffering"
    STOPPED = "stopped"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass
class VideoQuality:
    """Encoder settings. Bitrate is in kbit/s."""

    width: int = 1280
    height: int = 720
    bitrate: int = 2000
    fps: int = 30

    def to_dict(self) -> Dict[str, int]:
        return {
            "width": self.width,
            "height": self.height,
            "bitrate": self.bitrate,
            "fps": self.fps,
        }


@dataclass(frozen=True)
class Resolution:
    width: int = 0
    height: int = 0


@dataclass
class Stream:
    """A stream record owned by a backend driver."""

    id: str
    name: str
    protocol: StreamProtocol = StreamProtocol.RTMP
    status: StreamStatus = StreamStatus.IDLE
    room_id: Optional[str] = None
    publisher_url: Optional[str] = None
    subscriber_urls: Dict[StreamProtocol, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape with camelCase keys."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "protocol": self.protocol.value,
            "subscriberUrls": {
                StreamProtocol(proto).value: url
                for proto, url in self.subscriber_urls.items()
            },
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.room_id is not None:
            data["roomId"] = self.room_id
        if self.publisher_url is not None:
            data["publisherUrl"] = self.publisher_url
        return data


@dataclass
class Room:
    """In-memory grouping of streams. Never synchronized to a backend."""

    id: str
    name: str
    description: Optional[str] = None
    max_viewers: Optional[int] = None
    is_private: bool = False
    stream_ids: List[str] = field(default_factory=list)
    viewer_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "isPrivate": self.is_private,
            "streamIds": list(self.stream_ids),
            "viewerCount": self.viewer_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.description is not None:
            data["description"] = self.description
        if self.max_viewers is not None:
            data["maxViewers"] = self.max_viewers
        return data


@dataclass
class CreateStreamOptions:
    name: str
    protocol: StreamProtocol = StreamProtocol.RTMP
    room_id: Optional[str] = None
    quality: Optional[VideoQuality] = None


@dataclass
class CreateRoomOptions:
    name: str
    description: Optional[str] = None
    max_viewers: Optional[int] = None
    is_private: bool = False


@dataclass
class ListOptions:
    limit: Optional[int] = None
    offset: int = 0
    filter: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PublisherOptions:
    url: Optional[str] = None
    quality: Optional[VideoQuality] = None
    audio_enabled: bool = True
    video_enabled: bool = True
    loop: bool = False


@dataclass
class SubscriberOptions:
    url: Optional[str] = None
    quality: Optional[VideoQuality] = None
    autoplay: bool = False


@dataclass
class StreamStatistics:
    """Backend-reported statistics. Uptime is in seconds."""

    stream_id: str
    viewers: int = 0
    bitrate: int = 0
    fps: float = 0
    resolution: Resolution = field(default_factory=Resolution)
    uptime: float = 0


@dataclass
class PublisherStatistics:
    stream_id: str
    status: PublisherStatus
    bitrate: int = 0
    fps: float = 0
    resolution: Resolution = field(default_factory=Resolution)
    uptime: float = 0


@dataclass
class SubscriberStatistics:
    stream_id: str
    status: SubscriberStatus
    buffered: float = 0
    current_time: float = 0
    duration: float = 0
    uptime: float = 0


@dataclass
class RecordingOptions:
    output: Optional[str] = None
    duration: Optional[float] = None


@dataclass
class RecordingResult:
    output_path: str
    size: int
    duration: Optional[float] = None


@dataclass
class SubscriptionDescriptor:
    """What a subscriber hands back: where to read the media from."""

    stream_id: str
    url: str
    protocol: StreamProtocol
    output_path: Optional[str] = None


@dataclass
class MediaBlob:
    """In-memory media source, written to a temp file before publishing."""

    data: bytes
    mime_type: Optional[str] = None
    filename: Optional[str] = None
