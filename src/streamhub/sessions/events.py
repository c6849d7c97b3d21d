"""Typed session events.

Each event is a small dataclass tagged with an :class:`EventKind`. Listeners
subscribe per kind and are removed by reference.
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Union

from streamhub.domain.models import VideoQuality

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PUBLISHING = "publishing"
    PLAYING = "playing"
    BUFFERING = "buffering"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    QUALITY_CHANGED = "quality_changed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SessionEvent:
    kind: ClassVar[EventKind]
    stream_id: str


@dataclass(frozen=True)
class Connecting(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.CONNECTING
    url: str = ""


@dataclass(frozen=True)
class Connected(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.CONNECTED
    url: str = ""


@dataclass(frozen=True)
class Publishing(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.PUBLISHING
    protocol: str = ""
    playlist_path: Optional[str] = None


@dataclass(frozen=True)
class Playing(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.PLAYING
    protocol: str = ""


@dataclass(frozen=True)
class Buffering(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.BUFFERING


@dataclass(frozen=True)
class Disconnected(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.DISCONNECTED


@dataclass(frozen=True)
class ErrorEvent(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.ERROR
    error: Optional[BaseException] = field(default=None, compare=False)


@dataclass(frozen=True)
class QualityChanged(SessionEvent):
    kind: ClassVar[EventKind] = EventKind.QUALITY_CHANGED
    quality: Optional[VideoQuality] = None
    audio_enabled: Optional[bool] = None
    video_enabled: Optional[bool] = None


Listener = Callable[[SessionEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Per-kind listener registry."""

    def __init__(self):
        self._listeners: Dict[EventKind, List[Listener]] = {}

    def on(self, kind: Union[EventKind, str], listener: Listener) -> Listener:
        """Register ``listener`` for ``kind``. Returns the listener for later ``off``."""
        self._listeners.setdefault(EventKind(kind), []).append(listener)
        return listener

    def off(self, kind: Union[EventKind, str], listener: Listener) -> bool:
        listeners = self._listeners.get(EventKind(kind), [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def remove_all_listeners(self, kind: Optional[Union[EventKind, str]] = None) -> None:
        if kind is None:
            self._listeners.clear()
        else:
            self._listeners.pop(EventKind(kind), None)

    def listener_count(self, kind: Union[EventKind, str]) -> int:
        return len(self._listeners.get(EventKind(kind), []))

    async def emit(self, event: SessionEvent) -> None:
        """Deliver ``event`` to its kind's listeners; listener errors are logged."""
        for listener in list(self._listeners.get(event.kind, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event.kind.value} listener: {e}")
