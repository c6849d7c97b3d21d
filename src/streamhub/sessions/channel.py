"""Control channel between a session and its remote participants.

The channel carries best-effort notifications (quality changes, stop
notices) out of a session and playback statistics back in. Delivery is not
guaranteed.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from streamhub.domain.exceptions import ConnectionError

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Handler = Callable[[Payload], Any]


@runtime_checkable
class ControlChannel(Protocol):
    """Signaling side channel used by sessions."""

    @property
    def is_open(self) -> bool:
        ...

    async def open(self) -> None:
        """Open the channel.

        Raises:
            ConnectionError: If the channel cannot be established
        """
        ...

    async def emit(self, event: str, payload: Payload) -> None:
        ...

    def on(self, event: str, handler: Handler) -> None:
        """Register ``handler`` for messages pushed by remote participants."""
        ...

    async def close(self) -> None:
        ...


class ChannelHub:
    """Topic fan-out shared by channels in one process."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, []))

    async def publish(self, topic: str, payload: Payload) -> int:
        """Deliver ``payload`` to every handler of ``topic``.

        Returns:
            int: Number of handlers reached
        """
        delivered = 0
        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for {topic} failed: {e}")
        return delivered


default_hub = ChannelHub()


class InProcessChannel:
    """:class:`ControlChannel` backed by a :class:`ChannelHub`."""

    def __init__(self, url: str, hub: Optional[ChannelHub] = None):
        self.url = url
        self.hub = hub or default_hub
        self._open = False
        self._subscriptions: List[Tuple[str, Handler]] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True
        logger.debug(f"Control channel open for {self.url}")

    async def emit(self, event: str, payload: Payload) -> None:
        if not self._open:
            raise ConnectionError(f"Control channel for {self.url} is closed")
        await self.hub.publish(event, payload)

    def on(self, event: str, handler: Handler) -> None:
        self.hub.subscribe(event, handler)
        self._subscriptions.append((event, handler))

    async def close(self) -> None:
        for event, handler in self._subscriptions:
            self.hub.unsubscribe(event, handler)
        self._subscriptions.clear()
        self._open = False


ChannelFactory = Callable[[str], ControlChannel]


def in_process_channel(url: str) -> ControlChannel:
    return InProcessChannel(url)
