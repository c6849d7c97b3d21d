"""streamhub: live-media publish/subscribe sessions over pluggable backends."""

from streamhub.domain.exceptions import (
    AdapterError,
    ConfigurationError,
    ConnectionError,
    ProtocolNotSupportedError,
    PublisherStateError,
    StreamAlreadyExistsError,
    StreamError,
    StreamNotFoundError,
    SubscriberStateError,
)
from streamhub.manager import StreamManager
from streamhub.sessions.publisher import Publisher
from streamhub.sessions.subscriber import Subscriber

__version__ = "0.1.0"

__all__ = [
    "AdapterError",
    "ConfigurationError",
    "ConnectionError",
    "ProtocolNotSupportedError",
    "Publisher",
    "PublisherStateError",
    "StreamAlreadyExistsError",
    "StreamError",
    "StreamManager",
    "StreamNotFoundError",
    "Subscriber",
    "SubscriberStateError",
]
