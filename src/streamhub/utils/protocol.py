"""Protocol detection and URL parsing.

``detect_protocol`` maps a URL onto a :class:`StreamProtocol` using ordered,
first-match rules and memoizes the result. The memo is capped: once it holds
``protocol_cache_size`` URLs, new URLs are still classified but no longer
cached.
"""

import logging
import re
from typing import Dict, Optional, Union
from urllib.parse import urlparse

from streamhub.core.config import get_settings
from streamhub.domain.exceptions import ProtocolNotSupportedError
from streamhub.domain.models import StreamProtocol

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = frozenset(StreamProtocol)
PUBLISHING_PROTOCOLS = frozenset({StreamProtocol.RTMP, StreamProtocol.WEBRTC})

DEFAULT_PORTS: Dict[StreamProtocol, int] = {
    StreamProtocol.RTMP: 1935,
    StreamProtocol.HLS: 80,
    StreamProtocol.FLV: 80,
    StreamProtocol.DASH: 80,
    StreamProtocol.WEBRTC: 8080,
}

_RTMP_URL = re.compile(r"^rtmp://([^:/]+):?(\d+)?/(.+)/([^/]+)$")

_protocol_cache: Dict[str, StreamProtocol] = {}


def _classify(url: str) -> StreamProtocol:
    lowered = url.lower()
    if lowered.startswith("rtmp://"):
        return StreamProtocol.RTMP
    if ".m3u8" in lowered or "/hls/" in lowered:
        return StreamProtocol.HLS
    if ".flv" in lowered or "/flv/" in lowered:
        return StreamProtocol.FLV
    if lowered.startswith(("ws://", "wss://")) or "/webrtc/" in lowered:
        return StreamProtocol.WEBRTC
    if ".mpd" in lowered or "/dash/" in lowered:
        return StreamProtocol.DASH
    return StreamProtocol.RTMP


def detect_protocol(url: str) -> StreamProtocol:
    """Classify a URL into a transport protocol.

    Args:
        url: Stream URL

    Returns:
        StreamProtocol: Detected protocol, ``rtmp`` when nothing matches
    """
    cached = _protocol_cache.get(url)
    if cached is not None:
        return cached

    protocol = _classify(url)
    if len(_protocol_cache) < get_settings().cache.protocol_cache_size:
        _protocol_cache[url] = protocol
    return protocol


def clear_protocol_cache() -> None:
    _protocol_cache.clear()


def protocol_cache_size() -> int:
    return len(_protocol_cache)


def validate_protocol(protocol: Union[str, StreamProtocol]) -> StreamProtocol:
    """Check that ``protocol`` is one of the supported protocols.

    Raises:
        ProtocolNotSupportedError: If the protocol is unknown
    """
    try:
        return StreamProtocol(protocol)
    except ValueError:
        raise ProtocolNotSupportedError(protocol) from None


def supports_publishing(protocol: Union[str, StreamProtocol]) -> bool:
    return _coerce(protocol) in PUBLISHING_PROTOCOLS


def supports_subscribing(protocol: Union[str, StreamProtocol]) -> bool:
    return _coerce(protocol) in SUPPORTED_PROTOCOLS


def get_default_port(protocol: Union[str, StreamProtocol]) -> int:
    return DEFAULT_PORTS[validate_protocol(protocol)]


def parse_rtmp_url(url: str) -> Optional[Dict[str, Union[str, int]]]:
    """Split ``rtmp://host[:port]/app/key`` into its parts.

    Returns:
        Dict with host, port, app and stream_key, or None if the URL does
        not have that shape
    """
    match = _RTMP_URL.match(url)
    if not match:
        return None
    host, port, app, stream_key = match.groups()
    return {
        "host": host,
        "port": int(port) if port else DEFAULT_PORTS[StreamProtocol.RTMP],
        "app": app,
        "stream_key": stream_key,
    }


def parse_hls_url(url: str) -> Optional[Dict[str, str]]:
    """Split an HLS URL into base URL and playlist name."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    directory, _, name = parsed.path.rpartition("/")
    return {
        "base_url": f"{parsed.scheme}://{parsed.netloc}{directory}",
        "playlist_name": name or "playlist.m3u8",
    }


def _coerce(protocol: Union[str, StreamProtocol]) -> Optional[StreamProtocol]:
    try:
        return StreamProtocol(protocol)
    except ValueError:
        return None
