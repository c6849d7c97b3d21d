"""Publish and playback URL builders."""

from typing import Optional, Union

from streamhub.domain.exceptions import ProtocolNotSupportedError
from streamhub.domain.models import StreamProtocol
from streamhub.utils.protocol import get_default_port


def generate_rtmp_url(host: str, port: int, app: str, stream_key: str) -> str:
    return f"rtmp://{host}:{port}/{app}/{stream_key}"


def _http_scheme(port: int) -> str:
    return "https" if port == 443 else "http"


def generate_hls_url(host: str, port: int, app: str, stream_key: str) -> str:
    return f"{_http_scheme(port)}://{host}:{port}/{app}/{stream_key}.m3u8"


def generate_flv_url(host: str, port: int, app: str, stream_key: str) -> str:
    return f"{_http_scheme(port)}://{host}:{port}/{app}/{stream_key}.flv"


def generate_webrtc_url(host: str, port: int, app: str, stream_key: str) -> str:
    scheme = "wss" if port == 443 else "ws"
    return f"{scheme}://{host}:{port}/room/{app}/stream/{stream_key}"


_BUILDERS = {
    StreamProtocol.RTMP: generate_rtmp_url,
    StreamProtocol.HLS: generate_hls_url,
    StreamProtocol.FLV: generate_flv_url,
    StreamProtocol.WEBRTC: generate_webrtc_url,
}


def generate_publisher_url(
    protocol: Union[str, StreamProtocol],
    host: str,
    app: str,
    stream_key: str,
    port: Optional[int] = None,
) -> str:
    """Build the URL a publisher pushes to. Only rtmp and webrtc accept pushes.

    Raises:
        ProtocolNotSupportedError: For any other protocol
    """
    resolved = _resolve(protocol)
    if resolved not in (StreamProtocol.RTMP, StreamProtocol.WEBRTC):
        raise ProtocolNotSupportedError(
            protocol, f"Protocol not supported for publishing: {protocol}"
        )
    protocol = resolved
    return _BUILDERS[protocol](host, port or get_default_port(protocol), app, stream_key)


def generate_subscriber_url(
    protocol: Union[str, StreamProtocol],
    host: str,
    app: str,
    stream_key: str,
    port: Optional[int] = None,
) -> str:
    """Build a playback URL for rtmp, hls, flv or webrtc.

    Raises:
        ProtocolNotSupportedError: For any other protocol
    """
    resolved = _resolve(protocol)
    if resolved not in _BUILDERS:
        raise ProtocolNotSupportedError(
            protocol, f"Protocol not supported for subscribing: {protocol}"
        )
    protocol = resolved
    return _BUILDERS[protocol](host, port or get_default_port(protocol), app, stream_key)


def _resolve(protocol: Union[str, StreamProtocol]) -> Optional[StreamProtocol]:
    try:
        return StreamProtocol(protocol)
    except ValueError:
        return None
