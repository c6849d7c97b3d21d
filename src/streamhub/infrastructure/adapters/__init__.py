"""Backend drivers."""

from streamhub.infrastructure.adapters.base import AdapterConfig, BaseStreamAdapter, StreamAdapter
from streamhub.infrastructure.adapters.factory import (
    create_adapter,
    get_supported_adapters,
    register_adapter,
)
from streamhub.infrastructure.adapters.ffmpeg import FFmpegAdapter
from streamhub.infrastructure.adapters.livekit import LiveKitAdapter
from streamhub.infrastructure.adapters.nginx_rtmp import NginxRTMPAdapter
from streamhub.infrastructure.adapters.srs import SRSAdapter

__all__ = [
    "AdapterConfig",
    "BaseStreamAdapter",
    "StreamAdapter",
    "FFmpegAdapter",
    "LiveKitAdapter",
    "NginxRTMPAdapter",
    "SRSAdapter",
    "create_adapter",
    "get_supported_adapters",
    "register_adapter",
]
