"""Driver for nginx with the RTMP module, read through its ``/stat`` page."""

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from aiohttp import ClientError
from pydantic import Field

from streamhub.domain.exceptions import AdapterError, ConnectionError, StreamError
from streamhub.domain.models import (
    CreateStreamOptions,
    ListOptions,
    Resolution,
    Stream,
    StreamProtocol,
    StreamStatistics,
    StreamStatus,
)
from streamhub.infrastructure.adapters.base import AdapterConfig, BaseStreamAdapter, paginate
from streamhub.utils.ids import generate_stream_id
from streamhub.utils.protocol import validate_protocol
from streamhub.utils.urls import generate_hls_url, generate_rtmp_url

logger = logging.getLogger(__name__)


class NginxRTMPAdapterConfig(AdapterConfig):
    stat_url: str = Field(default="http://localhost:80/stat", description="rtmp_stat endpoint")
    rtmp_port: int = Field(default=1935, description="RTMP port")
    http_port: int = Field(default=80, description="HLS port")


def parse_stat(xml_text: str, app: str) -> Dict[str, Dict[str, Any]]:
    """Extract live streams of application ``app`` from rtmp_stat XML.

    Returns:
        Dict keyed by stream name with clients, bandwidth, size, fps and
        uptime (seconds)
    """
    root = ET.fromstring(xml_text)
    streams: Dict[str, Dict[str, Any]] = {}
    for application in root.iter("application"):
        if (application.findtext("name") or "").strip() != app:
            continue
        for node in application.findall("./live/stream"):
            name = (node.findtext("name") or "").strip()
            if not name:
                continue
            streams[name] = {
                "clients": _int(node.findtext("nclients")),
                "bitrate": _int(node.findtext("bw_in")) // 1000,
                "width": _int(node.findtext("meta/video/width")),
                "height": _int(node.findtext("meta/video/height")),
                "fps": _int(node.findtext("meta/video/frame_rate")),
                "uptime": _int(node.findtext("time")) / 1000,
                "publishing": node.find("publishing") is not None,
            }
    return streams


def _int(value: Optional[str]) -> int:
    try:
        return int(float(value)) if value else 0
    except ValueError:
        return 0


class NginxRTMPAdapter(BaseStreamAdapter):
    """nginx-rtmp backend. Stream creation and deletion are local only."""

    name = "nginx-rtmp"
    config_model = NginxRTMPAdapterConfig

    async def _fetch_stat(self) -> Dict[str, Dict[str, Any]]:
        try:
            async with self.session.get(self.config.stat_url) as response:
                body = await response.text()
                status = response.status
        except (ClientError, asyncio.TimeoutError) as e:
            raise ConnectionError(f"nginx-rtmp stat request failed: {e}", cause=e) from e
        if status >= 400:
            raise AdapterError(f"nginx-rtmp stat returned {status}")
        try:
            return parse_stat(body, self.config.app)
        except ET.ParseError as e:
            raise AdapterError(f"nginx-rtmp stat is not valid XML: {e}", cause=e) from e

    async def connect(self) -> None:
        await self._fetch_stat()
        logger.info(f"Connected to nginx-rtmp stat at {self.config.stat_url}")

    async def create_stream(self, options: CreateStreamOptions) -> Stream:
        stream_id = generate_stream_id()
        protocol = validate_protocol(options.protocol)
        cfg = self.config
        stream = Stream(
            id=stream_id,
            name=options.name,
            protocol=protocol,
            room_id=options.room_id,
            publisher_url=generate_rtmp_url(cfg.host, cfg.rtmp_port, cfg.app, stream_id),
            subscriber_urls={
                StreamProtocol.RTMP: generate_rtmp_url(cfg.host, cfg.rtmp_port, cfg.app, stream_id),
                StreamProtocol.HLS: generate_hls_url(cfg.host, cfg.http_port, "hls", stream_id),
            },
        )
        self._register_stream(stream)
        logger.info(f"Created nginx-rtmp stream {stream_id} ({options.name})")
        return stream

    async def _sync(self) -> Dict[str, Dict[str, Any]]:
        try:
            live = await self._fetch_stat()
        except StreamError as e:
            logger.warning(f"nginx-rtmp stat unavailable, using local state: {e}")
            return {}

        for key in live:
            stream = self._find_by_key(key)
            if stream is None:
                stream = self._register_stream(Stream(id=key, name=key))
            stream.status = StreamStatus.PUBLISHING
            stream.touch()
        return live

    async def get_stream(self, stream_id: str) -> Optional[Stream]:
        await self._sync()
        return self._streams.get(stream_id)

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        await self._sync()
        return paginate(self._streams.values(), options)

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        self._require_stream(stream_id)
        live = await self._sync()
        info = live.get(self.stream_key(stream_id))
        if info is None:
            return StreamStatistics(stream_id=stream_id)
        return StreamStatistics(
            stream_id=stream_id,
            viewers=max(0, info["clients"] - (1 if info["publishing"] else 0)),
            bitrate=info["bitrate"],
            fps=info["fps"],
            resolution=Resolution(info["width"], info["height"]),
            uptime=info["uptime"],
        )
