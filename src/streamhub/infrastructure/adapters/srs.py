"""Driver for an SRS media server (HTTP API v1)."""

import logging
import time
from typing import Any, Dict, List, Optional

import backoff
from pydantic import Field, SecretStr

from streamhub.domain.exceptions import AdapterError, ConnectionError, ErrorContext, StreamError
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
from streamhub.utils.urls import (
    generate_flv_url,
    generate_hls_url,
    generate_rtmp_url,
    generate_webrtc_url,
)

logger = logging.getLogger(__name__)


class SRSAdapterConfig(AdapterConfig):
    api_url: str = Field(default="http://localhost:1985", description="SRS HTTP API base URL")
    rtmp_port: int = Field(default=1935, description="RTMP port")
    http_port: int = Field(default=8080, description="HTTP-FLV/HLS port")
    webrtc_port: int = Field(default=8000, description="WebRTC port")
    token: Optional[SecretStr] = Field(default=None, description="Bearer token for the API")
    connect_retries: int = Field(default=3, description="Attempts made by connect()")


class SRSAdapter(BaseStreamAdapter):
    """SRS-fronting backend.

    Streams are created locally (SRS creates its side when a publisher
    connects); reads merge ``/api/v1/streams`` into the local map.
    """

    name = "srs"
    config_model = SRSAdapterConfig

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._remote_ids: Dict[str, str] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.token is not None:
            headers["Authorization"] = f"Bearer {self.config.token.get_secret_value()}"
        return headers

    async def _call_api(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = await self._request_json(
            method, f"{self.config.api_url.rstrip('/')}{path}", payload=payload, headers=self._headers()
        )
        code = data.get("code", 0)
        if code != 0:
            raise AdapterError(
                f"SRS API {method} {path} returned code {code}",
                context=ErrorContext(operation=f"{method} {path}", extra={"code": code}),
            )
        return data

    async def connect(self) -> None:
        """Check the API answers, retrying with exponential backoff.

        Raises:
            ConnectionError: If SRS stays unreachable
        """
        fetch = backoff.on_exception(
            backoff.expo,
            ConnectionError,
            max_tries=self.config.connect_retries,
            logger=logger,
        )(self._call_api)
        await fetch("GET", "/api/v1/summaries")
        logger.info(f"Connected to SRS at {self.config.api_url}")

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
                StreamProtocol.HLS: generate_hls_url(cfg.host, cfg.http_port, cfg.app, stream_id),
                StreamProtocol.FLV: generate_flv_url(cfg.host, cfg.http_port, cfg.app, stream_id),
                StreamProtocol.WEBRTC: generate_webrtc_url(cfg.host, cfg.webrtc_port, cfg.app, stream_id),
            },
        )
        self._register_stream(stream)
        logger.info(f"Created SRS stream {stream_id} ({options.name})")
        return stream

    async def delete_stream(self, stream_id: str) -> None:
        self._forget_stream(stream_id)
        remote_id = self._remote_ids.pop(stream_id, stream_id)
        try:
            await self._call_api("DELETE", f"/api/v1/streams/{remote_id}")
        except StreamError as e:
            logger.warning(f"Remote delete of {stream_id} failed, ignoring: {e}")
        logger.info(f"Deleted SRS stream {stream_id}")

    async def _sync(self) -> None:
        try:
            data = await self._call_api("GET", "/api/v1/streams")
        except StreamError as e:
            logger.warning(f"SRS stream listing failed, using local state: {e}")
            return

        for remote in data.get("streams", []):
            if remote.get("app", self.config.app) != self.config.app:
                continue
            key = remote.get("name")
            if not key:
                continue
            active = remote.get("publish", {}).get("active", True)
            stream = self._find_by_key(key)
            if stream is None:
                stream = self._register_stream(Stream(id=key, name=key))
            stream.status = StreamStatus.PUBLISHING if active else StreamStatus.IDLE
            stream.touch()
            if remote.get("id") is not None:
                self._remote_ids[stream.id] = str(remote["id"])

    async def get_stream(self, stream_id: str) -> Optional[Stream]:
        await self._sync()
        return self._streams.get(stream_id)

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        await self._sync()
        return paginate(self._streams.values(), options)

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        self._require_stream(stream_id)
        remote_id = self._remote_ids.get(stream_id, stream_id)
        data = await self._call_api("GET", f"/api/v1/streams/{remote_id}")
        remote = data.get("stream", {})
        video = remote.get("video") or {}
        live_ms = remote.get("live_ms")
        return StreamStatistics(
            stream_id=stream_id,
            viewers=int(remote.get("clients", 0)),
            bitrate=int(remote.get("kbps", {}).get("recv_30s", 0)),
            resolution=Resolution(int(video.get("width", 0)), int(video.get("height", 0))),
            uptime=max(0.0, time.time() - live_ms / 1000) if live_ms else 0,
        )
