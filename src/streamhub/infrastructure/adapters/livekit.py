"""Driver for a LiveKit SFU, one room per stream.

Room management goes through LiveKit's Twirp ``RoomService`` with
short-lived HS256 access tokens signed by PyJWT.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from pydantic import Field, SecretStr

from streamhub.domain.exceptions import ConfigurationError, StreamError
from streamhub.domain.models import (
    CreateStreamOptions,
    ListOptions,
    Stream,
    StreamProtocol,
    StreamStatistics,
    StreamStatus,
)
from streamhub.infrastructure.adapters.base import AdapterConfig, BaseStreamAdapter, paginate
from streamhub.utils.ids import generate_stream_id

logger = logging.getLogger(__name__)

ROOM_SERVICE = "twirp/livekit.RoomService"
TOKEN_TTL = timedelta(hours=1)


class LiveKitAdapterConfig(AdapterConfig):
    host: str = Field(default="http://localhost:7880", description="LiveKit server URL")
    api_key: Optional[str] = Field(default=None, description="LiveKit API key")
    api_secret: Optional[SecretStr] = Field(default=None, description="LiveKit API secret")
    empty_timeout: int = Field(default=300, description="Seconds an empty room is kept")
    departure_timeout: int = Field(default=20, description="Seconds kept after the last participant leaves")


class LiveKitAdapter(BaseStreamAdapter):
    """SFU-backed driver; every stream is a LiveKit room of the same name."""

    name = "livekit"
    config_model = LiveKitAdapterConfig

    @property
    def ws_url(self) -> str:
        host = self.config.host.rstrip("/")
        if host.startswith("https://"):
            return "wss://" + host[len("https://"):]
        if host.startswith("http://"):
            return "ws://" + host[len("http://"):]
        return host

    def _credentials(self) -> tuple:
        if not self.config.api_key or self.config.api_secret is None:
            raise ConfigurationError("LiveKit api_key and api_secret are required")
        return self.config.api_key, self.config.api_secret.get_secret_value()

    def create_token(self) -> str:
        """Sign an admin token for the room service.

        Raises:
            ConfigurationError: If credentials are missing
        """
        api_key, api_secret = self._credentials()
        now = datetime.now(timezone.utc)
        payload = {
            "iss": api_key,
            "sub": api_key,
            "nbf": now,
            "exp": now + TOKEN_TTL,
            "video": {"roomAdmin": True, "roomCreate": True, "roomList": True},
        }
        return jwt.encode(payload, api_secret, algorithm="HS256")

    async def _room_service(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.host.rstrip('/')}/{ROOM_SERVICE}/{method}"
        headers = {"Authorization": f"Bearer {self.create_token()}"}
        return await self._request_json("POST", url, payload=payload, headers=headers)

    async def connect(self) -> None:
        self._credentials()
        await self._room_service("ListRooms", {"names": []})
        logger.info(f"Connected to LiveKit at {self.config.host}")

    async def create_stream(self, options: CreateStreamOptions) -> Stream:
        stream_id = generate_stream_id()
        await self._room_service(
            "CreateRoom",
            {
                "name": stream_id,
                "empty_timeout": self.config.empty_timeout,
                "departure_timeout": self.config.departure_timeout,
            },
        )
        stream = Stream(
            id=stream_id,
            name=options.name,
            protocol=StreamProtocol.WEBRTC,
            room_id=options.room_id,
            publisher_url=self.ws_url,
            subscriber_urls={StreamProtocol.WEBRTC: self.ws_url},
        )
        self._register_stream(stream)
        logger.info(f"Created LiveKit room {stream_id} ({options.name})")
        return stream

    async def delete_stream(self, stream_id: str) -> None:
        self._forget_stream(stream_id)
        try:
            await self._room_service("DeleteRoom", {"room": stream_id})
        except StreamError as e:
            logger.warning(f"Remote delete of room {stream_id} failed, ignoring: {e}")
        logger.info(f"Deleted LiveKit room {stream_id}")

    async def _list_rooms(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        data = await self._room_service("ListRooms", {"names": names or []})
        return data.get("rooms") or []

    async def _sync(self) -> None:
        try:
            rooms = await self._list_rooms()
        except StreamError as e:
            logger.warning(f"LiveKit room listing failed, using local state: {e}")
            return

        for room in rooms:
            name = room.get("name")
            if not name:
                continue
            stream = self._streams.get(name)
            if stream is None:
                stream = self._register_stream(
                    Stream(
                        id=name,
                        name=name,
                        protocol=StreamProtocol.WEBRTC,
                        publisher_url=self.ws_url,
                        subscriber_urls={StreamProtocol.WEBRTC: self.ws_url},
                    )
                )
            participants = int(room.get("num_participants", 0) or 0)
            stream.status = StreamStatus.PUBLISHING if participants > 0 else StreamStatus.IDLE
            stream.touch()

    async def get_stream(self, stream_id: str) -> Optional[Stream]:
        await self._sync()
        return self._streams.get(stream_id)

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        await self._sync()
        return paginate(self._streams.values(), options)

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        self._require_stream(stream_id)
        rooms = await self._list_rooms([stream_id])
        room = next((r for r in rooms if r.get("name") == stream_id), None)
        if room is None:
            return StreamStatistics(stream_id=stream_id)
        created = int(room.get("creation_time", 0) or 0)
        return StreamStatistics(
            stream_id=stream_id,
            viewers=int(room.get("num_participants", 0) or 0),
            uptime=max(0.0, time.time() - created) if created else 0,
        )
