"""Stream manager: one backend driver plus in-memory rooms.

The backend is chosen once, at construction; an unknown name fails right
there with :class:`ConfigurationError`.
"""

from dataclasses import fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel

from streamhub.core.logging import get_logger
from streamhub.domain.exceptions import AdapterError, ErrorContext, StreamError, StreamNotFoundError
from streamhub.domain.models import (
    CreateRoomOptions,
    CreateStreamOptions,
    ListOptions,
    PublisherOptions,
    RecordingOptions,
    Room,
    Stream,
    StreamStatistics,
    SubscriberOptions,
    utc_now,
)
from streamhub.infrastructure.adapters.base import StreamAdapter
from streamhub.infrastructure.adapters.factory import create_adapter
from streamhub.sessions.publisher import Publisher
from streamhub.sessions.subscriber import Subscriber
from streamhub.utils.batch import BatchResult, batch_process
from streamhub.utils.ids import generate_room_id
from streamhub.utils.stream_cache import StreamCache

logger = get_logger(__name__)

_ROOM_FIELDS = {f.name for f in fields(Room)} - {"id", "created_at", "updated_at"}


class RoomNotFoundError(StreamError):
    """Raised when a room id is unknown."""

    def __init__(self, room_id: str):
        super().__init__(f"Room not found: {room_id}", context=ErrorContext(extra={"room_id": room_id}))
        self.room_id = room_id


class StreamManager:
    """Facade over one backend driver.

    Args:
        adapter: Backend name (``srs``, ``ffmpeg``, ``nginx-rtmp``,
            ``livekit`` or ``custom``)
        config: Driver configuration
        custom_adapter: Driver instance, required for ``custom``
        cache: Stream cache, a default one is created when omitted
        **adapter_kwargs: Passed to the driver constructor
    """

    def __init__(
        self,
        adapter: str,
        config: Optional[Union[BaseModel, Mapping[str, Any]]] = None,
        *,
        custom_adapter: Optional[StreamAdapter] = None,
        cache: Optional[StreamCache] = None,
        **adapter_kwargs: Any,
    ):
        self.adapter_name = adapter
        self.adapter = create_adapter(adapter, config, adapter=custom_adapter, **adapter_kwargs)
        self.cache = cache or StreamCache()
        self._rooms: Dict[str, Room] = {}
        logger.info("Stream manager ready", adapter=adapter)

    async def connect(self) -> None:
        connect = getattr(self.adapter, "connect", None)
        if connect is not None:
            await connect()

    async def disconnect(self) -> None:
        disconnect = getattr(self.adapter, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self.cache.clear()

    async def __aenter__(self) -> "StreamManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # Streams

    async def create_stream(self, options: CreateStreamOptions) -> Stream:
        stream = await self.adapter.create_stream(options)
        self.cache.set_stream(stream)
        if options.room_id is not None and options.room_id in self._rooms:
            self.add_stream_to_room(options.room_id, stream.id)
        logger.info("Stream created", stream_id=stream.id, protocol=stream.protocol.value)
        return stream

    async def get_stream(self, stream_id: str, *, refresh: bool = False) -> Optional[Stream]:
        if not refresh and not self.cache.needs_update(stream_id):
            cached = self.cache.get_stream(stream_id)
            if cached is not None:
                return cached
        stream = await self.adapter.get_stream(stream_id)
        if stream is not None:
            self.cache.set_stream(stream)
        return stream

    async def delete_stream(self, stream_id: str) -> None:
        await self.adapter.delete_stream(stream_id)
        self.cache.invalidate(stream_id)
        for room in self._rooms.values():
            if stream_id in room.stream_ids:
                room.stream_ids.remove(stream_id)
                room.updated_at = utc_now()
        logger.info("Stream deleted", stream_id=stream_id)

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        streams = await self.adapter.list_streams(options)
        for stream in streams:
            self.cache.set_stream(stream)
        return streams

    async def create_publisher(
        self, stream_id: str, options: Optional[PublisherOptions] = None
    ) -> Publisher:
        return await self.adapter.create_publisher(stream_id, options)

    async def create_subscriber(
        self, stream_id: str, options: Optional[SubscriberOptions] = None
    ) -> Subscriber:
        return await self.adapter.create_subscriber(stream_id, options)

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        cached = self.cache.get_stats(stream_id)
        if cached is not None:
            return cached
        stats = await self.adapter.get_statistics(stream_id)
        self.cache.set_stats(stats)
        return stats

    # Recording

    async def start_recording(self, stream_id: str, options: Optional[RecordingOptions] = None) -> Any:
        start = getattr(self.adapter, "start_recording", None)
        if start is None:
            raise AdapterError(
                f"Adapter '{self.adapter_name}' does not support recording",
                context=ErrorContext(stream_id=stream_id, operation="start_recording"),
            )
        return await start(stream_id, options)

    async def stop_recording(self, stream_id: str) -> Any:
        stop = getattr(self.adapter, "stop_recording", None)
        if stop is None:
            raise AdapterError(
                f"Adapter '{self.adapter_name}' does not support recording",
                context=ErrorContext(stream_id=stream_id, operation="stop_recording"),
            )
        return await stop(stream_id)

    # Batches

    async def batch_create_streams(
        self, options: Sequence[CreateStreamOptions], concurrency: int = 5
    ) -> BatchResult[Stream]:
        return await batch_process(options, self.create_stream, concurrency, continue_on_error=True)

    async def batch_delete_streams(
        self, stream_ids: Sequence[str], concurrency: int = 5
    ) -> BatchResult[None]:
        return await batch_process(stream_ids, self.delete_stream, concurrency, continue_on_error=True)

    async def batch_get_streams(
        self, stream_ids: Sequence[str], concurrency: int = 5
    ) -> BatchResult[Optional[Stream]]:
        return await batch_process(stream_ids, self.get_stream, concurrency, continue_on_error=True)

    # Rooms

    def create_room(self, options: CreateRoomOptions) -> Room:
        room = Room(
            id=generate_room_id(),
            name=options.name,
            description=options.description,
            max_viewers=options.max_viewers,
            is_private=options.is_private,
        )
        self._rooms[room.id] = room
        logger.info("Room created", room_id=room.id, name=room.name)
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def _require_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def update_room(self, room_id: str, **changes: Any) -> Room:
        room = self._require_room(room_id)
        unknown = set(changes) - _ROOM_FIELDS
        if unknown:
            raise ValueError(f"Unknown room fields: {sorted(unknown)}")
        for name, value in changes.items():
            setattr(room, name, value)
        room.updated_at = utc_now()
        return room

    def delete_room(self, room_id: str) -> None:
        self._require_room(room_id)
        del self._rooms[room_id]
        logger.info("Room deleted", room_id=room_id)

    def list_rooms(self, options: Optional[ListOptions] = None) -> List[Room]:
        options = options or ListOptions()
        rooms = list(self._rooms.values())
        for key, expected in options.filter.items():
            rooms = [r for r in rooms if getattr(r, key, None) == expected]
        end = None if options.limit is None else options.offset + options.limit
        return rooms[options.offset:end]

    def add_stream_to_room(self, room_id: str, stream_id: str) -> Room:
        room = self._require_room(room_id)
        if stream_id not in room.stream_ids:
            room.stream_ids.append(stream_id)
            room.updated_at = utc_now()
        return room

    def remove_stream_from_room(self, room_id: str, stream_id: str) -> Room:
        room = self._require_room(room_id)
        if stream_id not in room.stream_ids:
            raise StreamNotFoundError(stream_id, context=ErrorContext(stream_id=stream_id, extra={"room_id": room_id}))
        room.stream_ids.remove(stream_id)
        room.updated_at = utc_now()
        return room
