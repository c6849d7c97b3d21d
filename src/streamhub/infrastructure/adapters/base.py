"""Backend adapter contract and shared implementation.

Every backend driver exposes the same stream CRUD surface and hands out
:class:`Publisher`/:class:`Subscriber` sessions bound to its streams.
Drivers keep a local map of known streams; drivers fronting a remote server
also merge the server's listing into that map on reads.
"""

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Protocol, Type, Union, runtime_checkable

from aiohttp import ClientError, ClientSession, ClientTimeout
from pydantic import BaseModel, Field, ValidationError

from streamhub.domain.exceptions import (
    AdapterError,
    ConfigurationError,
    ConnectionError,
    ErrorContext,
    StreamAlreadyExistsError,
    StreamNotFoundError,
)
from streamhub.domain.models import (
    CreateStreamOptions,
    ListOptions,
    PublisherOptions,
    Stream,
    StreamStatistics,
    SubscriberOptions,
)
from streamhub.infrastructure.media.process import ProcessController, ProcessHandle
from streamhub.sessions.channel import ChannelFactory
from streamhub.sessions.publisher import Publisher
from streamhub.sessions.subscriber import Subscriber

logger = logging.getLogger(__name__)


class AdapterConfig(BaseModel):
    """Settings common to every driver."""

    host: str = Field(default="localhost", description="Media server host")
    app: str = Field(default="live", description="Application name in stream URLs")
    timeout: float = Field(default=10.0, description="HTTP request timeout in seconds")


@runtime_checkable
class StreamAdapter(Protocol):
    """Uniform stream contract implemented by every backend."""

    @property
    def name(self) -> str:
        ...

    async def create_stream(self, options: CreateStreamOptions) -> Stream:
        """Register a new stream.

        Raises:
            StreamAlreadyExistsError: If the id is taken
            AdapterError: If the backend rejects the stream
        """
        ...

    async def get_stream(self, stream_id: str) -> Optional[Stream]:
        ...

    async def delete_stream(self, stream_id: str) -> None:
        """Forget a stream, removing it from the backend where possible.

        Unknown ids are ignored; the remote resource may already be gone.
        """
        ...

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        ...

    async def create_publisher(
        self, stream_id: str, options: Optional[PublisherOptions] = None
    ) -> Publisher:
        ...

    async def create_subscriber(
        self, stream_id: str, options: Optional[SubscriberOptions] = None
    ) -> Subscriber:
        ...

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        ...


class BaseStreamAdapter:
    """Local stream map, HTTP session and session construction."""

    name: ClassVar[str] = "base"
    config_model: ClassVar[Type[AdapterConfig]] = AdapterConfig

    def __init__(
        self,
        config: Optional[Union[AdapterConfig, Mapping[str, Any]]] = None,
        *,
        session: Optional[ClientSession] = None,
        controller: Optional[ProcessController] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ):
        self.config = self._load_config(config)
        self._session = session
        self._session_owned = session is None
        self.controller = controller or ProcessController()
        self._channel_factory = channel_factory
        self._streams: Dict[str, Stream] = {}
        self._stream_keys: Dict[str, str] = {}
        self._processes: Dict[str, ProcessHandle] = {}
        logger.info(f"Initialized {self.__class__.__name__}")

    @classmethod
    def _load_config(cls, config: Optional[Union[AdapterConfig, Mapping[str, Any]]]) -> AdapterConfig:
        if isinstance(config, cls.config_model):
            return config
        if isinstance(config, BaseModel):
            config = config.model_dump()
        try:
            return cls.config_model.model_validate(dict(config or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid {cls.name} adapter configuration: {e}", cause=e) from e

    @property
    def session(self) -> ClientSession:
        """Get the HTTP session, creating one if necessary."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=self.config.timeout))
            self._session_owned = True
        return self._session

    @property
    def processes(self) -> Dict[str, ProcessHandle]:
        return dict(self._processes)

    async def connect(self) -> None:
        """Verify the backend is reachable. Drivers without a server do nothing."""

    async def disconnect(self) -> None:
        if self._session_owned and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send a JSON request and decode the JSON reply.

        Raises:
            ConnectionError: If the server cannot be reached
            AdapterError: If the server answers with an HTTP error
        """
        try:
            async with self.session.request(
                method, url, json=payload, headers=dict(headers or {})
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    raise AdapterError(
                        f"{self.name} API {method} {url} returned {response.status}: {body[:200]}",
                        context=ErrorContext(operation=f"{method} {url}"),
                    )
        except (ClientError, asyncio.TimeoutError) as e:
            raise ConnectionError(
                f"{self.name} API {method} {url} failed: {e}",
                context=ErrorContext(operation=f"{method} {url}"),
                cause=e,
            ) from e

        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError as e:
            raise AdapterError(f"{self.name} API returned invalid JSON", cause=e) from e

    # Local bookkeeping

    def _register_stream(self, stream: Stream, stream_key: Optional[str] = None) -> Stream:
        if stream.id in self._streams:
            raise StreamAlreadyExistsError(stream.id)
        self._streams[stream.id] = stream
        self._stream_keys[stream.id] = stream_key or stream.id
        return stream

    def _forget_stream(self, stream_id: str) -> Optional[Stream]:
        self._stream_keys.pop(stream_id, None)
        return self._streams.pop(stream_id, None)

    def stream_key(self, stream_id: str) -> str:
        return self._stream_keys.get(stream_id, stream_id)

    def _find_by_key(self, stream_key: str) -> Optional[Stream]:
        for stream_id, key in self._stream_keys.items():
            if key == stream_key:
                return self._streams.get(stream_id)
        return None

    def _require_stream(self, stream_id: str) -> Stream:
        stream = self._streams.get(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)
        return stream

    def register_process(self, stream_id: str, handle: ProcessHandle) -> None:
        """Remember a process spawned on behalf of ``stream_id``."""
        self._processes[stream_id] = handle
        logger.debug(f"Tracking pid {handle.pid} for {stream_id}")

    def unregister_process(self, stream_id: str) -> Optional[ProcessHandle]:
        return self._processes.pop(stream_id, None)

    # Default operations

    async def get_stream(self, stream_id: str) -> Optional[Stream]:
        return self._streams.get(stream_id)

    async def list_streams(self, options: Optional[ListOptions] = None) -> List[Stream]:
        return paginate(self._streams.values(), options)

    async def delete_stream(self, stream_id: str) -> None:
        if self._forget_stream(stream_id) is not None:
            logger.info(f"Deleted stream {stream_id}")

    async def get_statistics(self, stream_id: str) -> StreamStatistics:
        self._require_stream(stream_id)
        handle = self._processes.get(stream_id)
        uptime = handle.uptime if handle is not None and handle.running else 0
        return StreamStatistics(stream_id=stream_id, uptime=uptime)

    async def create_publisher(
        self, stream_id: str, options: Optional[PublisherOptions] = None
    ) -> Publisher:
        stream = await self._resolve_stream(stream_id)
        options = replace(options) if options else PublisherOptions()
        if options.url is None:
            options.url = stream.publisher_url
        return Publisher(stream_id, options, **self._session_kwargs())

    async def create_subscriber(
        self, stream_id: str, options: Optional[SubscriberOptions] = None
    ) -> Subscriber:
        stream = await self._resolve_stream(stream_id)
        options = replace(options) if options else SubscriberOptions()
        if options.url is None:
            options.url = stream.subscriber_urls.get(stream.protocol) or next(
                iter(stream.subscriber_urls.values()), None
            )
        return Subscriber(stream_id, options, **self._session_kwargs())

    async def _resolve_stream(self, stream_id: str) -> Stream:
        stream = await self.get_stream(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)
        return stream

    def _session_kwargs(self) -> Dict[str, Any]:
        return {
            "controller": self.controller,
            "channel_factory": self._channel_factory,
            "register_process": self.register_process,
        }


def paginate(streams: Iterable[Stream], options: Optional[ListOptions] = None) -> List[Stream]:
    """Filter by ``options.filter`` (attribute equality), then slice."""
    options = options or ListOptions()
    result = list(streams)
    for key, expected in options.filter.items():
        result = [s for s in result if getattr(s, key, None) == expected]
    end = None if options.limit is None else options.offset + options.limit
    return result[options.offset:end]
