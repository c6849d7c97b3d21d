"""Behaviour shared by publisher and subscriber sessions.

A session owns one stream's runtime lifecycle: its status, an optional
control channel, at most one primary process, an optional auxiliary process
and a :class:`ResourceGuard` for temp artifacts. Sessions are single-owner;
callers serialize their own access.
"""

import logging
import time
from dataclasses import fields
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar, Union

from streamhub.core.config import TimeoutConfig, get_settings
from streamhub.domain.exceptions import ConfigurationError, SessionStateError
from streamhub.domain.models import PublisherOptions, SubscriberOptions
from streamhub.domain.state import can_transition
from streamhub.infrastructure.media.process import ProcessController, ProcessHandle, time_boxed
from streamhub.infrastructure.media.resources import ResourceGuard, ResourceKind
from streamhub.sessions.channel import ChannelFactory, ControlChannel, in_process_channel
from streamhub.sessions.events import (
    Connected,
    Connecting,
    Disconnected,
    ErrorEvent,
    EventBus,
    EventKind,
    Listener,
)

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)

RegisterProcess = Callable[[str, ProcessHandle], Any]
CleanupStep = Tuple[str, Callable[[], Awaitable[Any]], float]


class BaseSession(Generic[S]):
    """Status bookkeeping, control channel and the stop sequence."""

    role: ClassVar[str] = "session"
    status_enum: ClassVar[Type[Enum]]
    state_error: ClassVar[Type[SessionStateError]]
    topic_prefix: ClassVar[str]

    def __init__(
        self,
        stream_id: str,
        *,
        controller: Optional[ProcessController] = None,
        channel_factory: Optional[ChannelFactory] = None,
        register_process: Optional[RegisterProcess] = None,
        timeouts: Optional[TimeoutConfig] = None,
    ):
        self.stream_id = stream_id
        self.url: Optional[str] = None
        self.events = EventBus()
        self.controller = controller or ProcessController()
        self.resources = ResourceGuard()
        self.timeouts = timeouts or get_settings().timeouts
        self._channel_factory = channel_factory or in_process_channel
        self._register_process = register_process
        self._status: S = self.status_enum("idle")
        self._channel: Optional[ControlChannel] = None
        self._primary: Optional[ProcessHandle] = None
        self._auxiliary: Optional[ProcessHandle] = None
        self._connected_at: Optional[float] = None

    @property
    def status(self) -> S:
        return self._status

    @property
    def process(self) -> Optional[ProcessHandle]:
        """The primary process, if one is running on behalf of this session."""
        return self._primary

    @property
    def channel(self) -> Optional[ControlChannel]:
        return self._channel

    # Events

    def on(self, kind: Union[EventKind, str], listener: Listener) -> Listener:
        return self.events.on(kind, listener)

    def off(self, kind: Union[EventKind, str], listener: Listener) -> bool:
        return self.events.off(kind, listener)

    def remove_all_listeners(self, kind: Optional[Union[EventKind, str]] = None) -> None:
        self.events.remove_all_listeners(kind)

    # State

    def _require(self, operation: str, *expected: S) -> None:
        if self._status not in expected:
            raise self.state_error(
                self._status, expected, stream_id=self.stream_id, operation=operation
            )

    def _set_status(self, new: S) -> None:
        if new == self._status:
            return
        if not can_transition(self._status, new):
            raise self.state_error(
                self._status,
                self._sources_of(new),
                stream_id=self.stream_id,
                operation=f"move to {new.value}",
            )
        logger.debug(f"{self.role} {self.stream_id}: {self._status.value} -> {new.value}")
        self._status = new

    def _sources_of(self, target: S) -> List[S]:
        return [state for state in self.status_enum if can_transition(state, target)]

    async def _fail(self, error: BaseException) -> None:
        logger.error(f"{self.role} {self.stream_id} failed: {error}")
        self._set_status(self.status_enum("error"))
        await self.events.emit(ErrorEvent(stream_id=self.stream_id, error=error))

    # Connection

    async def connect(
        self,
        url: Optional[str] = None,
        options: Optional[Union[PublisherOptions, SubscriberOptions]] = None,
    ) -> None:
        """Open the control channel for ``url``.

        Fields of ``options`` that differ from their defaults are merged into
        the session options before connecting.

        Raises:
            SessionStateError: If the session is not idle
            ConfigurationError: If no URL is known
        """
        self._require("connect", self.status_enum("idle"))
        if options is not None:
            self._merge_options(options)
        url = url or self.options.url or self.url
        if not url:
            raise ConfigurationError(f"No URL given for {self.role} {self.stream_id}")

        self.url = url
        self._set_status(self.status_enum("connecting"))
        await self.events.emit(Connecting(stream_id=self.stream_id, url=url))

        channel = self._channel_factory(url)
        try:
            await channel.open()
            self._on_channel_open(channel)
        except Exception as e:
            await time_boxed(channel.close(), self.timeouts.channel_close, "Control channel close")
            await self._fail(e)
            raise

        self._channel = channel
        self._connected_at = time.monotonic()
        self._set_status(self.status_enum("connected"))
        logger.info(f"{self.role} {self.stream_id} connected to {url}")
        await self.events.emit(Connected(stream_id=self.stream_id, url=url))

    def _merge_options(self, options: Union[PublisherOptions, SubscriberOptions]) -> None:
        if not isinstance(options, type(self.options)):
            raise ConfigurationError(
                f"{self.role} expects {type(self.options).__name__}, got {type(options).__name__}"
            )
        defaults = type(options)()
        for f in fields(options):
            value = getattr(options, f.name)
            if value != getattr(defaults, f.name):
                setattr(self.options, f.name, value)

    def _on_channel_open(self, channel: ControlChannel) -> None:
        """Hook for registering inbound channel handlers."""

    async def _notify(self, action: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Best-effort control channel notification."""
        if self._channel is None or not self._channel.is_open:
            return
        message = {"streamId": self.stream_id, **(payload or {})}
        await time_boxed(
            self._channel.emit(f"{self.topic_prefix}:{action}", message),
            self.timeouts.channel_close,
            f"{self.role} {action} notification",
        )

    def _track_process(self, handle: ProcessHandle) -> ProcessHandle:
        if self._register_process is not None:
            self._register_process(self.stream_id, handle)
        return handle

    # Shutdown

    async def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        if channel.is_open:
            await channel.emit(f"{self.topic_prefix}:stop", {"streamId": self.stream_id})
        await channel.close()

    async def _stop_primary(self) -> None:
        handle, self._primary = self._primary, None
        await self.controller.stop(handle)

    async def _stop_auxiliary(self) -> None:
        handle, self._auxiliary = self._auxiliary, None
        await self.controller.stop(handle)

    async def _release(self, kind: Optional[ResourceKind] = None) -> None:
        self.resources.release(kind)

    def _cleanup_steps(self) -> Iterable[CleanupStep]:
        raise NotImplementedError

    async def stop(self) -> None:
        """Tear the session down.

        Runs the cleanup steps in order, each time-boxed with failures
        logged and skipped, then reports ``disconnected`` and drops all
        listeners. Stopping an idle or stopped session does nothing.

        Raises:
            SessionStateError: If stopping is not allowed from the current
                state. Nothing has been cleaned up in that case.
        """
        if self._status in (self.status_enum("idle"), self.status_enum("stopped")):
            return

        stopped = self.status_enum("stopped")
        if not can_transition(self._status, stopped):
            raise self.state_error(
                self._status, self._sources_of(stopped), stream_id=self.stream_id, operation="stop"
            )

        logger.info(f"Stopping {self.role} {self.stream_id}")
        attempted = False
        for label, step, timeout in self._cleanup_steps():
            try:
                awaitable = step()
            except Exception:
                if not attempted:
                    raise
                logger.exception(f"{label} could not run")
                continue
            attempted = True
            await time_boxed(awaitable, timeout, label)

        self._status = stopped
        self._connected_at = None
        logger.info(f"{self.role} {self.stream_id} stopped")
        await self.events.emit(Disconnected(stream_id=self.stream_id))
        self.events.remove_all_listeners()
