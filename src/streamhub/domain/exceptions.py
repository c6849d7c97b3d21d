"""Stream error taxonomy.

Every error raised by streamhub derives from :class:`StreamError` and carries
a machine-readable :class:`ErrorCode`, structured :class:`ErrorContext` and,
where one exists, the underlying cause (also chained via ``raise ... from``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    STREAM_NOT_FOUND = "STREAM_NOT_FOUND"
    STREAM_ALREADY_EXISTS = "STREAM_ALREADY_EXISTS"
    PUBLISHER_STATE_ERROR = "PUBLISHER_STATE_ERROR"
    SUBSCRIBER_STATE_ERROR = "SUBSCRIBER_STATE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    PROTOCOL_NOT_SUPPORTED = "PROTOCOL_NOT_SUPPORTED"
    ADAPTER_ERROR = "ADAPTER_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ErrorContext:
    """Structured error context."""

    stream_id: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        result: Dict[str, Any] = {}
        if self.stream_id is not None:
            result["stream_id"] = self.stream_id
        if self.operation:
            result["operation"] = self.operation
        if self.extra:
            result.update(self.extra)
        return result


class StreamError(Exception):
    """Base exception for all streamhub errors."""

    code: ErrorCode = ErrorCode.ADAPTER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.context.stream_id is not None:
            parts.append(f"[stream:{self.context.stream_id}]")
        if self.cause is not None:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " - ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code.value!r}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        result: Dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result


class StreamNotFoundError(StreamError):
    """Raised when a stream id is unknown to the backend."""

    code = ErrorCode.STREAM_NOT_FOUND

    def __init__(self, stream_id: str, **kwargs):
        kwargs.setdefault("context", ErrorContext(stream_id=stream_id))
        super().__init__(f"Stream not found: {stream_id}", **kwargs)
        self.stream_id = stream_id


class StreamAlreadyExistsError(StreamError):
    """Raised when a stream id is already registered."""

    code = ErrorCode.STREAM_ALREADY_EXISTS

    def __init__(self, stream_id: str, **kwargs):
        kwargs.setdefault("context", ErrorContext(stream_id=stream_id))
        super().__init__(f"Stream already exists: {stream_id}", **kwargs)
        self.stream_id = stream_id


class SessionStateError(StreamError):
    """A session method was called in the wrong state.

    Both the current state and the state(s) the operation requires are
    included in the message and kept as attributes.
    """

    role = "Session"

    def __init__(
        self,
        current: Union[str, Enum],
        expected: Union[str, Enum, Iterable[Union[str, Enum]]],
        *,
        stream_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.current = _state_name(current)
        if isinstance(expected, (str, Enum)):
            self.expected = [_state_name(expected)]
        else:
            self.expected = [_state_name(state) for state in expected]

        action = f"cannot {operation}" if operation else "invalid state"
        message = (
            f"{self.role} {action}: current state is '{self.current}', "
            f"expected {' or '.join(repr(s) for s in self.expected)}"
        )
        super().__init__(
            message,
            context=ErrorContext(
                stream_id=stream_id,
                operation=operation,
                extra={"current_state": self.current, "expected_states": self.expected},
            ),
        )


class PublisherStateError(SessionStateError):
    """Publisher precondition violated."""

    code = ErrorCode.PUBLISHER_STATE_ERROR
    role = "Publisher"


class SubscriberStateError(SessionStateError):
    """Subscriber precondition violated."""

    code = ErrorCode.SUBSCRIBER_STATE_ERROR
    role = "Subscriber"


class ConnectionError(StreamError):
    """Transport, control channel or process spawn failure."""

    code = ErrorCode.CONNECTION_ERROR


class ProtocolNotSupportedError(StreamError):
    """Protocol is unknown or unsupported for the requested operation."""

    code = ErrorCode.PROTOCOL_NOT_SUPPORTED

    def __init__(self, protocol: Any, message: Optional[str] = None, **kwargs):
        self.protocol = _state_name(protocol) if protocol is not None else None
        super().__init__(message or f"Protocol not supported: {self.protocol}", **kwargs)


class AdapterError(StreamError):
    """Backend driver failure or missing capability."""

    code = ErrorCode.ADAPTER_ERROR


class ConfigurationError(StreamError):
    """Invalid or missing configuration."""

    code = ErrorCode.CONFIGURATION_ERROR


class PoolExhaustedError(ConnectionError):
    """Connection pool is at capacity and nothing idle could be evicted."""


def _state_name(state: Union[str, Enum]) -> str:
    return state.value if isinstance(state, Enum) else str(state)
