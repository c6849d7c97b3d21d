"""Status transition tables.

Each status enum has a table mapping a state to the set of states it may
move to next. Sessions consult these before every status change.
"""

from enum import Enum
from typing import Dict, FrozenSet, Type, TypeVar

from streamhub.domain.models import PublisherStatus, StreamStatus, SubscriberStatus

S = TypeVar("S", bound=Enum)

STREAM_TRANSITIONS: Dict[StreamStatus, FrozenSet[StreamStatus]] = {
    StreamStatus.IDLE: frozenset(
        {StreamStatus.PUBLISHING, StreamStatus.PLAYING, StreamStatus.STOPPED}
    ),
    StreamStatus.PUBLISHING: frozenset({StreamStatus.STOPPED, StreamStatus.ERROR}),
    StreamStatus.PLAYING: frozenset({StreamStatus.STOPPED, StreamStatus.ERROR}),
    StreamStatus.STOPPED: frozenset({StreamStatus.IDLE}),
    StreamStatus.ERROR: frozenset({StreamStatus.IDLE, StreamStatus.STOPPED}),
}

PUBLISHER_TRANSITIONS: Dict[PublisherStatus, FrozenSet[PublisherStatus]] = {
    PublisherStatus.IDLE: frozenset({PublisherStatus.CONNECTING}),
    PublisherStatus.CONNECTING: frozenset(
        {PublisherStatus.CONNECTED, PublisherStatus.ERROR}
    ),
    PublisherStatus.CONNECTED: frozenset(
        {PublisherStatus.PUBLISHING, PublisherStatus.STOPPED, PublisherStatus.ERROR}
    ),
    PublisherStatus.PUBLISHING: frozenset(
        {PublisherStatus.STOPPED, PublisherStatus.ERROR}
    ),
    PublisherStatus.STOPPED: frozenset({PublisherStatus.IDLE}),
    PublisherStatus.ERROR: frozenset({PublisherStatus.IDLE, PublisherStatus.STOPPED}),
}

SUBSCRIBER_TRANSITIONS: Dict[SubscriberStatus, FrozenSet[SubscriberStatus]] = {
    SubscriberStatus.IDLE: frozenset({SubscriberStatus.CONNECTING}),
    SubscriberStatus.CONNECTING: frozenset(
        {SubscriberStatus.CONNECTED, SubscriberStatus.ERROR}
    ),
    SubscriberStatus.CONNECTED: frozenset(
        {SubscriberStatus.PLAYING, SubscriberStatus.STOPPED, SubscriberStatus.ERROR}
    ),
    SubscriberStatus.PLAYING: frozenset(
        {SubscriberStatus.BUFFERING, SubscriberStatus.STOPPED, SubscriberStatus.ERROR}
    ),
    SubscriberStatus.BUFFERING: frozenset(
        {SubscriberStatus.PLAYING, SubscriberStatus.STOPPED, SubscriberStatus.ERROR}
    ),
    SubscriberStatus.STOPPED: frozenset({SubscriberStatus.IDLE}),
    SubscriberStatus.ERROR: frozenset(
        {SubscriberStatus.IDLE, SubscriberStatus.STOPPED}
    ),
}

_TABLES: Dict[Type[Enum], Dict] = {
    StreamStatus: STREAM_TRANSITIONS,
    PublisherStatus: PUBLISHER_TRANSITIONS,
    SubscriberStatus: SUBSCRIBER_TRANSITIONS,
}

_ACTIVE = frozenset(
    {
        "connecting",
        "connected",
        "publishing",
        "playing",
        "buffering",
    }
)


def valid_transitions(state: S) -> FrozenSet[S]:
    """Get the states reachable from ``state`` in one step."""
    table = _TABLES[type(state)]
    return table.get(state, frozenset())


def can_transition(from_state: S, to_state: S) -> bool:
    """Check whether ``from_state -> to_state`` is in the state's table."""
    if type(from_state) is not type(to_state):
        return False
    return to_state in valid_transitions(from_state)


def is_active_status(state: Enum) -> bool:
    """True while a stream or session is doing work."""
    return state.value in _ACTIVE


def is_error_status(state: Enum) -> bool:
    return state.value == "error"
