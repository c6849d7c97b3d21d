"""Pytest configuration and fixtures."""

import asyncio
import signal
from dataclasses import dataclass, field
from typing import List, Optional
from unittest.mock import patch

import pytest

from streamhub.infrastructure.media.process import ProcessController
from streamhub.sessions.channel import ChannelHub, InProcessChannel
from streamhub.utils.protocol import clear_protocol_cache


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``."""

    def __init__(
        self,
        pid: int = 4242,
        exit_on_term: bool = True,
        exit_code: Optional[int] = None,
    ):
        self.pid = pid
        self.stderr = None
        self.returncode: Optional[int] = None
        self.exit_on_term = exit_on_term
        self.signals: List[int] = []
        self._exited = asyncio.Event()
        if exit_code is not None:
            self.exit(exit_code)

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def send_signal(self, sig: int) -> None:
        if self.returncode is not None:
            raise ProcessLookupError(self.pid)
        self.signals.append(sig)
        if sig == signal.SIGKILL or self.exit_on_term:
            self.exit(-sig)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


@dataclass
class SpawnRecorder:
    """Commands passed to ``create_subprocess_exec`` and the fakes returned."""

    commands: List[List[str]] = field(default_factory=list)
    processes: List[FakeProcess] = field(default_factory=list)
    exit_on_term: bool = True
    exit_code: Optional[int] = None
    error: Optional[BaseException] = None

    async def __call__(self, *cmd, **kwargs) -> FakeProcess:
        if self.error is not None:
            raise self.error
        self.commands.append(list(cmd))
        process = FakeProcess(
            pid=1000 + len(self.processes),
            exit_on_term=self.exit_on_term,
            exit_code=self.exit_code,
        )
        self.processes.append(process)
        return process

    @property
    def last_command(self) -> List[str]:
        return self.commands[-1]


@pytest.fixture
def spawner():
    """Replace subprocess creation with in-memory fakes."""
    recorder = SpawnRecorder()
    with patch("asyncio.create_subprocess_exec", new=recorder):
        yield recorder


@pytest.fixture
def controller() -> ProcessController:
    return ProcessController(binary="ffmpeg", startup_grace=0, graceful_timeout=0.1)


@pytest.fixture(autouse=True)
def fresh_protocol_cache():
    clear_protocol_cache()
    yield
    clear_protocol_cache()


@pytest.fixture
def media_file(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return path


@pytest.fixture
def hub() -> ChannelHub:
    return ChannelHub()


@pytest.fixture
def session_kwargs(controller, hub):
    """Keyword arguments that keep a session on fakes and a private hub."""
    return {
        "controller": controller,
        "channel_factory": lambda url: InProcessChannel(url, hub),
    }


class FakeResponse:
    """Async context manager mimicking an aiohttp response."""

    def __init__(self, status: int = 200, body: str = ""):
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeHTTPSession:
    """Records requests and replays queued responses or errors."""

    def __init__(self):
        self.closed = False
        self.requests: List[tuple] = []
        self.responses: List[object] = []

    def queue(self, status: int = 200, body: str = "") -> None:
        self.responses.append(FakeResponse(status, body))

    def fail(self, error: BaseException) -> None:
        self.responses.append(error)

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def http_session() -> FakeHTTPSession:
    return FakeHTTPSession()
