"""External process lifecycle.

:class:`ProcessController` spawns commands with
``asyncio.create_subprocess_exec`` and stops them gracefully first
(SIGTERM), forcefully second (SIGKILL). Stopping never raises.

:func:`time_boxed` is the one place where an awaitable is bounded by a
timeout; cleanup code runs each of its steps through it.
"""

import asyncio
import logging
import shlex
import signal
import subprocess
import time
from collections import deque
from typing import Any, Awaitable, Deque, List, Optional, Sequence

from streamhub.core.config import get_settings
from streamhub.domain.exceptions import ConnectionError, ErrorContext

logger = logging.getLogger(__name__)

_STDERR_TAIL_LINES = 20


async def time_boxed(awaitable: Awaitable[Any], timeout: float, label: str) -> bool:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Timeouts and ordinary exceptions are logged and swallowed; task
    cancellation still propagates.

    Returns:
        bool: True if the awaitable finished without error in time
    """
    try:
        await asyncio.wait_for(awaitable, timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning(f"{label} timed out after {timeout}s")
    except Exception as e:
        logger.warning(f"{label} failed: {e}")
    return False


class ProcessHandle:
    """Handle over one spawned process."""

    def __init__(self, process: asyncio.subprocess.Process, command: Sequence[str]):
        self._process = process
        self.command: List[str] = list(command)
        self.started_at = time.monotonic()
        self._stderr_tail: Deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._drain_task: Optional[asyncio.Task] = None
        if process.stderr is not None:
            self._drain_task = asyncio.create_task(self._drain_stderr())

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Send ``sig`` to the process.

        Raises:
            ProcessLookupError: If the process is already gone
        """
        self._process.send_signal(sig)

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        returncode = await self._process.wait()
        if self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task}, timeout=1.0)
        return returncode

    async def _drain_stderr(self) -> None:
        # keep the pipe flowing so ffmpeg never blocks on a full buffer
        try:
            async for line in self._process.stderr:
                self._stderr_tail.append(line.decode(errors="replace").rstrip())
        except Exception as e:
            logger.debug(f"Stopped reading stderr of pid {self.pid}: {e}")

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, returncode={self.returncode})"


class ProcessController:
    """Spawn and stop external commands.

    Args:
        binary: Default executable, defaults to the configured ffmpeg
        startup_grace: Seconds to watch a new process for an early failure,
            0 disables the probe
        graceful_timeout: Seconds between SIGTERM and SIGKILL
    """

    def __init__(
        self,
        binary: Optional[str] = None,
        startup_grace: Optional[float] = None,
        graceful_timeout: Optional[float] = None,
    ):
        config = get_settings().ffmpeg
        self.binary = binary or config.binary
        self.startup_grace = startup_grace if startup_grace is not None else config.startup_grace
        self.graceful_timeout = (
            graceful_timeout if graceful_timeout is not None else config.graceful_stop_timeout
        )

    async def spawn(
        self,
        args: Sequence[str],
        *,
        command: Optional[str] = None,
        stream_id: Optional[str] = None,
    ) -> ProcessHandle:
        """Start ``command args...``.

        Raises:
            ConnectionError: If the OS refuses to start the process, or it
                exits with an error during the startup grace period
        """
        cmd = [command or self.binary, *args]
        logger.info(f"Starting process: {shlex.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start {cmd[0]}: {e}")
            raise ConnectionError(
                f"Failed to start {cmd[0]}: {e}",
                context=ErrorContext(stream_id=stream_id, operation="spawn"),
                cause=e,
            ) from e

        handle = ProcessHandle(process, cmd)
        logger.info(f"Process started with PID: {handle.pid}")

        if self.startup_grace > 0:
            await self._probe_startup(handle, stream_id)

        return handle

    async def _probe_startup(self, handle: ProcessHandle, stream_id: Optional[str]) -> None:
        try:
            returncode = await asyncio.wait_for(handle.wait(), timeout=self.startup_grace)
        except asyncio.TimeoutError:
            return

        if returncode != 0:
            name = handle.command[0]
            detail = handle.stderr_tail or "no output"
            logger.error(f"{name} exited with code {returncode} during startup: {detail}")
            cause = RuntimeError(f"{name} exited with code {returncode}: {detail}")
            raise ConnectionError(
                f"{name} failed to start (exit code {returncode})",
                context=ErrorContext(
                    stream_id=stream_id, operation="spawn", extra={"returncode": returncode}
                ),
                cause=cause,
            ) from cause

    async def stop(self, handle: Optional[ProcessHandle], timeout: Optional[float] = None) -> None:
        """Terminate ``handle``, escalating to SIGKILL after ``timeout``."""
        if handle is None or not handle.running:
            return
        timeout = timeout if timeout is not None else self.graceful_timeout

        try:
            handle.kill(signal.SIGTERM)
        except ProcessLookupError:
            return
        except Exception as e:
            logger.warning(f"Failed to send SIGTERM to pid {handle.pid}: {e}")

        try:
            await asyncio.wait_for(handle.wait(), timeout=timeout)
            logger.info(f"Process {handle.pid} exited with code {handle.returncode}")
            return
        except asyncio.TimeoutError:
            logger.warning(f"Process {handle.pid} did not exit after {timeout}s, killing")
        except Exception as e:
            logger.warning(f"Error waiting for pid {handle.pid}: {e}")

        try:
            handle.kill(signal.SIGKILL)
            await asyncio.wait_for(handle.wait(), timeout=timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.error(f"Process {handle.pid} survived SIGKILL for {timeout}s")
        except Exception as e:
            logger.warning(f"Error killing pid {handle.pid}: {e}")
