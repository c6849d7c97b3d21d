"""Tests for process spawning, stopping and time boxing."""

import asyncio
import signal

import pytest

from streamhub.domain.exceptions import ConnectionError
from streamhub.infrastructure.media.process import ProcessController, time_boxed


class TestSpawn:
    """Starting processes."""

    @pytest.mark.asyncio
    async def test_spawn_prefixes_binary(self, spawner, controller):
        handle = await controller.spawn(["-i", "in.mp4", "out.flv"])

        assert spawner.last_command == ["ffmpeg", "-i", "in.mp4", "out.flv"]
        assert handle.pid == 1000
        assert handle.running
        assert handle.command[0] == "ffmpeg"

    @pytest.mark.asyncio
    async def test_spawn_with_other_command(self, spawner, controller):
        await controller.spawn(["-version"], command="ffprobe")
        assert spawner.last_command == ["ffprobe", "-version"]

    @pytest.mark.asyncio
    async def test_os_error_becomes_connection_error(self, spawner, controller):
        spawner.error = FileNotFoundError("ffmpeg")

        with pytest.raises(ConnectionError) as exc_info:
            await controller.spawn(["-i", "x"], stream_id="s1")

        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert exc_info.value.context.stream_id == "s1"

    @pytest.mark.asyncio
    async def test_early_exit_fails_startup(self, spawner):
        spawner.exit_code = 1
        controller = ProcessController(binary="ffmpeg", startup_grace=0.05)

        with pytest.raises(ConnectionError, match="failed to start"):
            await controller.spawn(["-i", "missing.mp4"])

    @pytest.mark.asyncio
    async def test_clean_early_exit_is_not_an_error(self, spawner):
        spawner.exit_code = 0
        controller = ProcessController(binary="ffmpeg", startup_grace=0.05)

        handle = await controller.spawn(["-version"])

        assert handle.returncode == 0

    @pytest.mark.asyncio
    async def test_survives_startup_grace(self, spawner):
        controller = ProcessController(binary="ffmpeg", startup_grace=0.01)

        handle = await controller.spawn(["-i", "in.mp4"])

        assert handle.running


class TestStop:
    """Graceful and forced termination."""

    @pytest.mark.asyncio
    async def test_sigterm_is_enough(self, spawner, controller):
        handle = await controller.spawn(["-i", "x"])

        await controller.stop(handle)

        assert spawner.processes[0].signals == [signal.SIGTERM]
        assert not handle.running

    @pytest.mark.asyncio
    async def test_escalates_to_sigkill(self, spawner, controller):
        spawner.exit_on_term = False
        handle = await controller.spawn(["-i", "x"])

        await controller.stop(handle, timeout=0.05)

        assert spawner.processes[0].signals == [signal.SIGTERM, signal.SIGKILL]
        assert handle.returncode == -signal.SIGKILL

    @pytest.mark.asyncio
    async def test_stop_none_or_exited_is_noop(self, spawner, controller):
        await controller.stop(None)

        handle = await controller.spawn(["-i", "x"])
        spawner.processes[0].exit(0)
        await controller.stop(handle)

        assert spawner.processes[0].signals == []


class TestTimeBoxed:
    """Bounded awaits."""

    @pytest.mark.asyncio
    async def test_completes(self):
        async def quick():
            return 1

        assert await time_boxed(quick(), 1.0, "quick") is True

    @pytest.mark.asyncio
    async def test_timeout_is_swallowed(self):
        assert await time_boxed(asyncio.sleep(10), 0.01, "slow") is False

    @pytest.mark.asyncio
    async def test_error_is_swallowed(self):
        async def broken():
            raise RuntimeError("nope")

        assert await time_boxed(broken(), 1.0, "broken") is False
