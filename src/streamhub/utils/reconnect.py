"""Exponential-backoff reconnect driver."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generator, Optional

import backoff

from streamhub.core.config import get_settings
from streamhub.domain.exceptions import ConnectionError

logger = logging.getLogger(__name__)


class ReconnectManager:
    """Retry an async connect function with capped exponential delays.

    The delay before attempt ``n`` (0-based) is
    ``min(initial_delay * multiplier ** n, max_delay)``.

    Args:
        max_attempts: Attempts before giving up, ``None`` for unlimited
        initial_delay: First delay in seconds
        max_delay: Delay ceiling in seconds
        multiplier: Growth factor
        on_reconnect: Called with the number of attempts it took
        on_failed: Called with the last error once attempts run out
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
        on_reconnect: Optional[Callable[[int], Any]] = None,
        on_failed: Optional[Callable[[BaseException], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        config = get_settings().reconnect
        self.max_attempts = max_attempts if max_attempts is not None else config.max_attempts
        self.initial_delay = initial_delay if initial_delay is not None else config.initial_delay
        self.max_delay = max_delay if max_delay is not None else config.max_delay
        self.multiplier = multiplier if multiplier is not None else config.multiplier
        self.on_reconnect = on_reconnect
        self.on_failed = on_failed
        self._sleep = sleep
        self._attempt = 0
        self._delays = self._new_delays()
        self._timer: Optional[asyncio.Future] = None
        self._stopped = False

    def _new_delays(self) -> Generator[float, None, None]:
        delays = backoff.expo(
            base=self.multiplier, factor=self.initial_delay, max_value=self.max_delay
        )
        next(delays)  # prime
        return delays

    @property
    def attempt(self) -> int:
        return self._attempt

    async def reconnect(self, connect_fn: Callable[[], Awaitable[Any]]) -> Any:
        """Keep calling ``connect_fn`` until it succeeds or attempts run out.

        Returns:
            Whatever ``connect_fn`` returned

        Raises:
            ConnectionError: When ``max_attempts`` is reached or the driver
                is stopped while waiting
        """
        self._stopped = False
        last_error: Optional[BaseException] = None

        while True:
            if self.max_attempts is not None and self._attempt >= self.max_attempts:
                logger.error(f"Giving up after {self._attempt} reconnect attempts")
                error = ConnectionError(
                    f"Max reconnect attempts ({self.max_attempts}) reached",
                    cause=last_error,
                )
                if self.on_failed:
                    self.on_failed(last_error or error)
                raise error

            delay = next(self._delays)
            logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._attempt + 1})")
            self._timer = asyncio.ensure_future(self._sleep(delay))
            try:
                await self._timer
            except asyncio.CancelledError:
                if self._stopped:
                    raise ConnectionError("Reconnect stopped") from None
                raise
            finally:
                self._timer = None

            self._attempt += 1
            try:
                result = await connect_fn()
            except Exception as e:
                last_error = e
                logger.warning(f"Reconnect attempt {self._attempt} failed: {e}")
                continue

            attempts = self._attempt
            self._attempt = 0
            self._delays = self._new_delays()
            logger.info(f"Reconnected after {attempts} attempt(s)")
            if self.on_reconnect:
                self.on_reconnect(attempts)
            return result

    def reset(self) -> None:
        """Cancel a pending delay and zero the attempt counter."""
        if self._timer is not None and not self._timer.done():
            self._stopped = True
            self._timer.cancel()
        self._attempt = 0
        self._delays = self._new_delays()

    def stop(self) -> None:
        self.reset()
