"""Bounded FIFO with reject-on-full and timed batch draining."""

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Generic, List, Optional, TypeVar, Union

from streamhub.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

BatchProcessor = Callable[[List[T]], Union[Awaitable[Any], Any]]


class BackpressureQueue(Generic[T]):
    """Bounded queue that refuses new items instead of growing.

    Args:
        max_size: Capacity
        batch_size: Maximum items handed to the processor per batch
        batch_interval: Seconds between batches while processing
        on_full: Called with the rejected item when the queue is full
        on_empty: Called when an item lands in a previously empty queue
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        batch_interval: Optional[float] = None,
        on_full: Optional[Callable[[T], None]] = None,
        on_empty: Optional[Callable[[], None]] = None,
    ):
        config = get_settings().queue
        self.max_size = max_size if max_size is not None else config.max_size
        self.batch_size = batch_size if batch_size is not None else config.batch_size
        self.batch_interval = (
            batch_interval if batch_interval is not None else config.batch_interval
        )
        self.on_full = on_full
        self.on_empty = on_empty
        self._items: Deque[T] = deque()
        self._processing = False
        self._task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

    def enqueue(self, item: T) -> bool:
        """Append ``item`` unless the queue is full.

        Returns:
            bool: False if the item was rejected
        """
        if len(self._items) >= self.max_size:
            if self.on_full:
                self.on_full(item)
            return False

        self._items.append(item)
        if len(self._items) == 1 and self.on_empty:
            self.on_empty()
        return True

    def dequeue_batch(self) -> List[T]:
        count = min(self.batch_size, len(self._items))
        return [self._items.popleft() for _ in range(count)]

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.max_size

    @property
    def is_processing(self) -> bool:
        return self._processing

    def clear(self) -> None:
        self._items.clear()

    def start_processing(self, processor: BatchProcessor) -> None:
        """Drain one batch per ``batch_interval`` into ``processor``.

        Calling this while already processing does nothing.
        """
        if self._processing:
            return
        self._processing = True
        self._stopped = asyncio.Event()
        self._task = asyncio.create_task(self._run(processor, self._stopped))

    async def _run(self, processor: BatchProcessor, stopped: asyncio.Event) -> None:
        while not stopped.is_set():
            batch = self.dequeue_batch()
            if batch:
                try:
                    result = processor(batch)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"Batch processor failed on {len(batch)} items: {e}")
            try:
                await asyncio.wait_for(stopped.wait(), timeout=self.batch_interval)
            except asyncio.TimeoutError:
                pass

    def stop_processing(self) -> None:
        """Stop scheduling batches.

        A batch already handed to the processor runs to completion.
        """
        self._processing = False
        if self._stopped is not None:
            self._stopped.set()
            self._stopped = None

    async def wait_stopped(self) -> None:
        """Wait for the processing task to finish after ``stop_processing``."""
        if self._task is not None:
            await self._task
            self._task = None
