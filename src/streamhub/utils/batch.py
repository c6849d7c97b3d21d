"""Bounded-concurrency batch helpers."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchSuccess(Generic[R]):
    index: int
    result: R


@dataclass
class BatchFailure:
    index: int
    error: BaseException


@dataclass
class BatchResult(Generic[R]):
    successes: List[BatchSuccess[R]] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def results(self) -> List[R]:
        return [s.result for s in sorted(self.successes, key=lambda s: s.index)]


async def batch_process(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    concurrency: int = 5,
    continue_on_error: bool = False,
) -> BatchResult[R]:
    """Run ``processor`` over ``items``, ``concurrency`` at a time.

    Items are processed in consecutive chunks. Without ``continue_on_error``
    the first failing chunk stops the run and its earliest error is raised.

    Args:
        items: Inputs
        processor: Async callable applied to each item
        concurrency: Chunk size
        continue_on_error: Collect failures instead of raising

    Returns:
        BatchResult: Successes and failures, tagged with the item index
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    outcome: BatchResult[R] = BatchResult()
    for start in range(0, len(items), concurrency):
        chunk = items[start : start + concurrency]
        results: List[Any] = await asyncio.gather(
            *(processor(item) for item in chunk), return_exceptions=True
        )
        for offset, result in enumerate(results):
            index = start + offset
            if isinstance(result, BaseException):
                outcome.failures.append(BatchFailure(index=index, error=result))
            else:
                outcome.successes.append(BatchSuccess(index=index, result=result))

        chunk_failures = [f for f in outcome.failures if f.index >= start]
        if chunk_failures and not continue_on_error:
            first = chunk_failures[0]
            logger.error(f"Batch stopped at item {first.index}: {first.error}")
            raise first.error

    return outcome
