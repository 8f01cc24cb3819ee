import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 3


class ConcurrencyLimiter:
    """Runs operations in sequential batches of at most ``max_concurrency``.

    A batch is awaited in full before the next one starts. The first failure
    inside a batch cancels its still-running siblings and is re-raised;
    later batches never start. Results come back in submission order.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    def batches(self, count: int) -> list[range]:
        return [range(start, min(start + self.max_concurrency, count)) for start in range(0, count, self.max_concurrency)]

    async def run(self, operations: Sequence[Callable[[], Awaitable[T]]]) -> list[T]:
        results: list[T] = []
        for batch in self.batches(len(operations)):
            tasks = [asyncio.ensure_future(operations[index]()) for index in batch]
            try:
                results.extend(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        return results
