import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressSnapshot:
    loaded: int
    total: int
    percentage: int


ProgressCallback = Callable[[ProgressSnapshot], None]


class ProgressAggregator:
    """Folds per-part byte counters into one non-decreasing progress signal.

    Intermediate snapshots stop at 99%; only ``finish()`` reports 100, so a
    caller never sees completion before the upload actually succeeded.
    """

    def __init__(self, total: int, on_progress: ProgressCallback | None = None) -> None:
        if total <= 0:
            raise ValueError("total must be positive")
        self.total = total
        self._per_part: dict[int, int] = {}
        self._loaded = 0
        self._subscribers: list[ProgressCallback] = []
        self._last: ProgressSnapshot | None = None
        self._finished = False
        if on_progress is not None:
            self.subscribe(on_progress)

    def subscribe(self, callback: ProgressCallback) -> None:
        self._subscribers.append(callback)

    @property
    def loaded(self) -> int:
        return min(self._loaded, self.total)

    @property
    def last(self) -> ProgressSnapshot | None:
        return self._last

    def start(self) -> None:
        if self._last is None:
            self._emit(ProgressSnapshot(loaded=0, total=self.total, percentage=0))

    def update(self, part_number: int, loaded: int) -> None:
        if self._finished:
            return
        # a retried part restarts from zero; keep the high-water mark
        previous = self._per_part.get(part_number, 0)
        if loaded <= previous:
            return
        self._per_part[part_number] = loaded
        self._loaded += loaded - previous
        current = self.loaded
        percentage = min(99, round(current / self.total * 100))
        if self._last is not None and percentage < self._last.percentage:
            percentage = self._last.percentage
        self._emit(ProgressSnapshot(loaded=current, total=self.total, percentage=percentage))

    def part_callback(self, part_number: int) -> Callable[[int], None]:
        def _report(loaded: int) -> None:
            self.update(part_number, loaded)

        return _report

    def finish(self) -> ProgressSnapshot:
        if not self._finished:
            self._finished = True
            self._emit(ProgressSnapshot(loaded=self.total, total=self.total, percentage=100))
        return self._last

    def _emit(self, snapshot: ProgressSnapshot) -> None:
        if snapshot == self._last:
            return
        self._last = snapshot
        for callback in self._subscribers:
            callback(snapshot)


_CLOSED = object()


class ProgressChannel:
    """Async iterator over the snapshots of a single upload.

    The producer pushes snapshots through ``send`` and terminates the
    stream with ``close``; passing an exception re-raises it to the consumer
    once the buffered snapshots are drained.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._error: BaseException | None = None

    def send(self, snapshot: ProgressSnapshot) -> None:
        self._queue.put_nowait(snapshot)

    def close(self, error: BaseException | None = None) -> None:
        self._error = error
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressSnapshot]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressSnapshot]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                if self._error is not None:
                    raise self._error
                return
            yield item
