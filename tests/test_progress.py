import asyncio

import pytest

from showcase.progress import ProgressAggregator, ProgressChannel, ProgressSnapshot


def test_snapshots_are_monotonic_and_capped_until_finish() -> None:
    seen: list[ProgressSnapshot] = []
    aggregator = ProgressAggregator(300, seen.append)

    aggregator.start()
    aggregator.update(2, 100)
    aggregator.update(1, 50)
    aggregator.update(3, 100)
    aggregator.update(1, 100)
    last = aggregator.finish()

    assert seen[0] == ProgressSnapshot(loaded=0, total=300, percentage=0)
    assert [snapshot.loaded for snapshot in seen] == [0, 100, 150, 250, 300, 300]
    assert all(a.percentage <= b.percentage for a, b in zip(seen, seen[1:]))
    assert seen[-2].percentage == 99
    assert last == ProgressSnapshot(loaded=300, total=300, percentage=100)


def test_start_and_finish_fire_once() -> None:
    seen: list[ProgressSnapshot] = []
    aggregator = ProgressAggregator(10, seen.append)

    aggregator.start()
    aggregator.start()
    aggregator.finish()
    aggregator.finish()
    aggregator.update(1, 5)

    assert [snapshot.percentage for snapshot in seen] == [0, 100]


def test_retried_part_keeps_high_water_mark() -> None:
    seen: list[ProgressSnapshot] = []
    aggregator = ProgressAggregator(100, seen.append)
    report = aggregator.part_callback(1)

    report(40)
    report(10)
    report(40)
    report(60)

    assert [snapshot.loaded for snapshot in seen] == [40, 60]
    assert aggregator.loaded == 60


def test_subscribers_all_receive_snapshots() -> None:
    first: list[ProgressSnapshot] = []
    second: list[ProgressSnapshot] = []
    aggregator = ProgressAggregator(4)
    aggregator.subscribe(first.append)
    aggregator.subscribe(second.append)

    aggregator.update(1, 4)

    assert first == second == [ProgressSnapshot(loaded=4, total=4, percentage=99)]


def test_total_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ProgressAggregator(0)


def test_channel_drains_then_raises_error() -> None:
    async def _scenario() -> list[int]:
        channel = ProgressChannel()
        channel.send(ProgressSnapshot(loaded=0, total=2, percentage=0))
        channel.send(ProgressSnapshot(loaded=1, total=2, percentage=50))
        channel.close(RuntimeError("part failed"))
        received = []
        with pytest.raises(RuntimeError, match="part failed"):
            async for snapshot in channel:
                received.append(snapshot.loaded)
        return received

    assert asyncio.run(_scenario()) == [0, 1]


def test_loaded_tracks_many_parts() -> None:
    aggregator = ProgressAggregator(10000)

    for part_number in range(1, 10001):
        aggregator.update(part_number, 1)
    aggregator.update(5000, 1)

    assert aggregator.loaded == 10000
    assert aggregator.last.percentage == 99
