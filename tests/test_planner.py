import math

import pytest

from showcase.config import MIB
from showcase.errors import FileTooLargeError, ValidationError
from showcase.planner import Strategy, part_ranges, plan_upload


def test_size_below_threshold_is_direct() -> None:
    plan = plan_upload(2 * MIB, chunk_size=10 * MIB, threshold=50 * MIB)

    assert plan.strategy is Strategy.direct
    assert plan.total_parts == 0
    assert plan.size == 2 * MIB


def test_threshold_boundary_switches_to_multipart() -> None:
    threshold = 20 * MIB

    assert plan_upload(threshold - 1, chunk_size=10 * MIB, threshold=threshold).strategy is Strategy.direct
    assert plan_upload(threshold, chunk_size=10 * MIB, threshold=threshold).strategy is Strategy.multipart


def test_multipart_plan_for_25_mib_file() -> None:
    plan = plan_upload(25 * MIB, chunk_size=10 * MIB, threshold=20 * MIB)

    assert plan.strategy is Strategy.multipart
    assert [part.part_number for part in plan.parts] == [1, 2, 3]
    assert [part.size for part in plan.parts] == [10 * MIB, 10 * MIB, 5 * MIB]
    assert plan.parts[-1].end == 25 * MIB


@pytest.mark.parametrize("size,chunk_size", [(1, 1), (7, 3), (9, 3), (10 * MIB + 1, MIB), (123457, 4096)])
def test_part_ranges_partition_the_file(size: int, chunk_size: int) -> None:
    ranges = part_ranges(size, chunk_size)

    assert len(ranges) == math.ceil(size / chunk_size)
    assert ranges[0].start == 0
    assert ranges[-1].end == size
    for previous, current in zip(ranges, ranges[1:]):
        assert previous.end == current.start
    assert all(0 < part.size <= chunk_size for part in ranges)
    assert sum(part.size for part in ranges) == size


def test_exact_multiple_has_full_last_part() -> None:
    ranges = part_ranges(30 * MIB, 10 * MIB)

    assert len(ranges) == 3
    assert ranges[-1].size == 10 * MIB


@pytest.mark.parametrize("size,chunk_size", [(0, MIB), (-5, MIB), (MIB, 0)])
def test_plan_rejects_non_positive_values(size: int, chunk_size: int) -> None:
    with pytest.raises(ValidationError):
        plan_upload(size, chunk_size=chunk_size, threshold=MIB)


def test_part_count_ceiling() -> None:
    plan = plan_upload(10000, chunk_size=1, threshold=1)
    assert plan.total_parts == 10000

    with pytest.raises(FileTooLargeError) as exc_info:
        plan_upload(10001, chunk_size=1, threshold=1)
    assert exc_info.value.limit == 10000


def test_default_chunk_size_caps_multipart_at_ten_thousand_parts() -> None:
    with pytest.raises(FileTooLargeError):
        plan_upload(10000 * 10 * MIB + 1)
