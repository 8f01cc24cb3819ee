import enum
import math
from dataclasses import dataclass, field

from showcase.config import MIB
from showcase.errors import FileTooLargeError, ValidationError
from showcase.models import MAX_PART_NUMBER

DEFAULT_CHUNK_SIZE = 10 * MIB
DEFAULT_LARGE_FILE_THRESHOLD = 50 * MIB


class Strategy(str, enum.Enum):
    direct = "direct"
    multipart = "multipart"


@dataclass(frozen=True)
class PartRange:
    part_number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class UploadPlan:
    strategy: Strategy
    size: int
    chunk_size: int
    parts: tuple[PartRange, ...] = field(default_factory=tuple)

    @property
    def total_parts(self) -> int:
        return len(self.parts)


def part_ranges(size: int, chunk_size: int) -> tuple[PartRange, ...]:
    total_parts = math.ceil(size / chunk_size)
    return tuple(
        PartRange(
            part_number=index + 1,
            start=index * chunk_size,
            end=min((index + 1) * chunk_size, size),
        )
        for index in range(total_parts)
    )


def plan_upload(
    size: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    threshold: int = DEFAULT_LARGE_FILE_THRESHOLD,
) -> UploadPlan:
    """Pick the upload strategy for ``size`` bytes.

    Files strictly below ``threshold`` go out as a single PUT. Anything at or
    above it is split into ``ceil(size / chunk_size)`` contiguous parts, the
    last one shorter when the size is not an exact multiple. A file that would
    need more than MAX_PART_NUMBER parts is rejected as too large.
    """
    if size <= 0:
        raise ValidationError("file size must be positive")
    if chunk_size <= 0:
        raise ValidationError("chunk size must be positive")
    if size < threshold:
        return UploadPlan(strategy=Strategy.direct, size=size, chunk_size=chunk_size)
    if math.ceil(size / chunk_size) > MAX_PART_NUMBER:
        raise FileTooLargeError(size, MAX_PART_NUMBER * chunk_size)
    return UploadPlan(
        strategy=Strategy.multipart,
        size=size,
        chunk_size=chunk_size,
        parts=part_ranges(size, chunk_size),
    )
