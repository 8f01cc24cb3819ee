from collections.abc import Iterable
from dataclasses import dataclass

from showcase.errors import ValidationError

MAX_PART_NUMBER = 10000


@dataclass(frozen=True)
class PartRecord:
    part_number: int
    etag: str


@dataclass(frozen=True)
class DirectTarget:
    put_url: str
    public_url: str


@dataclass(frozen=True)
class CompletedUpload:
    public_url: str
    location: str | None = None


def validate_part_number(part_number: int) -> None:
    if part_number < 1 or part_number > MAX_PART_NUMBER:
        raise ValidationError(f"partNumber must be between 1 and {MAX_PART_NUMBER}")


def sorted_parts(parts: Iterable[PartRecord]) -> list[PartRecord]:
    """Return ``parts`` ordered by part number, rejecting unusable lists."""
    ordered = sorted(parts, key=lambda part: part.part_number)
    if not ordered:
        raise ValidationError("parts cannot be empty")
    seen: set[int] = set()
    for part in ordered:
        validate_part_number(part.part_number)
        if not part.etag or not part.etag.strip():
            raise ValidationError(f"part {part.part_number} has no etag")
        if part.part_number in seen:
            raise ValidationError(f"part {part.part_number} submitted more than once")
        seen.add(part.part_number)
    return ordered
