from showcase.errors import FileTooLargeError, ValidationError

VIDEO_CONTENT_TYPES = ("video/mp4", "video/webm", "video/quicktime")
IMAGE_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    scaled = float(size)
    while scaled >= 1024 and exponent < len(_SIZE_UNITS) - 1:
        scaled /= 1024
        exponent += 1
    value = round(scaled, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[exponent]}"


def validate_file(
    size: int,
    content_type: str,
    max_size: int | None = None,
    allowed_types: tuple[str, ...] | list[str] | None = None,
) -> None:
    if size <= 0:
        raise ValidationError("file is empty")
    if max_size is not None and size > max_size:
        raise FileTooLargeError(size, max_size)
    if allowed_types is not None and content_type not in allowed_types:
        raise ValidationError(
            f"invalid file type {content_type!r}, allowed types: {', '.join(allowed_types)}"
        )
