import secrets
import string
import time
from pathlib import PurePosixPath

from showcase.errors import ValidationError

TOKEN_ALPHABET = string.ascii_lowercase + string.digits
TOKEN_LENGTH = 12

VIDEO_FOLDER = "videos/uploads"
APP_FOLDER = "apps"
IMAGE_FOLDER = "icons"
DEFAULT_FOLDER = "uploads"

INSTALLER_CONTENT_TYPES = {
    "application/vnd.android.package-archive",
    "application/x-msdownload",
    "application/x-msdos-program",
    "application/x-msi",
    "application/x-ms-installer",
    "application/x-apple-diskimage",
    "application/zip",
    "application/x-zip-compressed",
}

CONTENT_TYPE_EXTENSIONS = {
    "application/vnd.android.package-archive": "apk",
    "application/x-msdownload": "exe",
    "application/x-msdos-program": "exe",
    "application/x-msi": "msi",
    "application/x-ms-installer": "msi",
    "application/x-apple-diskimage": "dmg",
    "application/zip": "zip",
    "application/x-zip-compressed": "zip",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _base_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def folder_for(content_type: str) -> str:
    base = _base_type(content_type)
    if base.startswith("video/"):
        return VIDEO_FOLDER
    if base in INSTALLER_CONTENT_TYPES:
        return APP_FOLDER
    if base.startswith("image/"):
        return IMAGE_FOLDER
    return DEFAULT_FOLDER


def extension_for(content_type: str, file_name: str | None = None) -> str:
    if file_name:
        suffix = PurePosixPath(file_name.replace("\\", "/")).suffix.lstrip(".").lower()
        if suffix and suffix.isalnum():
            return suffix
    base = _base_type(content_type)
    if base in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[base]
    # loose match for vendor types like application/x-apk
    for marker in ("apk", "exe", "zip"):
        if marker in base:
            return marker
    return "bin"


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def generate_object_key(
    folder: str,
    content_type: str,
    file_name: str | None = None,
    timestamp_ms: int | None = None,
) -> str:
    folder = folder.strip("/")
    if not folder:
        raise ValidationError("folder cannot be empty")
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    object_key = f"{folder}/{timestamp_ms}_{random_token()}.{extension_for(content_type, file_name)}"
    if not is_safe_object_key(object_key):
        raise ValidationError(f"invalid folder: {folder}")
    return object_key


def is_safe_object_key(object_key: str) -> bool:
    if not object_key or object_key.startswith("/") or "\\" in object_key:
        return False
    return all(segment not in ("", ".", "..") for segment in object_key.split("/"))
