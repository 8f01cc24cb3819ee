import asyncio

import httpx
import pytest

from showcase.config import MIB, UploadConfig
from showcase.errors import ErrorCategory, UploadError
from showcase.main import app, get_presigner
from showcase.models import CompletedUpload, DirectTarget, sorted_parts
from showcase.presign import HttpPresignClient
from showcase.router import UploadRouter
from showcase.transfer import PartUploader


class _InMemoryBucket:
    """Presigner and object store in one, so the control plane and the PUTs agree on state."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict[int, bytes]] = {}
        self.objects: dict[str, bytes] = {}
        self.aborted: list[str] = []
        self.fail_part: int | None = None

    def initiate(self, object_key: str, content_type: str) -> str:
        upload_id = f"mpu-{len(self.sessions) + 1}"
        self.sessions[upload_id] = {}
        return upload_id

    def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        return f"https://bucket.test/{object_key}?uploadId={upload_id}&partNumber={part_number}"

    def complete(self, object_key: str, upload_id: str, parts) -> CompletedUpload:
        stored = self.sessions.pop(upload_id)
        self.objects[object_key] = b"".join(stored[part.part_number] for part in sorted_parts(parts))
        return CompletedUpload(public_url=f"https://cdn.test/{object_key}")

    def abort(self, object_key: str, upload_id: str) -> None:
        self.sessions.pop(upload_id, None)
        self.aborted.append(upload_id)

    def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        return DirectTarget(put_url=f"https://bucket.test/{object_key}", public_url=f"https://cdn.test/{object_key}")

    def handle_put(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.lstrip("/")
        upload_id = request.url.params.get("uploadId")
        if upload_id is None:
            self.objects[key] = request.content
            return httpx.Response(200, headers={"ETag": '"direct"'})
        part_number = int(request.url.params["partNumber"])
        if part_number == self.fail_part:
            return httpx.Response(503)
        self.sessions[upload_id][part_number] = request.content
        return httpx.Response(200, headers={"ETag": f'"{upload_id}-{part_number}"'})


def _upload(bucket: _InMemoryBucket, data: bytes, content_type: str) -> str:
    app.dependency_overrides[get_presigner] = lambda: bucket

    async def _scenario() -> str:
        control_plane = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        storage = httpx.AsyncClient(transport=httpx.MockTransport(bucket.handle_put))
        router = UploadRouter(
            HttpPresignClient("http://control.test", client=control_plane),
            PartUploader(client=storage),
            UploadConfig(chunk_size=MIB, large_file_threshold=2 * MIB, max_concurrency=2),
        )
        try:
            return await router.upload(data, content_type)
        finally:
            await control_plane.aclose()
            await storage.aclose()

    try:
        return asyncio.run(_scenario())
    finally:
        app.dependency_overrides.clear()


def test_multipart_upload_through_control_plane_reassembles_object() -> None:
    bucket = _InMemoryBucket()
    data = bytes(range(256)) * (3 * MIB // 256) + b"tail"

    public_url = _upload(bucket, data, "video/mp4")

    key = public_url.removeprefix("https://cdn.test/")
    assert key.startswith("videos/uploads/")
    assert bucket.objects[key] == data
    assert bucket.sessions == {}
    assert bucket.aborted == []


def test_direct_upload_through_control_plane() -> None:
    bucket = _InMemoryBucket()

    public_url = _upload(bucket, b"tiny icon", "image/png")

    key = public_url.removeprefix("https://cdn.test/")
    assert key.startswith("icons/")
    assert bucket.objects[key] == b"tiny icon"


def test_failed_part_aborts_session_through_control_plane() -> None:
    bucket = _InMemoryBucket()
    bucket.fail_part = 2

    with pytest.raises(UploadError) as exc_info:
        _upload(bucket, b"x" * (3 * MIB), "video/mp4")

    assert exc_info.value.reason is ErrorCategory.network
    assert exc_info.value.cause.status == 503
    assert bucket.aborted == ["mpu-1"]
    assert bucket.objects == {}
