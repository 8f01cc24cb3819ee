from fastapi.testclient import TestClient

from showcase.errors import ConfigError, NotFoundError
from showcase.main import app, get_presigner
from showcase.models import CompletedUpload, DirectTarget, sorted_parts


class _FakePresigner:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.known_uploads = {"upload-1"}

    def initiate(self, object_key: str, content_type: str) -> str:
        self.calls.append(("initiate", object_key, content_type))
        return "upload-1"

    def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        if upload_id not in self.known_uploads:
            raise NotFoundError(f"upload {upload_id} does not exist")
        self.calls.append(("presign_part", upload_id, part_number))
        return f"https://signed.test/{object_key}?partNumber={part_number}"

    def complete(self, object_key: str, upload_id: str, parts) -> CompletedUpload:
        ordered = sorted_parts(parts)
        self.calls.append(("complete", upload_id, [part.part_number for part in ordered]))
        return CompletedUpload(public_url=f"https://cdn.test/{object_key}", location="r2://bucket/" + object_key)

    def abort(self, object_key: str, upload_id: str) -> None:
        self.calls.append(("abort", upload_id))

    def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        self.calls.append(("presign_direct", object_key))
        return DirectTarget(put_url=f"https://signed.test/{object_key}", public_url=f"https://cdn.test/{object_key}")


def _client(presigner) -> TestClient:
    app.dependency_overrides[get_presigner] = lambda: presigner
    return TestClient(app, raise_server_exceptions=False)


def teardown_function() -> None:
    app.dependency_overrides.clear()


def test_multipart_session_flow() -> None:
    presigner = _FakePresigner()
    with _client(presigner) as client:
        initiated = client.post(
            "/api/uploads/initiate",
            json={"fileName": "videos/uploads/1_abc.mp4", "contentType": "video/mp4"},
        )
        assert initiated.status_code == 200, initiated.text
        assert initiated.json() == {"uploadId": "upload-1"}

        for part_number in (1, 2):
            presigned = client.post(
                "/api/uploads/presign-part",
                json={"fileName": "videos/uploads/1_abc.mp4", "uploadId": "upload-1", "partNumber": part_number},
            )
            assert presigned.status_code == 200, presigned.text
            assert presigned.json()["url"].endswith(f"partNumber={part_number}")

        completed = client.post(
            "/api/uploads/complete",
            json={
                "fileName": "videos/uploads/1_abc.mp4",
                "uploadId": "upload-1",
                "parts": [{"etag": '"e2"', "partNumber": 2}, {"etag": '"e1"', "partNumber": 1}],
            },
        )
        assert completed.status_code == 200, completed.text
        assert completed.json()["publicUrl"] == "https://cdn.test/videos/uploads/1_abc.mp4"

    assert presigner.calls[-1] == ("complete", "upload-1", [1, 2])


def test_direct_presign_and_abort() -> None:
    presigner = _FakePresigner()
    with _client(presigner) as client:
        direct = client.post("/api/uploads/presign", json={"fileName": "icons/1_a.png", "contentType": "image/png"})
        aborted = client.post("/api/uploads/abort", json={"fileName": "k.mp4", "uploadId": "upload-1"})

    assert direct.status_code == 200
    assert direct.json() == {"url": "https://signed.test/icons/1_a.png", "publicUrl": "https://cdn.test/icons/1_a.png"}
    assert aborted.status_code == 200
    assert aborted.content == b""
    assert ("abort", "upload-1") in presigner.calls


def test_missing_fields_return_400_with_error_envelope() -> None:
    with _client(_FakePresigner()) as client:
        response = client.post("/api/uploads/initiate", json={"fileName": "k.mp4"}, headers={"X-Request-ID": "req-9"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "bad_request"
    assert "contentType" in payload["detail"]
    assert payload["request_id"] == "req-9"
    assert "trace_id" in payload


def test_part_number_out_of_range_returns_400() -> None:
    with _client(_FakePresigner()) as client:
        response = client.post(
            "/api/uploads/presign-part",
            json={"fileName": "k.mp4", "uploadId": "upload-1", "partNumber": 0},
        )

    assert response.status_code == 400
    assert response.json()["error_code"] == "bad_request"


def test_duplicate_parts_return_400() -> None:
    with _client(_FakePresigner()) as client:
        response = client.post(
            "/api/uploads/complete",
            json={
                "fileName": "k.mp4",
                "uploadId": "upload-1",
                "parts": [{"etag": '"a"', "partNumber": 1}, {"etag": '"b"', "partNumber": 1}],
            },
        )

    assert response.status_code == 400
    assert "more than once" in response.json()["detail"]


def test_unknown_upload_returns_404() -> None:
    with _client(_FakePresigner()) as client:
        response = client.post(
            "/api/uploads/presign-part",
            json={"fileName": "k.mp4", "uploadId": "expired", "partNumber": 1},
        )

    assert response.status_code == 404
    assert response.json()["error_code"] == "not_found"


def test_missing_storage_config_returns_config_missing() -> None:
    def _unconfigured():
        raise ConfigError("storage config missing: bucket, public_base_url")

    app.dependency_overrides[get_presigner] = _unconfigured
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post("/api/uploads/initiate", json={"fileName": "k.mp4", "contentType": "video/mp4"})

    assert response.status_code == 500
    assert response.json()["error_code"] == "config_missing"
    assert "bucket" in response.json()["detail"]
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_preflight_returns_empty_200_with_cors_headers() -> None:
    with _client(_FakePresigner()) as client:
        for path in (
            "/api/uploads/initiate",
            "/api/uploads/presign-part",
            "/api/uploads/complete",
            "/api/uploads/abort",
            "/api/uploads/presign",
        ):
            response = client.options(path)
            assert response.status_code == 200
            assert response.content == b""
            assert response.headers["Access-Control-Allow-Origin"] == "*"
            assert "POST" in response.headers["Access-Control-Allow-Methods"]


def test_other_methods_return_405() -> None:
    with _client(_FakePresigner()) as client:
        response = client.get("/api/uploads/initiate")

    assert response.status_code == 405
    assert response.json()["error_code"] == "method_not_allowed"
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_health_version_and_metrics() -> None:
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        version = client.get("/version").json()
        metrics = client.get("/metrics")

    assert version["app_name"] == "showcase-upload"
    assert "storage_configured" in version
    assert metrics.status_code == 200
    assert "http_request_duration_seconds" in metrics.text
