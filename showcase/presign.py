import asyncio
import logging
from collections.abc import Iterable

import httpx

from showcase.config import StorageConfig
from showcase.errors import ConfigError, IntegrityError, NotFoundError, TransportError, ValidationError
from showcase.events import UPLOAD_LOGGER_NAME, get_event_logger, log_event
from showcase.models import DirectTarget, PartRecord, sorted_parts, validate_part_number
from showcase.schemas import ABORT_PATH, COMPLETE_PATH, INITIATE_PATH, PRESIGN_DIRECT_PATH, PRESIGN_PART_PATH
from showcase.storage import S3Presigner, build_presigner

upload_logger = get_event_logger(UPLOAD_LOGGER_NAME)


def _require(value, message: str) -> None:
    if not value:
        raise ValidationError(message)


class PresignClient:
    """Control-plane operations the upload pipeline depends on.

    Subclasses implement the ``_abort`` hook; ``abort`` itself never raises so
    cleanup cannot hide the failure that triggered it.
    """

    async def initiate(self, object_key: str, content_type: str) -> str:
        raise NotImplementedError

    async def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        raise NotImplementedError

    async def complete(self, object_key: str, upload_id: str, parts: Iterable[PartRecord]) -> str:
        raise NotImplementedError

    async def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        raise NotImplementedError

    async def _abort(self, object_key: str, upload_id: str) -> None:
        raise NotImplementedError

    async def abort(self, object_key: str, upload_id: str) -> None:
        try:
            await self._abort(object_key, upload_id)
        except Exception as exc:
            log_event(
                upload_logger,
                {
                    "event": "multipart_abort_failed",
                    "object_key": object_key,
                    "upload_id": upload_id,
                    "detail": str(exc),
                    "error_class": exc.__class__.__name__,
                },
                level=logging.WARNING,
            )

    async def aclose(self) -> None:
        return None


class HttpPresignClient(PresignClient):
    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not base_url:
            raise ConfigError("control plane URL is not configured")
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str | None]:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase, None
        if not isinstance(body, dict):
            return str(body), None
        detail = body.get("detail") or body.get("error") or body.get("message") or response.reason_phrase
        return str(detail), body.get("error_code")

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(None, detail=str(exc) or exc.__class__.__name__) from exc

        if response.is_success:
            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError as exc:
                raise IntegrityError(f"control plane returned invalid JSON for {path}") from exc
            if not isinstance(body, dict):
                raise IntegrityError(f"control plane returned unexpected payload for {path}")
            return body

        detail, error_code = self._error_details(response)
        if response.status_code == 400:
            raise ValidationError(detail)
        if response.status_code == 404:
            raise NotFoundError(detail)
        if error_code == "config_missing" or "config missing" in detail.lower():
            raise ConfigError(detail)
        raise TransportError(response.status_code, response.reason_phrase, detail=detail)

    @staticmethod
    def _field(body: dict, name: str) -> str:
        value = body.get(name)
        if not isinstance(value, str) or not value:
            raise IntegrityError(f"control plane response is missing {name}")
        return value

    async def initiate(self, object_key: str, content_type: str) -> str:
        _require(object_key, "fileName is required")
        _require(content_type, "contentType is required")
        body = await self._post(INITIATE_PATH, {"fileName": object_key, "contentType": content_type})
        return self._field(body, "uploadId")

    async def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        _require(object_key, "fileName is required")
        _require(upload_id, "uploadId is required")
        validate_part_number(part_number)
        body = await self._post(
            PRESIGN_PART_PATH,
            {"fileName": object_key, "uploadId": upload_id, "partNumber": part_number},
        )
        return self._field(body, "url")

    async def complete(self, object_key: str, upload_id: str, parts: Iterable[PartRecord]) -> str:
        _require(object_key, "fileName is required")
        _require(upload_id, "uploadId is required")
        ordered = sorted_parts(parts)
        body = await self._post(
            COMPLETE_PATH,
            {
                "fileName": object_key,
                "uploadId": upload_id,
                "parts": [{"etag": part.etag, "partNumber": part.part_number} for part in ordered],
            },
        )
        return self._field(body, "publicUrl")

    async def _abort(self, object_key: str, upload_id: str) -> None:
        _require(object_key, "fileName is required")
        _require(upload_id, "uploadId is required")
        await self._post(ABORT_PATH, {"fileName": object_key, "uploadId": upload_id})

    async def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        _require(object_key, "fileName is required")
        _require(content_type, "contentType is required")
        body = await self._post(PRESIGN_DIRECT_PATH, {"fileName": object_key, "contentType": content_type})
        return DirectTarget(put_url=self._field(body, "url"), public_url=self._field(body, "publicUrl"))


class StoragePresignClient(PresignClient):
    """In-process presign client for callers that hold a StorageConfig."""

    def __init__(self, presigner: S3Presigner) -> None:
        self.presigner = presigner

    @classmethod
    def from_config(cls, config: StorageConfig) -> "StoragePresignClient":
        return cls(build_presigner(config))

    async def initiate(self, object_key: str, content_type: str) -> str:
        return await asyncio.to_thread(self.presigner.initiate, object_key, content_type)

    async def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        return await asyncio.to_thread(self.presigner.presign_part, object_key, upload_id, part_number)

    async def complete(self, object_key: str, upload_id: str, parts: Iterable[PartRecord]) -> str:
        ordered = sorted_parts(parts)
        result = await asyncio.to_thread(self.presigner.complete, object_key, upload_id, ordered)
        return result.public_url

    async def _abort(self, object_key: str, upload_id: str) -> None:
        await asyncio.to_thread(self.presigner.abort, object_key, upload_id)

    async def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        return await asyncio.to_thread(self.presigner.presign_direct, object_key, content_type)
