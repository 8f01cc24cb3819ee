import time
from collections.abc import Callable, Iterable
from typing import TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from showcase.config import StorageConfig
from showcase.errors import ConfigError, IntegrityError, NotFoundError, TransportError, ValidationError
from showcase.keys import is_safe_object_key
from showcase.metrics import (
    direct_uploads_presigned_total,
    multipart_sessions_aborted_total,
    multipart_sessions_completed_total,
    multipart_sessions_initiated_total,
    parts_presigned_total,
    storage_call_latency_seconds,
    storage_errors_total,
)
from showcase.models import CompletedUpload, DirectTarget, PartRecord, sorted_parts, validate_part_number

T = TypeVar("T")

NOT_FOUND_CODES = {"NoSuchUpload", "NoSuchKey", "404"}


def _require_key(object_key: str) -> None:
    if not object_key:
        raise ValidationError("fileName is required")
    if not is_safe_object_key(object_key):
        raise ValidationError(f"fileName {object_key!r} is not a valid object key")


def _require_upload_id(upload_id: str) -> None:
    if not upload_id:
        raise ValidationError("uploadId is required")


def _require_content_type(content_type: str) -> None:
    if not content_type:
        raise ValidationError("contentType is required")


class S3Presigner:
    """Multipart and presign operations against an S3-compatible bucket.

    This is the only component that holds storage credentials; clients get
    time-limited URLs from it through the control plane.
    """

    def __init__(self, config: StorageConfig) -> None:
        missing = config.missing_fields()
        if missing:
            raise ConfigError(f"storage config missing: {', '.join(missing)}")
        import boto3

        self.config = config
        self.bucket = config.bucket
        self.client = boto3.client(
            "s3",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
        )

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        start = time.perf_counter()
        try:
            return fn()
        except ClientError as exc:
            storage_errors_total.labels(operation=operation).inc()
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in NOT_FOUND_CODES or status == 404:
                raise NotFoundError(f"{operation}: {error.get('Message') or code or 'not found'}") from exc
            raise TransportError(status, code, detail=error.get("Message")) from exc
        except BotoCoreError as exc:
            storage_errors_total.labels(operation=operation).inc()
            raise TransportError(None, detail=f"{operation}: {exc}") from exc
        finally:
            storage_call_latency_seconds.labels(operation=operation).observe(time.perf_counter() - start)

    def public_url(self, object_key: str) -> str:
        return self.config.public_url(object_key)

    def initiate(self, object_key: str, content_type: str) -> str:
        _require_key(object_key)
        _require_content_type(content_type)
        result = self._call(
            "create_multipart_upload",
            lambda: self.client.create_multipart_upload(
                Bucket=self.bucket, Key=object_key, ContentType=content_type
            ),
        )
        upload_id = result.get("UploadId")
        if not upload_id:
            raise IntegrityError("storage did not return an UploadId")
        multipart_sessions_initiated_total.inc()
        return upload_id

    def presign_part(self, object_key: str, upload_id: str, part_number: int) -> str:
        _require_key(object_key)
        _require_upload_id(upload_id)
        validate_part_number(part_number)
        # an unknown or aborted session surfaces here instead of as a 404 on the PUT
        self._call(
            "list_parts",
            lambda: self.client.list_parts(Bucket=self.bucket, Key=object_key, UploadId=upload_id, MaxParts=1),
        )
        url = self._call(
            "presign_upload_part",
            lambda: self.client.generate_presigned_url(
                "upload_part",
                Params={
                    "Bucket": self.bucket,
                    "Key": object_key,
                    "UploadId": upload_id,
                    "PartNumber": part_number,
                },
                ExpiresIn=self.config.presign_expiry_seconds,
            ),
        )
        parts_presigned_total.inc()
        return url

    def complete(self, object_key: str, upload_id: str, parts: Iterable[PartRecord]) -> CompletedUpload:
        _require_key(object_key)
        _require_upload_id(upload_id)
        ordered = sorted_parts(parts)
        result = self._call(
            "complete_multipart_upload",
            lambda: self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": [{"ETag": p.etag, "PartNumber": p.part_number} for p in ordered]},
            ),
        )
        multipart_sessions_completed_total.inc()
        return CompletedUpload(public_url=self.public_url(object_key), location=(result or {}).get("Location"))

    def abort(self, object_key: str, upload_id: str) -> None:
        _require_key(object_key)
        _require_upload_id(upload_id)
        self._call(
            "abort_multipart_upload",
            lambda: self.client.abort_multipart_upload(Bucket=self.bucket, Key=object_key, UploadId=upload_id),
        )
        multipart_sessions_aborted_total.inc()

    def presign_direct(self, object_key: str, content_type: str) -> DirectTarget:
        _require_key(object_key)
        _require_content_type(content_type)
        url = self._call(
            "presign_put_object",
            lambda: self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": object_key, "ContentType": content_type},
                ExpiresIn=self.config.presign_expiry_seconds,
            ),
        )
        direct_uploads_presigned_total.inc()
        return DirectTarget(put_url=url, public_url=self.public_url(object_key))


def build_presigner(config: StorageConfig) -> S3Presigner:
    return S3Presigner(config)
