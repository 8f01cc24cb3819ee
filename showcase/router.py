import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from showcase.config import Settings, UploadConfig
from showcase.coordinator import MultipartCoordinator, MultipartSession
from showcase.errors import (
    FileTooLargeError,
    UploadError,
    ValidationError,
    categorize,
    innermost_cause,
)
from showcase.events import UPLOAD_LOGGER_NAME, get_event_logger, log_event
from showcase.keys import IMAGE_FOLDER, VIDEO_FOLDER, folder_for, generate_object_key
from showcase.limits import ConcurrencyLimiter
from showcase.planner import Strategy, UploadPlan, plan_upload
from showcase.presign import HttpPresignClient, PresignClient
from showcase.progress import ProgressAggregator, ProgressCallback, ProgressChannel, ProgressSnapshot
from showcase.transfer import PartUploader, RetryingPartUploader
from showcase.validation import IMAGE_CONTENT_TYPES, VIDEO_CONTENT_TYPES, validate_file

upload_logger = get_event_logger(UPLOAD_LOGGER_NAME)


@dataclass
class UploadTask:
    source: bytes
    content_type: str
    folder: str
    object_key: str
    strategy: Strategy
    file_name: str | None = None
    session: MultipartSession | None = None

    @property
    def size(self) -> int:
        return len(self.source)

    @classmethod
    def create(
        cls,
        source: bytes,
        content_type: str,
        strategy: Strategy,
        folder: str | None = None,
        file_name: str | None = None,
        timestamp_ms: int | None = None,
    ) -> "UploadTask":
        folder = folder or folder_for(content_type)
        return cls(
            source=source,
            content_type=content_type,
            folder=folder,
            object_key=generate_object_key(folder, content_type, file_name=file_name, timestamp_ms=timestamp_ms),
            strategy=strategy,
            file_name=file_name,
        )


def _wrap(exc: Exception) -> UploadError:
    if isinstance(exc, UploadError):
        return exc
    return UploadError(categorize(exc), innermost_cause(exc))


class UploadRouter:
    """Public entry point: sends one file to object storage and returns its public URL.

    Small files take a single presigned PUT; files at or above the
    configured threshold go through the multipart coordinator. Every failure
    is raised as an UploadError whose ``reason`` tells the UI which
    remediation text to show.
    """

    def __init__(self, presign_client: PresignClient, uploader, config: UploadConfig | None = None) -> None:
        self.config = config or UploadConfig()
        self.presign_client = presign_client
        self.uploader = uploader
        self.limiter = ConcurrencyLimiter(self.config.max_concurrency)
        self.coordinator = MultipartCoordinator(presign_client, uploader, self.limiter)

    @classmethod
    def from_settings(cls, source: Settings) -> "UploadRouter":
        config = UploadConfig.from_settings(source)
        presign_client = HttpPresignClient(
            source.control_plane_url, timeout_seconds=source.control_plane_timeout_seconds
        )
        uploader = PartUploader(timeout_seconds=source.part_upload_timeout_seconds)
        if config.part_upload_max_retries:
            uploader = RetryingPartUploader(uploader, max_retries=config.part_upload_max_retries)
        return cls(presign_client, uploader, config)

    async def aclose(self) -> None:
        await self.presign_client.aclose()
        await self.uploader.aclose()

    async def __aenter__(self) -> "UploadRouter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def plan(self, size: int) -> UploadPlan:
        if not self.config.multipart_enabled and size >= self.config.large_file_threshold:
            if size > self.config.direct_upload_max_bytes:
                raise FileTooLargeError(size, self.config.direct_upload_max_bytes)
            return UploadPlan(strategy=Strategy.direct, size=size, chunk_size=self.config.chunk_size)
        return plan_upload(size, self.config.chunk_size, self.config.large_file_threshold)

    def prepare(
        self,
        source: bytes,
        content_type: str,
        folder: str | None = None,
        file_name: str | None = None,
        allowed_types: tuple[str, ...] | None = None,
        max_size: int | None = None,
    ) -> tuple[UploadTask, UploadPlan]:
        if not content_type:
            raise ValidationError("contentType is required")
        data = bytes(source)
        validate_file(len(data), content_type, max_size=max_size, allowed_types=allowed_types)
        plan = self.plan(len(data))
        task = UploadTask.create(data, content_type, plan.strategy, folder=folder, file_name=file_name)
        return task, plan

    async def upload(
        self,
        source: bytes,
        content_type: str,
        folder: str | None = None,
        file_name: str | None = None,
        on_progress: ProgressCallback | None = None,
        allowed_types: tuple[str, ...] | None = None,
        max_size: int | None = None,
    ) -> str:
        try:
            task, plan = self.prepare(source, content_type, folder, file_name, allowed_types, max_size)
        except Exception as exc:
            raise _wrap(exc) from exc

        progress = ProgressAggregator(task.size, on_progress)
        progress.start()
        try:
            if task.strategy is Strategy.direct:
                public_url = await self._upload_direct(task, progress)
            else:
                public_url = await self.coordinator.run(task, plan, progress)
        except Exception as exc:
            error = _wrap(exc)
            log_event(
                upload_logger,
                {
                    "event": "upload_failed",
                    "object_key": task.object_key,
                    "strategy": task.strategy.value,
                    "reason": error.reason.value,
                    "detail": str(error.cause),
                    "error_class": error.cause.__class__.__name__,
                },
                level=logging.WARNING,
            )
            raise error from exc

        progress.finish()
        log_event(
            upload_logger,
            {
                "event": "upload_completed",
                "object_key": task.object_key,
                "strategy": task.strategy.value,
                "size": task.size,
            },
        )
        return public_url

    async def _upload_direct(self, task: UploadTask, progress: ProgressAggregator) -> str:
        target = await self.presign_client.presign_direct(task.object_key, task.content_type)
        await self.uploader.upload(
            task.source,
            target.put_url,
            task.content_type,
            on_progress=progress.part_callback(1),
        )
        return target.public_url

    async def upload_video(
        self,
        source: bytes,
        content_type: str,
        file_name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        return await self.upload(
            source,
            content_type,
            folder=VIDEO_FOLDER,
            file_name=file_name,
            on_progress=on_progress,
            allowed_types=VIDEO_CONTENT_TYPES,
        )

    async def upload_image(
        self,
        source: bytes,
        content_type: str,
        folder: str = IMAGE_FOLDER,
        file_name: str | None = None,
        on_progress: ProgressCallback | None = None,
        max_size: int | None = None,
    ) -> str:
        return await self.upload(
            source,
            content_type,
            folder=folder,
            file_name=file_name,
            on_progress=on_progress,
            allowed_types=IMAGE_CONTENT_TYPES,
            max_size=max_size,
        )

    def stream(
        self,
        source: bytes,
        content_type: str,
        folder: str | None = None,
        file_name: str | None = None,
    ) -> "UploadStream":
        return UploadStream(self, source, content_type, folder=folder, file_name=file_name)


class UploadStream:
    """Progress of one upload as an async iterator.

    Iteration ends after the 100% snapshot; ``public_url`` is set by then.
    A failed upload raises its UploadError from the iterator instead.
    """

    def __init__(
        self,
        router: UploadRouter,
        source: bytes,
        content_type: str,
        folder: str | None = None,
        file_name: str | None = None,
    ) -> None:
        self._router = router
        self._source = source
        self._content_type = content_type
        self._folder = folder
        self._file_name = file_name
        self.public_url: str | None = None

    def __aiter__(self) -> AsyncIterator[ProgressSnapshot]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressSnapshot]:
        channel = ProgressChannel()

        async def _produce() -> None:
            try:
                self.public_url = await self._router.upload(
                    self._source,
                    self._content_type,
                    folder=self._folder,
                    file_name=self._file_name,
                    on_progress=channel.send,
                )
            except Exception as exc:
                channel.close(exc)
            else:
                channel.close()

        producer = asyncio.ensure_future(_produce())
        try:
            async for snapshot in channel:
                yield snapshot
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
