import logging
import time
from collections.abc import AsyncIterator, Callable

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from showcase.errors import IntegrityError, TransportError
from showcase.events import UPLOAD_LOGGER_NAME, get_event_logger, log_event
from showcase.metrics import (
    bytes_uploaded_total,
    part_put_latency_seconds,
    part_upload_failures_total,
    parts_uploaded_total,
    retries_total,
)

DEFAULT_SLICE_SIZE = 256 * 1024

BytesSentCallback = Callable[[int], None]

upload_logger = get_event_logger(UPLOAD_LOGGER_NAME)


class PartUploader:
    """PUTs one byte payload to a presigned URL and returns the storage ETag."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 300.0,
        slice_size: int = DEFAULT_SLICE_SIZE,
    ) -> None:
        if slice_size <= 0:
            raise ValueError("slice_size must be positive")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.slice_size = slice_size

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "PartUploader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _body(self, data: bytes, on_progress: BytesSentCallback | None) -> AsyncIterator[bytes]:
        sent = 0
        for offset in range(0, len(data), self.slice_size):
            piece = data[offset : offset + self.slice_size]
            yield piece
            sent += len(piece)
            if on_progress is not None:
                on_progress(sent)

    async def upload(
        self,
        data: bytes,
        put_url: str,
        content_type: str,
        on_progress: BytesSentCallback | None = None,
    ) -> str:
        headers = {"Content-Type": content_type, "Content-Length": str(len(data))}
        started = time.perf_counter()
        try:
            response = await self._client.put(put_url, content=self._body(data, on_progress), headers=headers)
        except httpx.HTTPError as exc:
            part_upload_failures_total.inc()
            raise TransportError(None, detail=str(exc) or exc.__class__.__name__) from exc
        part_put_latency_seconds.observe(time.perf_counter() - started)

        if not response.is_success:
            part_upload_failures_total.inc()
            raise TransportError(response.status_code, response.reason_phrase)
        etag = response.headers.get("ETag", "").strip()
        if not etag:
            part_upload_failures_total.inc()
            raise IntegrityError(f"storage accepted the PUT (HTTP {response.status_code}) but returned no ETag")

        parts_uploaded_total.inc()
        bytes_uploaded_total.inc(len(data))
        return etag


def is_retryable(exc: BaseException) -> bool:
    # expired presigned URLs answer 403 and must surface, not loop
    if not isinstance(exc, TransportError):
        return False
    return exc.status is None or exc.status == 429 or exc.status >= 500


class RetryingPartUploader:
    """Explicit retry policy around a PartUploader.

    Only transient transport failures are retried; an IntegrityError or a
    4xx answer goes straight to the caller.
    """

    def __init__(
        self,
        inner: PartUploader,
        max_retries: int,
        wait_seconds: float = 1.0,
        max_wait_seconds: float = 10.0,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.inner = inner
        self.max_retries = max_retries
        self.wait_seconds = wait_seconds
        self.max_wait_seconds = max_wait_seconds

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        retries_total.inc()
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log_event(
            upload_logger,
            {
                "event": "part_upload_retry",
                "attempt": retry_state.attempt_number,
                "detail": str(exc),
                "status": getattr(exc, "status", None),
            },
            level=logging.WARNING,
        )

    async def upload(
        self,
        data: bytes,
        put_url: str,
        content_type: str,
        on_progress: BytesSentCallback | None = None,
    ) -> str:
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.wait_seconds, max=self.max_wait_seconds),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                etag = await self.inner.upload(data, put_url, content_type, on_progress=on_progress)
        return etag

    async def aclose(self) -> None:
        await self.inner.aclose()
