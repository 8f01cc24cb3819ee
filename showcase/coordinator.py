import asyncio
import enum
import logging
from dataclasses import dataclass, field
from functools import partial

from opentelemetry import trace

from showcase.errors import InitiateError, IntegrityError
from showcase.events import UPLOAD_LOGGER_NAME, get_event_logger, log_event
from showcase.limits import ConcurrencyLimiter
from showcase.models import PartRecord
from showcase.planner import PartRange, UploadPlan
from showcase.presign import PresignClient
from showcase.progress import ProgressAggregator

upload_logger = get_event_logger(UPLOAD_LOGGER_NAME)
tracer = trace.get_tracer(__name__)


class SessionState(str, enum.Enum):
    idle = "IDLE"
    initiated = "INITIATED"
    uploading_parts = "UPLOADING_PARTS"
    completing = "COMPLETING"
    done = "DONE"
    aborting = "ABORTING"
    failed = "FAILED"


TERMINAL_STATES = (SessionState.done, SessionState.failed)


@dataclass
class MultipartSession:
    object_key: str
    upload_id: str | None = None
    parts: dict[int, PartRecord] = field(default_factory=dict)
    state: SessionState = SessionState.idle

    def sorted_parts(self) -> list[PartRecord]:
        return [self.parts[number] for number in sorted(self.parts)]


class MultipartCoordinator:
    """Drives one multipart session from initiate to complete.

    Any failure after the session exists aborts it exactly once and then
    re-raises the error that caused the abort, never an abort error.
    """

    def __init__(self, presign_client: PresignClient, uploader, limiter: ConcurrencyLimiter) -> None:
        self.presign_client = presign_client
        self.uploader = uploader
        self.limiter = limiter

    async def run(self, task, plan: UploadPlan, progress: ProgressAggregator) -> str:
        session = MultipartSession(object_key=task.object_key)
        task.session = session
        with tracer.start_as_current_span("multipart_upload") as span:
            span.set_attribute("upload.object_key", task.object_key)
            span.set_attribute("upload.total_parts", plan.total_parts)
            try:
                session.upload_id = await self.presign_client.initiate(task.object_key, task.content_type)
            except Exception as exc:
                session.state = SessionState.failed
                raise InitiateError(exc) from exc
            session.state = SessionState.initiated
            log_event(
                upload_logger,
                {
                    "event": "multipart_initiated",
                    "object_key": task.object_key,
                    "upload_id": session.upload_id,
                    "total_parts": plan.total_parts,
                    "size": plan.size,
                },
            )

            try:
                session.state = SessionState.uploading_parts
                await self.limiter.run(
                    [partial(self._upload_part, task, session, part, progress) for part in plan.parts]
                )
                session.state = SessionState.completing
                public_url = await self.presign_client.complete(
                    task.object_key, session.upload_id, session.sorted_parts()
                )
            except (Exception, asyncio.CancelledError) as exc:
                await self._abort(session, exc)
                raise

            session.state = SessionState.done
            log_event(
                upload_logger,
                {
                    "event": "multipart_completed",
                    "object_key": task.object_key,
                    "upload_id": session.upload_id,
                    "total_parts": plan.total_parts,
                },
            )
            return public_url

    async def _upload_part(
        self,
        task,
        session: MultipartSession,
        part: PartRange,
        progress: ProgressAggregator,
    ) -> PartRecord:
        url = await self.presign_client.presign_part(task.object_key, session.upload_id, part.part_number)
        etag = await self.uploader.upload(
            task.source[part.start : part.end],
            url,
            task.content_type,
            on_progress=progress.part_callback(part.part_number),
        )
        if not etag:
            raise IntegrityError(f"part {part.part_number} finished without an ETag")
        record = PartRecord(part_number=part.part_number, etag=etag)
        session.parts[part.part_number] = record
        return record

    async def _abort(self, session: MultipartSession, cause: BaseException) -> None:
        if session.state in TERMINAL_STATES or session.state is SessionState.aborting:
            return
        session.state = SessionState.aborting
        try:
            await self.presign_client.abort(session.object_key, session.upload_id)
        except Exception as exc:
            log_event(
                upload_logger,
                {
                    "event": "multipart_abort_failed",
                    "object_key": session.object_key,
                    "upload_id": session.upload_id,
                    "detail": str(exc),
                    "error_class": exc.__class__.__name__,
                },
                level=logging.WARNING,
            )
        session.state = SessionState.failed
        log_event(
            upload_logger,
            {
                "event": "multipart_aborted",
                "object_key": session.object_key,
                "upload_id": session.upload_id,
                "uploaded_parts": len(session.parts),
                "cause": str(cause) or cause.__class__.__name__,
                "error_class": cause.__class__.__name__,
            },
            level=logging.WARNING,
        )
