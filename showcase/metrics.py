from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

multipart_sessions_initiated_total = Counter(
    "multipart_sessions_initiated_total", "Total multipart sessions created at the storage backend"
)
multipart_sessions_completed_total = Counter(
    "multipart_sessions_completed_total", "Total multipart sessions finalized"
)
multipart_sessions_aborted_total = Counter("multipart_sessions_aborted_total", "Total multipart sessions aborted")
parts_presigned_total = Counter("parts_presigned_total", "Total presigned part URLs issued")
direct_uploads_presigned_total = Counter("direct_uploads_presigned_total", "Total presigned direct PUT URLs issued")
storage_errors_total = Counter("storage_errors_total", "Total failed storage backend calls", ["operation"])

parts_uploaded_total = Counter("parts_uploaded_total", "Total parts uploaded by this process")
bytes_uploaded_total = Counter("bytes_uploaded_total", "Total bytes uploaded by this process")
part_upload_failures_total = Counter("part_upload_failures_total", "Total failed part uploads")
retries_total = Counter("retries_total", "Total retry attempts for part uploads")

storage_call_latency_seconds = Histogram(
    "storage_call_latency_seconds", "Storage backend call latency in seconds", ["operation"]
)
part_put_latency_seconds = Histogram("part_put_latency_seconds", "Presigned part PUT latency in seconds")
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
