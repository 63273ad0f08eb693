from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

fragments_accepted_total = Counter("fragments_accepted_total", "Total fragments durably stored")
fragment_bytes_total = Counter("fragment_bytes_total", "Total fragment bytes stored")
fragments_rejected_total = Counter("fragments_rejected_total", "Total rejected fragments", ["reason"])
dedup_hits_total = Counter("dedup_hits_total", "Uploads short-circuited by an existing content hash")
merges_total = Counter("merges_total", "Merge attempts by terminal state", ["outcome"])

fragment_write_latency_seconds = Histogram("fragment_write_latency_seconds", "Fragment write latency in seconds")
merge_duration_seconds = Histogram("merge_duration_seconds", "Fragment reassembly duration in seconds")
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status_code"],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
