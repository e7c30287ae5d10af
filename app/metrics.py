from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

PUBLICATION_UPLOADS = Counter(
    "publication_uploads_total",
    "Publication upload outcomes",
    ["outcome"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_request(method: str, path: str, status: int, duration: float) -> None:
    REQUEST_COUNT.labels(method=method, path=path, status=str(status)).inc()
    REQUEST_LATENCY.labels(method=method, path=path, status=str(status)).observe(duration)


def record_upload(outcome: str) -> None:
    PUBLICATION_UPLOADS.labels(outcome=outcome).inc()


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
