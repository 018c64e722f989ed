from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "quizroster_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
_REQ_LATENCY = Histogram(
    "quizroster_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "path"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0),
)
_ENROLLMENTS = Counter(
    "quizroster_enrollments_total",
    "Enrollment attempts by provenance and outcome",
    labelnames=("source", "outcome"),
)
_ASSIGNMENTS = Counter(
    "quizroster_assignments_created_total",
    "Quiz assignments newly inserted by fan-out",
    labelnames=("source",),
)
_BULK_OUTCOMES = Counter(
    "quizroster_bulk_invite_results_total",
    "Per-email outcomes of bulk add-students calls",
    labelnames=("status",),
)
_REDEMPTIONS = Counter(
    "quizroster_token_redemptions_total",
    "Join and invite token redemptions",
    labelnames=("kind", "result"),
)


def observe_http_request(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, path=path, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, path=path).observe(duration_seconds)


def record_enrollment(*, source: str, already_member: bool) -> None:
    _ENROLLMENTS.labels(source=source, outcome="existing" if already_member else "created").inc()


def record_assignments_created(*, source: str, count: int) -> None:
    if count > 0:
        _ASSIGNMENTS.labels(source=source).inc(count)


def record_bulk_result(*, status: str) -> None:
    _BULK_OUTCOMES.labels(status=status).inc()


def record_redemption(*, kind: str, result: str) -> None:
    _REDEMPTIONS.labels(kind=kind, result=result).inc()


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
