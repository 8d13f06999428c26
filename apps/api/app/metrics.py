from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

duplicate_checks_total = Counter(
    "duplicate_checks_total",
    "Total duplicate checks by outcome",
    ["outcome"],
)

duplicate_check_duration_seconds = Histogram(
    "duplicate_check_duration_seconds",
    "Duplicate check duration in seconds",
)

duplicate_matches_total = Counter(
    "duplicate_matches_total",
    "Total duplicate matches by match type and severity",
    ["match_type", "severity"],
)

duplicate_warnings_total = Counter(
    "duplicate_warnings_total",
    "Total persisted duplicate warnings by severity",
    ["severity"],
)

duplicate_decisions_total = Counter(
    "duplicate_decisions_total",
    "Total recorded duplicate decisions",
    ["decision"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Total best-effort audit writes that failed",
    ["log"],
)

security_denials_total = Counter(
    "security_denials_total",
    "Total authorization denials by resource and reason",
    ["resource", "reason"],
)

exports_total = Counter(
    "exports_total",
    "Total export decisions by resource and outcome",
    ["resource", "outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_duplicate_check(outcome: str, duration: float) -> None:
    duplicate_checks_total.labels(outcome=outcome).inc()
    duplicate_check_duration_seconds.observe(duration)


def observe_duplicate_match(match_type: str, severity: str) -> None:
    duplicate_matches_total.labels(match_type=match_type, severity=severity).inc()


def observe_duplicate_warning(severity: str) -> None:
    duplicate_warnings_total.labels(severity=severity).inc()


def observe_duplicate_decision(decision: str) -> None:
    duplicate_decisions_total.labels(decision=decision).inc()


def observe_audit_write_failure(log: str) -> None:
    audit_write_failures_total.labels(log=log).inc()


def observe_security_denial(resource: str, reason: str) -> None:
    security_denials_total.labels(resource=resource, reason=reason).inc()


def observe_export(resource: str, outcome: str) -> None:
    exports_total.labels(resource=resource, outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
