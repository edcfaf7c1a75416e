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

leads_imported_total = Counter(
    "leads_imported_total",
    "Total leads inserted by CSV imports",
)

lead_import_invalid_rows_total = Counter(
    "lead_import_invalid_rows_total",
    "Total CSV rows rejected by import validity rules",
)

lead_import_duplicates_total = Counter(
    "lead_import_duplicates_total",
    "Total CSV rows flagged as duplicate candidates",
)

lead_imports_total = Counter(
    "lead_imports_total",
    "Total CSV import calls by outcome",
    ["status"],
)

lead_bulk_actions_total = Counter(
    "lead_bulk_actions_total",
    "Total bulk lead actions by action and outcome",
    ["action", "status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_import(status: str, imported_count: int = 0, invalid_rows: int = 0, duplicate_count: int = 0) -> None:
    lead_imports_total.labels(status=status).inc()
    if imported_count > 0:
        leads_imported_total.inc(imported_count)
    if invalid_rows > 0:
        lead_import_invalid_rows_total.inc(invalid_rows)
    if duplicate_count > 0:
        lead_import_duplicates_total.inc(duplicate_count)


def observe_bulk_action(action: str, status: str) -> None:
    lead_bulk_actions_total.labels(action=action, status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
