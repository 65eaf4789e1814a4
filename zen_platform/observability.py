from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Tuple

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_ORDERING_DURATION_BUCKETS_MS = (1.0, 2.0, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 5000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)
class _Histogram:
    """Cumulative Prometheus-style histogram; not thread safe on its own."""

    def __init__(self, limits: Tuple[float, ...]) -> None:
        self._limits = limits
        self.count = 0
        self.total = 0.0
        self._hits = [0] * len(limits)

    def observe(self, value: float) -> None:
        amount = max(0.0, float(value or 0.0))
        self.count += 1
        self.total += amount
        for index, limit in enumerate(self._limits):
            if amount <= limit:
                self._hits[index] += 1

    def to_dict(self) -> dict:
        buckets = {f"{limit:g}": hits for limit, hits in zip(self._limits, self._hits)}
        buckets["+Inf"] = self.count
        return {"count": self.count, "sum": self.total, "buckets": buckets}


def _label(value: object, default: str = "unknown") -> str:
    return str(value or "").strip() or default


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._http_requests: Counter = Counter()
            self._http_latency: Dict[Tuple[str, str], _Histogram] = {}
            self._ordering_operations: Counter = Counter()
            self._ordering_rows_rewritten: Counter = Counter()
            self._ordering_conflicts: Counter = Counter()
            self._ordering_latency: Dict[str, _Histogram] = {}

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = _label(method, "GET").upper()
        route_key = _label(route)
        with self._lock:
            self._requests_total += 1
            if int(status_code) >= 400:
                self._errors_total += 1
            self._http_requests[(method_key, route_key, str(int(status_code)))] += 1
            histogram = self._http_latency.setdefault((method_key, route_key), _Histogram(_HTTP_DURATION_BUCKETS_MS))
            histogram.observe(duration_ms)

    def observe_ordering_operation(
        self,
        operation: str,
        collection: str,
        result: str,
        *,
        rows_rewritten: int = 0,
        duration_ms: float = 0.0,
    ) -> None:
        operation_key = _label(operation)
        collection_key = _label(collection)
        with self._lock:
            self._ordering_operations[(operation_key, collection_key, _label(result).lower())] += 1
            if rows_rewritten and rows_rewritten > 0:
                self._ordering_rows_rewritten[collection_key] += int(rows_rewritten)
            histogram = self._ordering_latency.setdefault(operation_key, _Histogram(_ORDERING_DURATION_BUCKETS_MS))
            histogram.observe(duration_ms)

    def observe_ordering_conflict(self, collection: str) -> None:
        with self._lock:
            self._ordering_conflicts[_label(collection)] += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "requests_total": self._requests_total,
                "errors_total": self._errors_total,
                "ordering": {
                    "operations_total": sum(self._ordering_operations.values()),
                    "conflicts_total": sum(self._ordering_conflicts.values()),
                    "rows_rewritten_total": sum(self._ordering_rows_rewritten.values()),
                },
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": [
                    ({"method": method, "route": route, "status": status}, value)
                    for (method, route, status), value in sorted(self._http_requests.items())
                ],
                "http_request_duration_ms": [
                    ({"method": method, "route": route}, histogram.to_dict())
                    for (method, route), histogram in sorted(self._http_latency.items())
                ],
                "ordering_operations_total": [
                    ({"operation": operation, "collection": collection, "result": result}, value)
                    for (operation, collection, result), value in sorted(self._ordering_operations.items())
                ],
                "ordering_rows_rewritten_total": [
                    ({"collection": collection}, value)
                    for collection, value in sorted(self._ordering_rows_rewritten.items())
                ],
                "ordering_conflicts_total": [
                    ({"collection": collection}, value)
                    for collection, value in sorted(self._ordering_conflicts.items())
                ],
                "ordering_duration_ms": [
                    ({"operation": operation}, histogram.to_dict())
                    for operation, histogram in sorted(self._ordering_latency.items())
                ],
            }


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_ordering_operation(
    operation: str,
    collection: str,
    result: str,
    *,
    rows_rewritten: int = 0,
    duration_ms: float = 0.0,
) -> None:
    _METRICS.observe_ordering_operation(
        operation,
        collection,
        result,
        rows_rewritten=rows_rewritten,
        duration_ms=duration_ms,
    )


def observe_ordering_conflict(collection: str) -> None:
    _METRICS.observe_ordering_conflict(collection)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


_PROM_HELP = {
    "http_request_total": ("counter", "Total HTTP requests by method, route and status."),
    "http_request_duration_ms": ("histogram", "HTTP request duration in milliseconds."),
    "ordering_operations_total": ("counter", "Ordering operations by operation, collection and result."),
    "ordering_rows_rewritten_total": ("counter", "Rank writes applied by collection."),
    "ordering_conflicts_total": ("counter", "Concurrent modifications detected while rewriting ranks."),
    "ordering_duration_ms": ("histogram", "Ordering unit-of-work duration in milliseconds."),
}


def prometheus_metrics_text() -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []
    for name, (metric_type, help_text) in _PROM_HELP.items():
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} {metric_type}")
        for labels, value in snapshot[name]:
            if metric_type != "histogram":
                lines.append(_prom_line(name, value, labels))
                continue
            for le_label, hits in value["buckets"].items():
                lines.append(_prom_line(f"{name}_bucket", hits, {**labels, "le": le_label}))
            lines.append(_prom_line(f"{name}_sum", value["sum"], labels))
            lines.append(_prom_line(f"{name}_count", value["count"], labels))
    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
