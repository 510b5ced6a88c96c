from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Mapping, Tuple

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_SWEEP_DURATION_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)

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
    _reserved = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

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
            if key in self._reserved or key.startswith("_"):
                continue
            if key in payload or callable(value):
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


_COUNTER_HELP = {
    "http_request_total": "Total HTTP requests by method, route and status.",
    "proposal_sent_total": "Proposals accepted by the send gate.",
    "proposal_rejected_total": "Proposal writes rejected, by reason.",
    "draft_saved_total": "Proposal drafts saved.",
    "quote_status_advance_failed_total": "Quote advances to receiving that failed after a send.",
    "domain_event_emitted_total": "Domain events published, by type.",
    "lifecycle_sweep_total": "Lifecycle sweep runs, by result.",
    "lifecycle_sweep_transitions_total": "Status transitions applied by the sweep, by kind.",
}
_HISTOGRAM_HELP = {
    "http_request_duration_ms": "HTTP request duration in milliseconds.",
    "lifecycle_sweep_duration_ms": "Lifecycle sweep duration in milliseconds.",
}
_ZERO_WHEN_EMPTY = frozenset({"proposal_sent_total", "draft_saved_total", "quote_status_advance_failed_total"})

LabelKey = Tuple[Tuple[str, str], ...]


def _label_key(labels: Mapping[str, object] | None) -> LabelKey:
    return tuple(sorted((str(key), str(value)) for key, value in (labels or {}).items()))


class MetricsRegistry:
    """Labelled counters and histograms shared by request threads and the sweep scheduler."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, Dict[LabelKey, int]] = {}
        self._histograms: Dict[str, Dict[LabelKey, dict]] = {}

    def inc(self, name: str, labels: Mapping[str, object] | None = None, amount: int = 1) -> None:
        amount = int(amount or 0)
        if amount <= 0:
            return
        key = _label_key(labels)
        with self._lock:
            series = self._counters.setdefault(name, {})
            series[key] = series.get(key, 0) + amount

    def observe(
        self,
        name: str,
        value: float,
        limits: tuple[float, ...],
        labels: Mapping[str, object] | None = None,
    ) -> None:
        value = max(0.0, float(value))
        key = _label_key(labels)
        with self._lock:
            state = self._histograms.setdefault(name, {}).get(key)
            if state is None:
                state = {"count": 0, "sum": 0.0, "buckets": [[f"{limit:g}", limit, 0] for limit in limits]}
                self._histograms[name][key] = state
            state["count"] += 1
            state["sum"] += value
            for bucket in state["buckets"]:
                if value <= bucket[1]:
                    bucket[2] += 1

    def counter(self, name: str) -> Dict[LabelKey, int]:
        with self._lock:
            return dict(self._counters.get(name, {}))

    def histogram(self, name: str) -> Dict[LabelKey, dict]:
        with self._lock:
            return {
                key: {
                    "count": state["count"],
                    "sum": state["sum"],
                    "buckets": [(label, count) for label, _limit, count in state["buckets"]],
                }
                for key, state in self._histograms.get(name, {}).items()
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started > 0.0 else 0.0
    method = str(request.method or "GET").upper()
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.inc("http_request_total", {"method": method, "route": route, "status": int(response.status_code)})
    _METRICS.observe("http_request_duration_ms", elapsed_ms, _HTTP_DURATION_BUCKETS_MS, {"method": method, "route": route})
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def observe_proposal_sent() -> None:
    _METRICS.inc("proposal_sent_total")


def observe_proposal_rejected(reason: str) -> None:
    _METRICS.inc("proposal_rejected_total", {"reason": str(reason or "").strip() or "unknown"})


def observe_draft_saved() -> None:
    _METRICS.inc("draft_saved_total")


def observe_quote_status_advance_failed() -> None:
    _METRICS.inc("quote_status_advance_failed_total")


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.inc("domain_event_emitted_total", {"event_type": str(event_type or "").strip() or "unknown"})


def observe_lifecycle_sweep(result: str, duration_ms: float, transitions: Dict[str, int] | None = None) -> None:
    _METRICS.inc("lifecycle_sweep_total", {"result": str(result or "").strip() or "unknown"})
    for kind, count in (transitions or {}).items():
        _METRICS.inc("lifecycle_sweep_transitions_total", {"kind": kind}, amount=count)
    _METRICS.observe("lifecycle_sweep_duration_ms", duration_ms, _SWEEP_DURATION_BUCKETS_MS)


def _by_label(name: str, label: str) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for key, value in _METRICS.counter(name).items():
        label_value = dict(key).get(label, "")
        totals[label_value] = totals.get(label_value, 0) + value
    return dict(sorted(totals.items()))


def _scalar(name: str) -> int:
    return sum(_METRICS.counter(name).values())


def _route_stats() -> list[dict]:
    stats: Dict[str, dict] = {}
    for key, value in _METRICS.counter("http_request_total").items():
        labels = dict(key)
        route = stats.setdefault(f"{labels['method']} {labels['route']}", {"requests": 0, "errors": 0})
        route["requests"] += value
        if int(labels["status"]) >= 400:
            route["errors"] += value
    for key, state in _METRICS.histogram("http_request_duration_ms").items():
        labels = dict(key)
        route = stats.get(f"{labels['method']} {labels['route']}")
        if route is not None and state["count"]:
            route["avg_latency_ms"] = round(state["sum"] / state["count"], 2)
    rows = [{"route": route, "avg_latency_ms": 0.0} | values for route, values in stats.items()]
    rows.sort(key=lambda item: item["requests"], reverse=True)
    return rows[:40]


def metrics_snapshot() -> dict:
    routes = _route_stats()
    rejected = _by_label("proposal_rejected_total", "reason")
    events = _by_label("domain_event_emitted_total", "event_type")
    return {
        "requests_total": sum(row["requests"] for row in routes),
        "errors_total": sum(row["errors"] for row in routes),
        "by_route": routes,
        "proposals": {
            "sent_total": _scalar("proposal_sent_total"),
            "draft_saved_total": _scalar("draft_saved_total"),
            "rejected_total": sum(rejected.values()),
            "rejected_by_reason": rejected,
            "quote_status_advance_failed_total": _scalar("quote_status_advance_failed_total"),
        },
        "domain_events": {"emitted_total": sum(events.values()), "by_type": events},
        "lifecycle_sweep": {
            "runs_by_result": _by_label("lifecycle_sweep_total", "result"),
            "transitions": _by_label("lifecycle_sweep_transitions_total", "kind"),
        },
    }


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: LabelKey = ()) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def prometheus_metrics_text() -> str:
    lines: list[str] = []
    for name, help_text in _COUNTER_HELP.items():
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} counter")
        series = _METRICS.counter(name)
        if not series and name in _ZERO_WHEN_EMPTY:
            series = {(): 0}
        for labels, value in sorted(series.items(), key=lambda item: item[0]):
            lines.append(_prom_line(name, value, labels))

    for name, help_text in _HISTOGRAM_HELP.items():
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} histogram")
        for labels, state in sorted(_METRICS.histogram(name).items(), key=lambda item: item[0]):
            for le_label, count in state["buckets"]:
                lines.append(_prom_line(f"{name}_bucket", count, labels + (("le", le_label),)))
            lines.append(_prom_line(f"{name}_bucket", state["count"], labels + (("le", "+Inf"),)))
            lines.append(_prom_line(f"{name}_sum", float(state["sum"]), labels))
            lines.append(_prom_line(f"{name}_count", state["count"], labels))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
