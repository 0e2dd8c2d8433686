"""
FieldMapper Metrics Module.

In-process, Prometheus-compatible metrics for the suggestion service.

Usage:
    from fieldmapper.core.metrics import setup_metrics, track_mapping_request

    setup_metrics(app)
    track_mapping_request(strategy="ai", duration=0.42, candidates=12)
"""

import math
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


def _label_key(label_values: Dict[str, Any]) -> tuple:
    return tuple(sorted((k, str(v)) for k, v in label_values.items()))


def _format_labels(key: tuple, **extra: str) -> str:
    pairs = list(key) + list(extra.items())
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"


# =============================================================================
# Metric Types
# =============================================================================

@dataclass
class Counter:
    """Thread-safe monotonically increasing counter."""
    name: str
    description: str
    values: Dict[tuple, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, value: float = 1, **label_values):
        key = _label_key(label_values)
        with self._lock:
            self.values[key] = self.values.get(key, 0) + value

    def get(self, **label_values) -> float:
        with self._lock:
            return self.values.get(_label_key(label_values), 0)


@dataclass
class Gauge:
    """Thread-safe gauge."""
    name: str
    description: str
    values: Dict[tuple, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, value: float = 1.0, **label_values):
        key = _label_key(label_values)
        with self._lock:
            self.values[key] = self.values.get(key, 0) + value

    def dec(self, value: float = 1.0, **label_values):
        self.inc(-value, **label_values)

    def get(self, **label_values) -> float:
        with self._lock:
            return self.values.get(_label_key(label_values), 0)


@dataclass
class HistogramSeries:
    """Cumulative bucket counts and running totals for one label set."""
    bucket_counts: list
    count: int = 0
    sum: float = 0.0
    min: float = math.inf
    max: float = -math.inf


@dataclass
class Histogram:
    """Thread-safe histogram with fixed buckets per label set."""
    name: str
    description: str
    buckets: tuple = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
    series: Dict[tuple, HistogramSeries] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def observe(self, value: float, **label_values):
        key = _label_key(label_values)
        with self._lock:
            entry = self.series.get(key)
            if entry is None:
                entry = self.series[key] = HistogramSeries(bucket_counts=[0] * len(self.buckets))
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    entry.bucket_counts[i] += 1
            entry.count += 1
            entry.sum += value
            entry.min = min(entry.min, value)
            entry.max = max(entry.max, value)

    def snapshot(self) -> Dict[tuple, HistogramSeries]:
        """Copy of every series, safe to read without the lock."""
        with self._lock:
            return {key: replace(s, bucket_counts=list(s.bucket_counts)) for key, s in self.series.items()}

    def get_stats(self, **label_values) -> Dict[str, float]:
        """Count, sum, mean and extremes for one label set."""
        with self._lock:
            entry = self.series.get(_label_key(label_values))
            if entry is None or entry.count == 0:
                return {"count": 0, "sum": 0, "avg": 0}
            return {
                "count": entry.count,
                "sum": entry.sum,
                "avg": entry.sum / entry.count,
                "min": entry.min,
                "max": entry.max,
            }


# =============================================================================
# Registry
# =============================================================================

class MetricsRegistry:
    """Named collection of metrics."""

    def __init__(self):
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._init_default_metrics()

    def _init_default_metrics(self):
        # HTTP
        self.register(Counter("fieldmapper_http_requests_total", "Total HTTP requests"))
        self.register(Histogram("fieldmapper_http_request_duration_seconds", "HTTP request duration"))
        self.register(Counter("fieldmapper_http_errors_total", "HTTP responses with status >= 400"))
        self.register(Gauge("fieldmapper_requests_in_progress", "HTTP requests currently being served"))

        # Mapping pipeline
        self.register(Counter("fieldmapper_mapping_requests_total", "Mapping requests by strategy"))
        self.register(Histogram("fieldmapper_mapping_duration_seconds", "Time to build suggestions"))
        self.register(Counter("fieldmapper_candidates_emitted_total", "Mapping candidates returned"))
        self.register(Counter("fieldmapper_ai_fallbacks_total", "AI attempts abandoned, by reason"))

        # LLM
        self.register(Counter("fieldmapper_llm_requests_total", "LLM completion calls"))
        self.register(Histogram("fieldmapper_llm_request_duration_seconds", "LLM call duration"))

        # Feedback
        self.register(Counter("fieldmapper_feedback_entries_total", "Feedback entries by outcome"))

    def register(self, metric: Any):
        with self._lock:
            self._metrics[metric.name] = metric

    def get(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._metrics.get(name)

    def all_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metrics)


_registry = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    """Get the global metrics registry."""
    return _registry


# =============================================================================
# Tracking Functions
# =============================================================================

def track_http_request(endpoint: str, method: str, duration: float, status: int):
    """Record one served HTTP request."""
    _registry.get("fieldmapper_http_requests_total").inc(endpoint=endpoint, method=method)
    _registry.get("fieldmapper_http_request_duration_seconds").observe(
        duration, endpoint=endpoint, method=method
    )
    if status >= 400:
        _registry.get("fieldmapper_http_errors_total").inc(
            endpoint=endpoint, method=method, status=status
        )


def track_mapping_request(strategy: str, duration: float, candidates: int):
    """Record one completed suggestion computation."""
    _registry.get("fieldmapper_mapping_requests_total").inc(strategy=strategy)
    _registry.get("fieldmapper_mapping_duration_seconds").observe(duration, strategy=strategy)
    _registry.get("fieldmapper_candidates_emitted_total").inc(candidates, strategy=strategy)


def track_ai_fallback(reason: str):
    """Record why the AI path was abandoned."""
    _registry.get("fieldmapper_ai_fallbacks_total").inc(reason=reason)


def track_llm_request(duration: float, model: str = "unknown"):
    """Record one LLM completion call, successful or not."""
    _registry.get("fieldmapper_llm_requests_total").inc(model=model)
    _registry.get("fieldmapper_llm_request_duration_seconds").observe(duration, model=model)


def track_feedback(count: int, outcome: str):
    """Record a feedback batch: outcome is stored, not_configured or failed."""
    _registry.get("fieldmapper_feedback_entries_total").inc(count, outcome=outcome)


# =============================================================================
# Export
# =============================================================================

def export_metrics_json() -> Dict[str, Any]:
    """Export all metrics as a JSON-compatible dict."""
    result = {}

    for name, metric in _registry.all_metrics().items():
        if isinstance(metric, Histogram):
            values = {str(k): metric.get_stats(**dict(k)) for k in metric.snapshot()}
            kind = "histogram"
        else:
            values = {str(k): v for k, v in metric.values.items()}
            kind = "counter" if isinstance(metric, Counter) else "gauge"
        result[name] = {"type": kind, "description": metric.description, "values": values}

    return result


def export_metrics_prometheus() -> str:
    """Export metrics in Prometheus text exposition format."""
    lines = []

    for name, metric in _registry.all_metrics().items():
        lines.append(f"# HELP {name} {metric.description}")

        if isinstance(metric, Histogram):
            lines.append(f"# TYPE {name} histogram")
            for key, entry in metric.snapshot().items():
                for bound, bucket_count in zip(metric.buckets, entry.bucket_counts):
                    lines.append(f"{name}_bucket{_format_labels(key, le=str(bound))} {bucket_count}")
                lines.append(f"{name}_bucket{_format_labels(key, le='+Inf')} {entry.count}")
                lines.append(f"{name}_sum{_format_labels(key)} {entry.sum}")
                lines.append(f"{name}_count{_format_labels(key)} {entry.count}")
        else:
            kind = "counter" if isinstance(metric, Counter) else "gauge"
            lines.append(f"# TYPE {name} {kind}")
            for key, value in list(metric.values.items()):
                lines.append(f"{name}{_format_labels(key)} {value}")

        lines.append("")

    return "\n".join(lines)


# =============================================================================
# FastAPI Integration
# =============================================================================

UNMATCHED_ROUTE = "<unmatched>"


def route_template(app, scope) -> str:
    """Path template of the route serving ``scope``, or ``UNMATCHED_ROUTE``."""
    from starlette.routing import Match

    partial = None
    for route in app.router.routes:
        match, _ = route.matches(scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_ROUTE)
        if match == Match.PARTIAL and partial is None:
            partial = getattr(route, "path", UNMATCHED_ROUTE)
    return partial or UNMATCHED_ROUTE


def setup_metrics(app):
    """
    Install the request-tracking middleware and metrics endpoints.

    Usage:
        app = FastAPI()
        setup_metrics(app)
    """
    from fastapi import Request, Response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()
        gauge = _registry.get("fieldmapper_requests_in_progress")
        gauge.inc()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            gauge.dec()
            endpoint = route_template(app, request.scope)
            track_http_request(endpoint, request.method, time.time() - start_time, status)

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(content=export_metrics_prometheus(), media_type="text/plain")

    @app.get("/api/v1/metrics", tags=["Metrics"])
    async def metrics_json_endpoint():
        """JSON metrics endpoint."""
        return export_metrics_json()
