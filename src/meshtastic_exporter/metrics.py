from __future__ import annotations

import functools
import json
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .state import LinkState

LOGGER = logging.getLogger(__name__)

LabelKey = Tuple[Tuple[str, str], ...]


def _labels_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if value == float("inf"):
        return "+Inf"
    if value == float("-inf"):
        return "-Inf"
    return repr(float(value))


class CounterMetric:
    """Monotonic counter whose idle series may be evicted.

    A series that has not been incremented for ``idle_timeout`` seconds is
    dropped on the next read, so counters for nodes that left the mesh stop
    showing up in the exposition.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.description = description
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._samples: Dict[LabelKey, float] = {}
        self._touched: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def inc(self, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only be incremented by non-negative amounts")
        key = _labels_key(labels)
        with self._lock:
            self._evict_idle()
            self._samples[key] = self._samples.get(key, 0.0) + amount
            self._touched[key] = self._clock()

    def _evict_idle(self) -> None:
        if self.idle_timeout is None:
            return
        cutoff = self._clock() - self.idle_timeout
        stale = [key for key, touched in self._touched.items() if touched < cutoff]
        for key in stale:
            self._samples.pop(key, None)
            self._touched.pop(key, None)

    def samples(self) -> Dict[LabelKey, float]:
        with self._lock:
            self._evict_idle()
            return dict(self._samples)


class GaugeMetric:
    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._samples: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._samples[key] = float(value)

    def samples(self) -> Dict[LabelKey, float]:
        with self._lock:
            return dict(self._samples)


class MetricsRegistry:
    def __init__(
        self,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._counters: Dict[str, CounterMetric] = {}
        self._gauges: Dict[str, GaugeMetric] = {}
        self._lock = threading.Lock()

    # Metric creation helpers -------------------------------------------------
    def counter(self, name: str, description: str = "") -> CounterMetric:
        with self._lock:
            if name in self._gauges:
                raise ValueError(f"{name} is already registered as a gauge")
            metric = self._counters.get(name)
            if metric is None:
                metric = CounterMetric(
                    name, description, idle_timeout=self.idle_timeout, clock=self._clock
                )
                self._counters[name] = metric
            elif description and not metric.description:
                metric.description = description
            return metric

    def gauge(self, name: str, description: str = "") -> GaugeMetric:
        with self._lock:
            if name in self._counters:
                raise ValueError(f"{name} is already registered as a counter")
            metric = self._gauges.get(name)
            if metric is None:
                metric = GaugeMetric(name, description)
                self._gauges[name] = metric
            elif description and not metric.description:
                metric.description = description
            return metric

    # Recording helpers ------------------------------------------------------
    def inc(
        self,
        name: str,
        amount: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> None:
        self.counter(name, description=description).inc(amount, labels=labels)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
        description: str = "",
    ) -> None:
        self.gauge(name, description=description).set(value, labels=labels)

    def get_sample(
        self, name: str, labels: Optional[Dict[str, str]] = None
    ) -> Optional[float]:
        """Current value of one series, or None when it does not exist."""
        key = _labels_key(labels)
        metric = self._gauges.get(name) or self._counters.get(name)
        if metric is None:
            return None
        return metric.samples().get(key)

    # Exposition helpers -----------------------------------------------------
    def _families(self) -> List[Tuple[str, str, Union[CounterMetric, GaugeMetric]]]:
        families: List[Tuple[str, str, Union[CounterMetric, GaugeMetric]]] = []
        families.extend((name, "counter", metric) for name, metric in list(self._counters.items()))
        families.extend((name, "gauge", metric) for name, metric in list(self._gauges.items()))
        return families

    def snapshot(self) -> Dict[str, object]:
        """Current series as JSON-friendly dicts, grouped by metric kind."""
        grouped: Dict[str, Dict[str, Dict[str, float]]] = {"counters": {}, "gauges": {}}
        for name, kind, metric in self._families():
            grouped[kind + "s"][name] = {
                json.dumps(dict(key), sort_keys=True): value
                for key, value in metric.samples().items()
            }
        return dict(grouped)

    def render_prometheus(self) -> str:
        lines: List[str] = []
        for name, kind, metric in self._families():
            if metric.description:
                lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {kind}")
            for key, value in metric.samples().items():
                lines.append(f"{name}{_format_labels(key)} {_format_value(value)}")
        return "\n".join(lines) + "\n"


def _format_labels(key: LabelKey) -> str:
    if not key:
        return ""
    return "{" + ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in key) + "}"


StatusFn = Callable[[], Dict[str, object]]


class _ExporterRequestHandler(BaseHTTPRequestHandler):
    """Serves the registry and the device link state.

    ``status_fn`` must return a JSON-serialisable dict with a ``link`` key
    holding a :class:`LinkState` value; ``/ready`` answers 200 only while the
    link is up.
    """

    def __init__(self, *args: Any, registry: MetricsRegistry, status_fn: StatusFn, **kwargs: Any) -> None:
        # BaseHTTPRequestHandler handles the request inside __init__
        self.registry = registry
        self.status_fn = status_fn
        super().__init__(*args, **kwargs)

    def do_GET(self) -> None:  # noqa: N802
        route = self.path.split("?", 1)[0]
        if route == "/metrics":
            self._reply(200, self.registry.render_prometheus(), "text/plain; version=0.0.4; charset=utf-8")
        elif route == "/health":
            self._reply(200, "ok\n")
        elif route == "/ready":
            link = self.status_fn().get("link", LinkState.DOWN.value)
            self._reply(200 if link == LinkState.UP.value else 503, f"link {link}\n")
        elif route == "/status":
            body = dict(self.status_fn())
            body["metrics"] = self.registry.snapshot()
            self._reply(200, json.dumps(body, indent=2, sort_keys=True), "application/json")
        else:
            self._reply(404, "not found\n")

    def _reply(self, code: int, body: str, content_type: str = "text/plain; charset=utf-8") -> None:
        payload = body.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        LOGGER.debug("[METRICS] %s %s", self.address_string(), format % args)


def start_metrics_http_server(
    host: str,
    port: int,
    registry: MetricsRegistry,
    status_fn: StatusFn,
) -> ThreadingHTTPServer:
    """Bind the exporter endpoint and serve it from a daemon thread.

    Raises ``OSError`` when the address cannot be bound.
    """
    handler = functools.partial(_ExporterRequestHandler, registry=registry, status_fn=status_fn)
    server = ThreadingHTTPServer((host, port), handler)
    threading.Thread(target=server.serve_forever, name="metrics-http", daemon=True).start()
    return server
