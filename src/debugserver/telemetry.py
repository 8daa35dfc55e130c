from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

HELD_REQUESTS_TOTAL = Counter(
    "held_requests_total",
    "Requests registered and held open.",
    ["method"],
)
RELEASED_REQUESTS_TOTAL = Counter(
    "released_requests_total",
    "Held requests released by the operator.",
)
RELEASE_BATCHES_TOTAL = Counter(
    "release_batches_total",
    "Operator release events.",
    ["result"],
)

PENDING_REQUESTS = Gauge("pending_requests", "Requests currently held open.")

HOLD_SECONDS = Histogram(
    "hold_seconds",
    "Time from arrival until the body was released.",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0),
)


class Telemetry:
    def record_held(self, method: str, pending_count: int) -> None:
        HELD_REQUESTS_TOTAL.labels(method=method).inc()
        PENDING_REQUESTS.set(max(0, pending_count))

    def record_release_batch(self, released: int, pending_count: int) -> None:
        result = "released" if released else "empty"
        RELEASE_BATCHES_TOTAL.labels(result=result).inc()
        RELEASED_REQUESTS_TOTAL.inc(max(0, released))
        PENDING_REQUESTS.set(max(0, pending_count))

    def observe_hold(self, value: float) -> None:
        HOLD_SECONDS.observe(max(0.0, value))

    @staticmethod
    def start_exporter(port: int, host: str = "0.0.0.0") -> None:
        start_http_server(port, addr=host)
