"""Prometheus metrics for monitoring and observability."""

import re
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    Info,
    generate_latest,
)
from starlette.requests import Request
from starlette.responses import Response

_UUID_SEGMENT = re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
_RAW_PATH = re.compile(r"^/raw/[^/]+/[^/]+/?$")


class MetricsRegistry:
    """Central registry for application metrics."""

    def __init__(self):
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        """Initialize Prometheus metrics."""

        self.app_info = Info("seashare_app", "seashare gateway information")

        # HTTP request metrics
        self.http_requests_total = Counter(
            "seashare_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
        )

        self.http_request_duration_seconds = Histogram(
            "seashare_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0],
        )

        # Relay metrics
        self.uploads_total = Counter(
            "seashare_uploads_total",
            "Upload relays by outcome",
            ["outcome"],  # success, user_error, internal_error
        )

        self.downloads_total = Counter(
            "seashare_downloads_total",
            "Download relays by outcome",
            ["outcome"],
        )

        self.relayed_bytes_total = Counter(
            "seashare_relayed_bytes_total",
            "Bytes relayed between clients and the backend",
            ["direction"],  # upload, download
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration: float,
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()

        self.http_request_duration_seconds.labels(
            method=method, endpoint=endpoint
        ).observe(duration)

    def record_upload(self, outcome: str, relayed_bytes: int = 0) -> None:
        self.uploads_total.labels(outcome=outcome).inc()
        if relayed_bytes:
            self.relayed_bytes_total.labels(direction="upload").inc(relayed_bytes)

    def record_download(self, outcome: str) -> None:
        self.downloads_total.labels(outcome=outcome).inc()

    def record_download_bytes(self, relayed_bytes: int) -> None:
        self.relayed_bytes_total.labels(direction="download").inc(relayed_bytes)


# Global metrics registry
metrics_registry = MetricsRegistry()


def setup_metrics(app_name: str, version: str) -> None:
    """Set up application info metrics."""
    metrics_registry.app_info.info({"app_name": app_name, "version": version})


def normalize_path(path: str) -> str:
    """Normalize path for metrics (remove IDs)."""
    if _RAW_PATH.match(path):
        return "/raw/{share_id}/{filename}"
    return _UUID_SEGMENT.sub("/{library}", path)


class MetricsMiddleware:
    """Middleware to automatically collect HTTP request metrics."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            metrics_registry.record_http_request(
                method=scope.get("method", "UNKNOWN"),
                endpoint=normalize_path(scope.get("path", "/unknown")),
                status_code=status_code,
                duration=time.perf_counter() - start_time,
            )


def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
