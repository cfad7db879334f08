"""
Prometheus metrics for the multicluster service account operator.

This module provides metrics collection for monitoring import reconciliation,
remote cluster connections and pod admission decisions, plus the small HTTP
server exposing them.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "msa_reconciliation_total",
    "Total number of service account import reconciliations",
    ["namespace", "trigger", "result"],
    registry=None,
)

RECONCILIATION_DURATION = Histogram(
    "msa_reconciliation_duration_seconds",
    "Time spent reconciling service account imports",
    ["namespace", "trigger"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "msa_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["namespace", "error_type", "retryable"],
    registry=None,
)

IMPORT_PHASE = Gauge(
    "msa_service_account_import_phase",
    "Current phase of each service account import (1 for the active phase)",
    ["namespace", "name", "phase"],
    registry=None,
)

MIRRORED_SECRET_WRITES = Counter(
    "msa_mirrored_secret_writes_total",
    "Mirrored secret upserts by outcome",
    ["namespace", "outcome"],
    registry=None,
)

WRITE_CONFLICTS = Counter(
    "msa_mirrored_secret_write_conflicts_total",
    "Conflicting updates of mirrored secrets",
    ["namespace"],
    registry=None,
)

REMOTE_CONNECTION_BUILDS = Counter(
    "msa_remote_connection_builds_total",
    "Remote cluster connection builds by source and result",
    ["cluster_name", "source", "result"],
    registry=None,
)

REMOTE_CONNECTIONS_CACHED = Gauge(
    "msa_remote_connections_cached",
    "Number of cached remote cluster connections",
    [],
    registry=None,
)

ADMISSION_REQUESTS = Counter(
    "msa_admission_requests_total",
    "Pod admission requests by result",
    ["namespace", "result"],
    registry=None,
)

ADMISSION_DURATION = Histogram(
    "msa_admission_duration_seconds",
    "Time spent handling pod admission requests",
    [],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=None,
)

ALL_METRICS = [
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    IMPORT_PHASE,
    MIRRORED_SECRET_WRITES,
    WRITE_CONFLICTS,
    REMOTE_CONNECTION_BUILDS,
    REMOTE_CONNECTIONS_CACHED,
    ADMISSION_REQUESTS,
    ADMISSION_DURATION,
]

PHASES = ("Pending", "Syncing", "Ready", "Error")


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in ALL_METRICS:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, namespace: str, trigger: str = "event"):
        """
        Context manager to track a reconciliation.

        Args:
            namespace: Namespace of the import
            trigger: What started the reconciliation (event, resync)
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            retryable = "true" if getattr(e, "retryable", False) else "false"
            RECONCILIATION_ERRORS.labels(
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=retryable,
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(
                namespace=namespace, trigger=trigger, result=result
            ).inc()
            RECONCILIATION_DURATION.labels(namespace=namespace, trigger=trigger).observe(
                time.time() - start_time
            )

    def update_import_phase(self, namespace: str, name: str, phase: str) -> None:
        """Set the phase gauge so that exactly one phase reads 1."""
        for candidate in PHASES:
            IMPORT_PHASE.labels(namespace=namespace, name=name, phase=candidate).set(
                1 if candidate == phase else 0
            )

    def forget_import(self, namespace: str, name: str) -> None:
        for candidate in PHASES:
            try:
                IMPORT_PHASE.remove(namespace, name, candidate)
            except KeyError:
                pass

    def record_secret_write(self, namespace: str, outcome: str) -> None:
        MIRRORED_SECRET_WRITES.labels(namespace=namespace, outcome=outcome).inc()

    def record_write_conflict(self, namespace: str) -> None:
        WRITE_CONFLICTS.labels(namespace=namespace).inc()

    def record_connection_build(
        self, cluster_name: str, source: str, success: bool
    ) -> None:
        REMOTE_CONNECTION_BUILDS.labels(
            cluster_name=cluster_name,
            source=source,
            result="success" if success else "failure",
        ).inc()

    def set_cached_connections(self, count: int) -> None:
        REMOTE_CONNECTIONS_CACHED.set(count)

    def record_admission(self, namespace: str, result: str, duration: float) -> None:
        ADMISSION_REQUESTS.labels(namespace=namespace, result=result).inc()
        ADMISSION_DURATION.observe(duration)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics and health endpoints."""

    def __init__(
        self, port: int = 8081, host: str = "0.0.0.0", k8s_client: Any = None
    ):
        self.port = port
        self.host = host
        self.k8s_client = k8s_client
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            # aiohttp rejects a charset inside content_type, pass it separately
            return Response(
                body=metrics_data,
                content_type=CONTENT_TYPE_LATEST.split(";")[0],
                charset="utf-8",
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _health_handler(self, request: Request) -> Response:
        """Handle /health endpoint for operator health checks."""
        try:
            from .health import HealthChecker

            health_checker = HealthChecker(self.k8s_client)
            health_results = await health_checker.check_all()
            health_dict = health_checker.to_dict(health_results)
            status_code = 200 if health_dict["status"] == "healthy" else 503
            return json_response(health_dict, status=status_code)
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return json_response(
                {
                    "status": "unhealthy",
                    "error": f"{type(e).__name__}. Check logs for details.",
                    "timestamp": time.time(),
                },
                status=500,
            )

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness checks."""
        try:
            from .health import HealthChecker

            health_checker = HealthChecker(self.k8s_client)
            results: dict[str, Any] = await health_checker.check_all()
            ready = all(result.status == "healthy" for result in results.values())
            body = {
                "status": "ready" if ready else "not_ready",
                "timestamp": time.time(),
                "checks": {name: result.status for name, result in results.items()},
            }
            return json_response(body, status=200 if ready else 503)
        except Exception as e:
            logger.error(f"Readiness check failed: {e}")
            return json_response(
                {
                    "status": "not_ready",
                    "error": f"{type(e).__name__}. Check logs for details.",
                    "timestamp": time.time(),
                },
                status=503,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
