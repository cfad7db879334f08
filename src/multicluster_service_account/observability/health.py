"""
Health check utilities for the multicluster service account operator.

The operator is healthy when the local Kubernetes API answers and the
ServiceAccountImport CRD is installed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import IMPORT_CRD_NAME

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy" or "unhealthy"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0
    timestamp: float = 0.0


class HealthChecker:
    """Performs health checks for the operator."""

    def __init__(
        self, k8s_client: client.ApiClient | None = None, timeout: float = 5.0
    ):
        self.k8s_client = k8s_client
        self.timeout = timeout

    @property
    def kubernetes_client(self) -> client.ApiClient:
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def check_all(self) -> dict[str, HealthCheckResult]:
        """Run all health checks."""
        checks = {
            "kubernetes_api": self._check_kubernetes_api,
            "crds_installed": self._check_crds_installed,
        }

        results = {}
        for name, check in checks.items():
            try:
                results[name] = await check()
            except Exception as e:
                results[name] = HealthCheckResult(
                    name=name,
                    status="unhealthy",
                    message=f"Health check failed: {str(e)}",
                    timestamp=time.time(),
                )

        return results

    async def _check_kubernetes_api(self) -> HealthCheckResult:
        """Check Kubernetes API connectivity."""
        start_time = time.time()
        core_api = client.CoreV1Api(self.kubernetes_client)

        try:
            await asyncio.to_thread(
                core_api.list_namespace, limit=1, _request_timeout=self.timeout
            )
        except ApiException as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name="kubernetes_api",
                status="unhealthy",
                message=f"Kubernetes API error: {e.reason}",
                details={"status_code": e.status},
                duration=duration,
                timestamp=time.time(),
            )

        duration = time.time() - start_time
        return HealthCheckResult(
            name="kubernetes_api",
            status="healthy",
            message="Kubernetes API is accessible",
            details={"response_time_ms": round(duration * 1000, 2)},
            duration=duration,
            timestamp=time.time(),
        )

    async def _check_crds_installed(self) -> HealthCheckResult:
        """Check that the ServiceAccountImport CRD is installed."""
        start_time = time.time()
        api_extensions = client.ApiextensionsV1Api(self.kubernetes_client)

        try:
            await asyncio.to_thread(
                api_extensions.read_custom_resource_definition,
                name=IMPORT_CRD_NAME,
                _request_timeout=self.timeout,
            )
        except ApiException as e:
            if e.status != 404:
                raise
            return HealthCheckResult(
                name="crds_installed",
                status="unhealthy",
                message=f"Missing required CRD: {IMPORT_CRD_NAME}",
                details={"missing": [IMPORT_CRD_NAME]},
                duration=time.time() - start_time,
                timestamp=time.time(),
            )

        return HealthCheckResult(
            name="crds_installed",
            status="healthy",
            message="All required CRDs are installed",
            details={"installed": [IMPORT_CRD_NAME]},
            duration=time.time() - start_time,
            timestamp=time.time(),
        )

    def get_overall_health(self, results: dict[str, HealthCheckResult]) -> str:
        """Determine overall health status from individual check results."""
        if not results:
            return "unknown"

        if any(result.status != "healthy" for result in results.values()):
            return "unhealthy"
        return "healthy"

    def to_dict(self, results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        """Convert health check results to dictionary format."""
        return {
            "status": self.get_overall_health(results),
            "timestamp": time.time(),
            "checks": {
                name: {
                    "status": result.status,
                    "message": result.message,
                    "details": result.details,
                    "duration": result.duration,
                    "timestamp": result.timestamp,
                }
                for name, result in results.items()
            },
        }
