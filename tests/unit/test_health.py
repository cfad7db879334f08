"""Unit tests for operator health checks."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from multicluster_service_account.observability.health import HealthChecker

HEALTH_MODULE = "multicluster_service_account.observability.health"


@pytest.fixture
def apis():
    core = MagicMock()
    extensions = MagicMock()
    with (
        patch(f"{HEALTH_MODULE}.client.CoreV1Api", return_value=core),
        patch(f"{HEALTH_MODULE}.client.ApiextensionsV1Api", return_value=extensions),
    ):
        yield core, extensions


class TestHealthChecker:
    @pytest.mark.asyncio
    async def test_all_healthy(self, apis):
        core, extensions = apis
        checker = HealthChecker(MagicMock(), timeout=2.0)

        results = await checker.check_all()

        assert checker.get_overall_health(results) == "healthy"
        core.list_namespace.assert_called_once_with(limit=1, _request_timeout=2.0)
        extensions.read_custom_resource_definition.assert_called_once_with(
            name="serviceaccountimports.multicluster.admiralty.io",
            _request_timeout=2.0,
        )

    @pytest.mark.asyncio
    async def test_missing_crd(self, apis):
        _, extensions = apis
        extensions.read_custom_resource_definition.side_effect = ApiException(
            status=404
        )
        checker = HealthChecker(MagicMock())

        results = await checker.check_all()

        assert results["crds_installed"].status == "unhealthy"
        assert checker.to_dict(results)["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_api_down(self, apis):
        core, _ = apis
        core.list_namespace.side_effect = ApiException(status=500, reason="boom")

        results = await HealthChecker(MagicMock()).check_all()

        assert results["kubernetes_api"].status == "unhealthy"
        assert results["kubernetes_api"].details == {"status_code": 500}

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_unhealthy(self, apis):
        _, extensions = apis
        extensions.read_custom_resource_definition.side_effect = ApiException(
            status=403, reason="Forbidden"
        )

        results = await HealthChecker(MagicMock()).check_all()

        assert results["crds_installed"].status == "unhealthy"

    def test_no_results_unknown(self):
        assert HealthChecker(MagicMock()).get_overall_health({}) == "unknown"
