"""
Unit tests for status condition state transitions.

Tests the transitions between Syncing, Ready and Error and the
observedGeneration tracking done by BaseReconciler.
"""

from datetime import datetime

import pytest

from multicluster_service_account.errors import (
    KubernetesAPIError,
    TemporaryError,
    ValidationError,
)
from multicluster_service_account.services.base_reconciler import BaseReconciler


class ConcreteReconciler(BaseReconciler):
    """Concrete implementation of BaseReconciler for testing."""

    def __init__(self, error: Exception | None = None):
        super().__init__(k8s_client=object())
        self.error = error

    async def do_reconcile(self, spec, name, namespace, status, **kwargs):
        if self.error is not None:
            raise self.error
        self.update_status_ready(status, "done", kwargs.get("generation", 0))
        return {"test": "success"}


def types(status):
    return [c["type"] for c in status.conditions]


def ready(status):
    return next(c for c in status.conditions if c["type"] == "Ready")


class TestStatusConditionTransitions:
    """Test status condition state transitions."""

    @pytest.fixture
    def reconciler(self):
        return ConcreteReconciler()

    def test_syncing(self, reconciler, status):
        reconciler.update_status_syncing(status, "Starting", 42)

        assert status.phase == "Syncing"
        assert status.observedGeneration == 42
        (condition,) = status.conditions
        assert condition["type"] == "Syncing"
        assert condition["status"] == "True"
        assert condition["observedGeneration"] == 42
        datetime.fromisoformat(condition["lastTransitionTime"])

    def test_syncing_to_ready(self, reconciler, status):
        reconciler.update_status_syncing(status, "Starting", 1)
        reconciler.update_status_ready(status, "All good", 1)

        assert status.phase == "Ready"
        assert status.message == "All good"
        assert status.lastSyncTime is not None
        assert types(status) == ["Ready"]
        assert ready(status)["status"] == "True"

    def test_ready_to_error(self, reconciler, status):
        reconciler.update_status_ready(status, "ok", 1)
        reconciler.update_status_error(status, "remote down", 2)

        assert status.phase == "Error"
        condition = ready(status)
        assert condition["status"] == "False"
        assert condition["reason"] == "ReconciliationFailed"
        assert condition["observedGeneration"] == 2

    def test_unchanged_condition_keeps_transition_time(self, reconciler, status):
        reconciler.update_status_ready(status, "ok", 1)
        first = ready(status)["lastTransitionTime"]

        reconciler.update_status_ready(status, "still ok", 2)

        condition = ready(status)
        assert condition["lastTransitionTime"] == first
        assert condition["message"] == "still ok"

    def test_flip_moves_transition_time(self, reconciler, status):
        status.conditions = [
            {
                "type": "Ready",
                "status": "True",
                "lastTransitionTime": "2020-01-01T00:00:00+00:00",
            }
        ]

        reconciler.update_status_error(status, "broken", 1)

        condition = ready(status)
        assert condition["lastTransitionTime"] != "2020-01-01T00:00:00+00:00"


class TestReconcileErrorMapping:
    """Test how failures leave BaseReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_success(self, status):
        result = await ConcreteReconciler().reconcile({}, "n", "ns", status, 3)

        assert result == {"test": "success"}
        assert status.phase == "Ready"
        assert status.observedGeneration == 3

    @pytest.mark.asyncio
    async def test_operator_error_passes_through(self, status):
        error = ValidationError("nope")

        with pytest.raises(ValidationError):
            await ConcreteReconciler(error).reconcile({}, "n", "ns", status)

        assert status.phase == "Error"
        assert status.message == "nope"

    @pytest.mark.asyncio
    async def test_api_exception_wrapped(self, status):
        from kubernetes.client.rest import ApiException

        error = ApiException(status=503, reason="Service Unavailable")

        with pytest.raises(KubernetesAPIError) as exc_info:
            await ConcreteReconciler(error).reconcile({}, "n", "ns", status)

        assert exc_info.value.retryable
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_forbidden_not_retryable(self, status):
        from kubernetes.client.rest import ApiException

        error = ApiException(status=403, reason="Forbidden")

        with pytest.raises(KubernetesAPIError) as exc_info:
            await ConcreteReconciler(error).reconcile({}, "n", "ns", status)

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unexpected_error_is_temporary(self, status):
        with pytest.raises(TemporaryError) as exc_info:
            await ConcreteReconciler(KeyError("x")).reconcile({}, "n", "ns", status)

        assert exc_info.value.retryable
        assert types(status) == ["Ready"]
