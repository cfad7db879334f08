"""Unit tests for the operator error hierarchy."""

import pytest

from multicluster_service_account.errors import (
    AdmissionError,
    AmbiguousImportError,
    ImportNotReadyError,
    KubernetesAPIError,
    OperatorError,
    RemoteAuthError,
    RemoteClusterError,
    RemoteClusterNotFoundError,
    RemoteStateMissingError,
    RemoteUnreachableError,
    ResolverError,
    ValidationError,
    WriteConflictError,
)


class TestOperatorErrors:
    """Categorization and retry behavior."""

    @pytest.mark.parametrize(
        "error",
        [
            RemoteClusterNotFoundError("cluster2", "msa-system"),
            RemoteAuthError("cluster2", "token rejected"),
            RemoteUnreachableError("cluster2", "timeout"),
            RemoteStateMissingError("cluster2", "service account gone"),
        ],
    )
    def test_remote_errors_are_retryable(self, error):
        assert isinstance(error, RemoteClusterError)
        assert error.retryable
        assert error.category == "remote"
        assert error.cluster_name == "cluster2"

    def test_validation_error_is_permanent(self):
        error = ValidationError("must not be empty", field="spec.name")
        assert not error.retryable
        assert "spec.name" in error.message

    def test_user_action_in_str(self):
        error = RemoteClusterNotFoundError("cluster2", "msa-system")
        assert "Action required:" in str(error)
        assert "cluster2" in error.message

    def test_write_conflict(self):
        error = WriteConflictError("team-a", "imp-token-abcde")
        assert isinstance(error, OperatorError)
        assert error.retryable
        assert error.delay == 1
        assert "team-a/imp-token-abcde" in error.message

    def test_kubernetes_forbidden_not_retryable(self):
        assert not KubernetesAPIError("denied", reason="Forbidden").retryable
        assert KubernetesAPIError("oops", reason="InternalError").retryable

    def test_cause_kept(self):
        cause = OSError("reset")
        error = RemoteUnreachableError("cluster2", "reset", cause=cause)
        assert error.cause is cause


class TestAdmissionErrors:
    def test_codes(self):
        assert ImportNotReadyError("x").code == 403
        assert AdmissionError("x").code == 500
        assert AdmissionError("x", code=503).code == 503


class TestResolverErrors:
    def test_ambiguous_lists_names(self):
        error = AmbiguousImportError(["a", "b"])
        assert isinstance(error, ResolverError)
        assert "a, b" in str(error)
