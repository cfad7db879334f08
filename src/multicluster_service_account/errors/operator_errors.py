"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the multicluster service
account operator, providing clear categorization and integration with kopf's
retry mechanisms. Admission and resolver errors live here as well so that
every failure mode of the system is declared in one place.
"""

from ..constants import (
    ADMISSION_CODE_INTERNAL,
    ADMISSION_CODE_NOT_READY,
)


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, api, configuration, external, remote)
            retryable: Whether kopf should retry this operation
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self, delay: float | None = None):
        """Convert to appropriate kopf exception type."""
        import kopf

        if self.retryable:
            return kopf.TemporaryError(
                str(self), delay=delay if delay is not None else self.delay
            )
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        action = user_action or "Check resource specification and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message, category="validation", retryable=False, user_action=action
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, delay: int = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
        )


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with the local Kubernetes API."""

    def __init__(self, message: str, reason: str | None = None, retryable: bool = True):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )


class RemoteClusterError(OperatorError):
    """Base class for failures involving a remote cluster."""

    def __init__(
        self,
        cluster_name: str,
        message: str,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="remote",
            retryable=True,
            delay=delay,
            user_action=user_action,
            cause=cause,
        )
        self.cluster_name = cluster_name


class RemoteClusterNotFoundError(RemoteClusterError):
    """No bootstrap material exists (yet) for the named cluster."""

    def __init__(self, cluster_name: str, namespace: str):
        super().__init__(
            cluster_name=cluster_name,
            message=(
                f"no remote access secret for cluster {cluster_name} "
                f"in namespace {namespace} and no kubeconfig context of that name"
            ),
            user_action="Bootstrap the remote cluster so that its access secret exists",
        )


class RemoteAuthError(RemoteClusterError):
    """Bootstrap material is unusable or was rejected by the remote API."""

    def __init__(
        self, cluster_name: str, message: str, cause: Exception | None = None
    ):
        super().__init__(
            cluster_name=cluster_name,
            message=f"cannot authenticate to cluster {cluster_name}: {message}",
            user_action="Check the remote access secret and the remote RBAC bindings",
            cause=cause,
        )


class RemoteUnreachableError(RemoteClusterError):
    """Network or server failure talking to a remote cluster."""

    def __init__(
        self, cluster_name: str, message: str, cause: Exception | None = None
    ):
        super().__init__(
            cluster_name=cluster_name,
            message=f"cluster {cluster_name} is unreachable: {message}",
            user_action="Check network connectivity to the remote API server",
            cause=cause,
        )


class RemoteStateMissingError(RemoteClusterError):
    """The remote service account or its token secret does not exist."""

    def __init__(self, cluster_name: str, message: str):
        super().__init__(
            cluster_name=cluster_name,
            message=message,
            delay=60,
            user_action="Create the service account in the remote cluster",
        )


class WriteConflictError(OperatorError):
    """A concurrent writer changed the mirrored secret between read and write."""

    def __init__(self, namespace: str, name: str):
        super().__init__(
            message=f"conflicting update of secret {namespace}/{name}",
            category="conflict",
            retryable=True,
            delay=1,
        )
        self.namespace = namespace
        self.name = name


class AdmissionError(Exception):
    """Base error for admission requests that must be rejected."""

    code = ADMISSION_CODE_INTERNAL

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ImportNotReadyError(AdmissionError):
    """A requested import does not exist or has no mirrored secret yet."""

    code = ADMISSION_CODE_NOT_READY


class ResolverError(Exception):
    """Base error for client configuration resolution."""


class NotMountedError(ResolverError):
    """The requested service account import is not mounted."""


class AmbiguousImportError(ResolverError):
    """More than one service account import is mounted."""

    def __init__(self, names: list[str]):
        super().__init__(
            f"more than one service account import is mounted: {', '.join(names)}; "
            "select one by name"
        )
        self.names = names


class CredentialReadError(ResolverError):
    """A mounted credential exists but cannot be read or is incomplete."""


class NoIdentityError(ResolverError):
    """No imported credential, kubeconfig context or in-cluster identity found."""
