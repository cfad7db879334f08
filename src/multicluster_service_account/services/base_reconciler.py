"""
Base reconciler class providing common patterns for resource reconciliation.

This module defines the BaseReconciler class that implements standard
patterns for status management, error handling, and retry logic.
"""

import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_SYNCING,
    CONDITION_TRUE,
    PHASE_ERROR,
    PHASE_READY,
    PHASE_SYNCING,
)
from ..errors import KubernetesAPIError, OperatorError, TemporaryError
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector


class StatusProtocol(Protocol):
    """Protocol for kopf Status objects that allow dynamic attribute assignment."""

    def __setattr__(self, name: str, value: Any) -> None: ...
    def __getattr__(self, name: str) -> Any: ...


class BaseReconciler(ABC):
    """
    Base class for resource reconcilers.

    Provides common patterns for:
    - Status management with conditions
    - Mapping of failures to operator errors
    - Kubernetes client management
    - Logging and metrics around each reconciliation

    Errors leave ``reconcile`` as :class:`OperatorError`; the kopf handlers
    turn them into kopf retry instructions.
    """

    resource_type = "resource"

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize base reconciler.

        Args:
            k8s_client: Kubernetes API client, will be created if not provided
        """
        self.k8s_client = k8s_client
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Get or create Kubernetes API client."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def reconcile(
        self,
        spec: dict[str, Any],
        name: str,
        namespace: str,
        status: StatusProtocol,
        generation: int = 0,
        trigger: str = "event",
        **kwargs,
    ) -> dict[str, Any]:
        """
        Main reconciliation entry point with metrics tracking.

        Args:
            spec: Resource specification
            name: Resource name
            namespace: Resource namespace
            status: Resource status object
            generation: metadata.generation of the resource
            trigger: What started this reconciliation (event, resync)
            **kwargs: Additional arguments passed to ``do_reconcile``

        Returns:
            Result of ``do_reconcile``

        Raises:
            OperatorError: reconciliation failed; status already reflects it
        """
        start_time = time.time()
        self.logger.log_reconciliation_start(
            resource_type=self.resource_type, resource_name=name, namespace=namespace
        )

        async with metrics_collector.track_reconciliation(namespace, trigger):
            try:
                self.update_status_syncing(status, "Reconciliation in progress", generation)
                result = await self.do_reconcile(
                    spec, name, namespace, status, generation=generation, **kwargs
                )
            except OperatorError as e:
                error = e
            except ApiException as e:
                http_status = getattr(e, "status", None)
                error = KubernetesAPIError(
                    message=str(e),
                    reason=getattr(e, "reason", None),
                    retryable=http_status is None or http_status >= 500,
                )
                error.__cause__ = e
            except Exception as e:
                # Wrap unexpected errors as temporary to allow retry
                error = TemporaryError(
                    f"Unexpected error during reconciliation: {str(e)}"
                )
                error.__cause__ = e
            else:
                self.logger.log_reconciliation_success(
                    resource_type=self.resource_type,
                    resource_name=name,
                    namespace=namespace,
                    duration=time.time() - start_time,
                )
                return result

            self.logger.log_reconciliation_error(
                resource_type=self.resource_type,
                resource_name=name,
                namespace=namespace,
                error=error,
                duration=time.time() - start_time,
            )
            self.handle_failure(status, error, name, namespace, generation)
            raise error

    @abstractmethod
    async def do_reconcile(
        self,
        spec: dict[str, Any],
        name: str,
        namespace: str,
        status: StatusProtocol,
        generation: int = 0,
        **kwargs,
    ) -> dict[str, Any]:
        """
        Perform the actual reconciliation logic.

        Implementations are responsible for setting the Ready status on
        success.
        """
        raise NotImplementedError("Subclasses must implement do_reconcile method")

    def handle_failure(
        self,
        status: StatusProtocol,
        error: OperatorError,
        name: str,
        namespace: str,
        generation: int = 0,
    ) -> None:
        """Publish a failure on the resource status."""
        self.update_status_error(status, error.message, generation)

    def update_status_syncing(
        self, status: StatusProtocol, message: str, generation: int = 0
    ) -> None:
        """Update status to indicate reconciliation is in progress."""
        status.phase = PHASE_SYNCING
        status.observedGeneration = generation
        self._add_condition(
            status,
            CONDITION_SYNCING,
            CONDITION_TRUE,
            "ReconciliationInProgress",
            message,
            generation,
        )

    def update_status_ready(
        self,
        status: StatusProtocol,
        message: str = "Resource is ready",
        generation: int = 0,
    ) -> None:
        """Update status to indicate resource is ready."""
        status.phase = PHASE_READY
        status.message = message
        status.lastSyncTime = datetime.now(UTC).isoformat()
        status.observedGeneration = generation
        self._add_condition(
            status,
            CONDITION_READY,
            CONDITION_TRUE,
            "ReconciliationSucceeded",
            message,
            generation,
        )
        self._remove_condition(status, CONDITION_SYNCING)

    def update_status_error(
        self, status: StatusProtocol, message: str, generation: int = 0
    ) -> None:
        """Update status to indicate reconciliation failed and will be retried."""
        status.phase = PHASE_ERROR
        status.message = message
        status.observedGeneration = generation
        self._add_condition(
            status,
            CONDITION_READY,
            CONDITION_FALSE,
            "ReconciliationFailed",
            message,
            generation,
        )
        self._remove_condition(status, CONDITION_SYNCING)

    def _add_condition(
        self,
        status: StatusProtocol,
        condition_type: str,
        condition_status: str,
        reason: str,
        message: str,
        generation: int = 0,
    ) -> None:
        """
        Add or update a status condition with observedGeneration tracking.

        ``lastTransitionTime`` only moves when the condition status changes.
        """
        existing = getattr(status, "conditions", None)
        conditions = [c for c in existing or [] if isinstance(c, dict)]

        previous = next(
            (c for c in conditions if c.get("type") == condition_type), None
        )
        if previous is not None and previous.get("status") == condition_status:
            transition_time = previous.get("lastTransitionTime")
        else:
            transition_time = datetime.now(UTC).isoformat()

        conditions = [c for c in conditions if c.get("type") != condition_type]
        conditions.append(
            {
                "type": condition_type,
                "status": condition_status,
                "reason": reason,
                "message": message,
                "lastTransitionTime": transition_time,
                "observedGeneration": generation,
            }
        )
        status.conditions = conditions

    def _remove_condition(self, status: StatusProtocol, condition_type: str) -> None:
        """Remove a status condition."""
        existing = getattr(status, "conditions", None)
        if not existing:
            return
        status.conditions = [
            c for c in existing if isinstance(c, dict) and c.get("type") != condition_type
        ]
