#!/usr/bin/env python3
"""
Multicluster Service Account Operator - Main entry point for the Kopf-based operator.

This operator lets workloads in one cluster call the Kubernetes API of
another cluster as a remote service account:
- ServiceAccountImport resources mirror a remote service account token into
  a local secret, kept in sync by watch events and periodic resync
- A mutating admission webhook mounts the mirrored secrets into pods
  annotated with import names

Usage:
    python -m multicluster_service_account.operator
    # Or with kopf directly:
    kopf run -m multicluster_service_account.operator --all-namespaces

Environment Variables:
    MSA_NAMESPACES: Comma-separated list of namespaces to watch
    OPERATOR_NAMESPACE: Namespace holding the bootstrap secrets of remote clusters
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    ENABLE_WEBHOOKS: Serve the pod mutating admission webhook (kopf webhook server)
"""

import logging
import random
import sys

import kopf

from multicluster_service_account.constants import WEBHOOK_MUTATE_PODS_ID

# Import all handler modules to register them with kopf
from multicluster_service_account.handlers import (  # noqa: F401
    bootstrap,
    service_account_import,
)
from multicluster_service_account.observability.health import HealthChecker
from multicluster_service_account.observability.logging import setup_structured_logging
from multicluster_service_account.observability.metrics import MetricsServer
from multicluster_service_account.observability.tracing import (
    setup_tracing,
    shutdown_tracing,
)
from multicluster_service_account.services import (
    RemoteClusterRegistry,
    ServiceAccountImportReconciler,
)
from multicluster_service_account.settings import settings as operator_settings
from multicluster_service_account.utils.kubernetes import get_kubernetes_client
# Also registers the pod mutating admission handler
from multicluster_service_account.webhooks import PodMutator


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        log_health_checks=operator_settings.log_health_checks,
        webhook_log_level=operator_settings.webhook_log_level,
    )


def get_watched_namespaces() -> list[str] | None:
    """
    Get the list of namespaces to watch from operator_settings.

    Returns:
        List of namespace names, or None to watch all namespaces
    """
    return operator_settings.watched_namespaces


def build_kopf_settings() -> kopf.OperatorSettings:
    """
    Settings passed to ``kopf.run()``, including the admission webhook server.

    The MutatingWebhookConfiguration ships with the deployment manifests and
    points at ``/mutate-pods``, so kopf does not manage it.
    """
    settings_obj = kopf.OperatorSettings()
    settings_obj.admission.managed = None
    if operator_settings.enable_webhooks:
        settings_obj.admission.server = kopf.WebhookServer(
            addr=operator_settings.webhook_host,
            port=operator_settings.webhook_port,
            certfile=operator_settings.webhook_certfile,
            pkeyfile=operator_settings.webhook_keyfile,
        )
        logging.info(
            f"Admission webhook ENABLED on port {operator_settings.webhook_port} "
            f"at /{WEBHOOK_MUTATE_PODS_ID} using certificates from "
            f"{operator_settings.webhook_cert_dir}"
        )
    else:
        settings_obj.admission.server = None
        logging.info("Admission webhook DISABLED")
    return settings_obj


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Configures kopf, then builds the long-lived collaborators and stores them
    in the memo, where handlers find them:
    - the local Kubernetes API client
    - the remote cluster registry
    - the import reconciler
    - the pod mutator used by the admission handler
    """
    logging.info("Starting multicluster service account operator...")
    settings.watching.reconnect_backoff = 1.0

    # Only the peering leader handles resources, so a single replica writes
    # mirrored secrets at any time
    settings.peering.name = operator_settings.peering_name
    settings.peering.priority = random.randint(0, 32767)
    logging.info(
        f"Peering priority set to {settings.peering.priority} for leader election"
    )

    settings.execution.max_workers = operator_settings.max_workers

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        sample_rate=operator_settings.tracing_sample_rate,
        insecure=operator_settings.tracing_insecure,
    )

    k8s_client = get_kubernetes_client()
    memo.k8s_client = k8s_client
    memo.registry = RemoteClusterRegistry(
        k8s_client,
        namespace=operator_settings.operator_namespace,
        contexts_enabled=operator_settings.remote_contexts_enabled,
        request_timeout=operator_settings.api_request_timeout_seconds,
    )
    memo.reconciler = ServiceAccountImportReconciler(
        k8s_client,
        memo.registry,
        request_timeout=operator_settings.api_request_timeout_seconds,
        write_conflict_retries=operator_settings.write_conflict_retries,
    )
    memo.mutator = PodMutator(
        k8s_client,
        request_timeout=operator_settings.api_request_timeout_seconds,
    )

    # Start metrics server for Prometheus scraping and health checks
    memo.metrics_server = None
    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            k8s_client=k8s_client,
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except Exception as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """
    Operator cleanup handler.

    Stops the metrics server, closes cached remote connections (removing their
    temporary CA files) and flushes traces.
    """
    logging.info("Shutting down multicluster service account operator...")

    metrics_server = getattr(memo, "metrics_server", None)
    if metrics_server is not None:
        await metrics_server.stop()

    registry = getattr(memo, "registry", None)
    if registry is not None:
        registry.close()

    shutdown_tracing()


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """
    Liveness endpoint answer for Kubernetes health checks.

    Returns:
        Dictionary indicating operator health status
    """
    try:
        health_checker = HealthChecker(getattr(memo, "k8s_client", None))
        health_results = await health_checker.check_all()
        return {
            "status": health_checker.get_overall_health(health_results),
            "operator": "multicluster-service-account",
        }
    except Exception as e:
        logging.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "operator": "multicluster-service-account",
            "error": str(e),
        }


def main() -> None:
    """
    Main entry point for the operator.

    This function:
    1. Configures logging
    2. Determines namespace scope
    3. Configures the admission webhook server (must be before kopf.run())
    4. Runs the kopf operator with appropriate settings
    """
    configure_logging()

    watched_namespaces = get_watched_namespaces()
    settings_obj = build_kopf_settings()

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
                settings=settings_obj,
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
                settings=settings_obj,
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
