"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_namespace: str = Field(
        default="multicluster-service-account",
        description="Namespace holding the bootstrap secrets of remote clusters",
        validation_alias="OPERATOR_NAMESPACE",
    )
    pod_name: str = Field(
        default="",
        description="Name of the operator pod",
        validation_alias="POD_NAME",
    )
    pod_namespace: str = Field(
        default="multicluster-service-account",
        description="Namespace of the operator pod",
        validation_alias="POD_NAMESPACE",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    log_health_checks: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_CHECKS",
        description="Log health check and metrics requests",
    )
    webhook_log_level: str = Field(
        default="WARNING",
        validation_alias="WEBHOOK_LOG_LEVEL",
        description="Log level for the admission webhook loggers",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="MSA_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Admission webhook
    enable_webhooks: bool = Field(
        default=True,
        validation_alias="ENABLE_WEBHOOKS",
        description="Serve the pod mutating admission webhook",
    )
    webhook_host: str = Field(
        default="0.0.0.0",
        validation_alias="WEBHOOK_HOST",
        description="Host address to bind the admission webhook server",
    )
    webhook_port: int = Field(
        default=8443,
        validation_alias="WEBHOOK_PORT",
        description="Port for admission webhook server",
    )
    webhook_cert_dir: str = Field(
        default="/tmp/k8s-webhook-server/serving-certs",
        validation_alias="WEBHOOK_CERT_DIR",
        description="Directory containing tls.crt and tls.key for the webhook server",
    )

    # Reconciliation behavior
    resync_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="RESYNC_INTERVAL_SECONDS",
        description="Interval between periodic re-syncs of every import",
    )
    retry_base_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias="RETRY_BASE_DELAY_SECONDS",
        description="Initial delay of the exponential retry backoff",
    )
    retry_max_delay_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="RETRY_MAX_DELAY_SECONDS",
        description="Upper bound of the exponential retry backoff",
    )
    api_request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="API_REQUEST_TIMEOUT_SECONDS",
        description="Deadline applied to every Kubernetes API request",
    )
    write_conflict_retries: int = Field(
        default=3,
        ge=0,
        validation_alias="WRITE_CONFLICT_RETRIES",
        description="Immediate retries of a mirrored secret write after a conflict",
    )
    max_workers: int = Field(
        default=20,
        gt=0,
        validation_alias="MAX_WORKERS",
        description="Number of imports reconciled in parallel",
    )

    # Remote clusters
    remote_contexts_enabled: bool = Field(
        default=True,
        validation_alias="REMOTE_CONTEXTS_ENABLED",
        description="Fall back to kubeconfig contexts named after remote clusters",
    )

    # Leader election
    peering_name: str = Field(
        default="multicluster-service-account",
        validation_alias="PEERING_NAME",
        description="Kopf peering object used to elect a single active writer",
    )

    # Tracing
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="TRACING_ENABLED",
        description="Enable OpenTelemetry tracing",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="TRACING_ENDPOINT",
        description="OTLP gRPC collector endpoint",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        validation_alias="TRACING_SAMPLE_RATE",
        description="Ratio of root spans sampled",
    )
    tracing_insecure: bool = Field(
        default=True,
        validation_alias="TRACING_INSECURE",
        description="Connect to the collector without TLS",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    @property
    def webhook_certfile(self) -> str:
        return f"{self.webhook_cert_dir}/tls.crt"

    @property
    def webhook_keyfile(self) -> str:
        return f"{self.webhook_cert_dir}/tls.key"


# Global settings instance - initialized once at module import
settings = Settings()
