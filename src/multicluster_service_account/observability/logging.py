"""
Structured logging for the multicluster service account operator.

Every record carries a correlation id, set per reconciliation, so the lines
of one reconcile can be grouped. In JSON mode the structured ``extra``
fields listed in :data:`STRUCTURED_FIELDS` become top-level keys.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Health check and scrape endpoints hit every few seconds
HEALTH_CHECK_PATHS = frozenset({"/healthz", "/health", "/ready", "/metrics"})

STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "cluster_name",
    "secret_name",
    "import_names",
    "admission_result",
)

PLAIN_FORMAT = "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"


class HealthCheckFilter(logging.Filter):
    """Drops access log lines of the health check and metrics endpoints."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return all(path not in message for path in HEALTH_CHECK_PATHS)


class CorrelationIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        current = correlation_id.get()
        if not current:
            current = set_correlation_id(generate_correlation_id())
        record.correlation_id = current
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    log_health_checks: bool = False,
    webhook_log_level: str = "WARNING",
) -> None:
    """
    Install the operator's single stream handler on the root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: JSON lines instead of the plain format
        log_health_checks: Keep access log lines of health check requests
        webhook_log_level: Log level of the admission webhook logger
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if enable_json_formatting:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(CorrelationIDFilter())
    if not log_health_checks:
        handler.addFilter(HealthCheckFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for noisy in ("kopf", "kubernetes", "urllib3", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("multicluster_service_account.webhooks").setLevel(
        getattr(logging, webhook_log_level.upper(), logging.WARNING)
    )


class OperatorLogger:
    """Logger with helpers for reconciliation and admission events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Log the start of a reconciliation and bind a fresh correlation id.

        Returns:
            The correlation id used for this reconciliation
        """
        correlation_id = set_correlation_id(correlation_id or generate_correlation_id())
        self.logger.info(
            f"Starting reconciliation for {resource_type} {namespace}/{resource_name}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )
        return correlation_id

    def log_reconciliation_success(
        self, resource_type: str, resource_name: str, namespace: str, duration: float
    ) -> None:
        self.logger.info(
            f"Reconciliation completed successfully for {resource_type} "
            f"{namespace}/{resource_name}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "duration": duration,
            },
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Log a failed reconciliation.

        Retryable errors are expected while remote clusters come and go and
        are logged without a traceback.
        """
        self.logger.error(
            f"Reconciliation failed for {resource_type} {namespace}/{resource_name}: "
            f"{error}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=None if getattr(error, "retryable", False) else error,
        )

    def log_admission_decision(
        self,
        pod_name: str,
        namespace: str,
        result: str,
        import_names: list[str],
        message: str | None = None,
    ) -> None:
        level = logging.INFO if result == "patched" else logging.WARNING
        text = f"Admission of pod {pod_name} in namespace {namespace}: {result}"
        if message:
            text = f"{text} ({message})"
        self.logger.log(
            level,
            text,
            extra={
                "resource_type": "pod",
                "resource_name": pod_name,
                "namespace": namespace,
                "operation": "admission",
                "admission_result": result,
                "import_names": import_names,
            },
        )

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, extra=kwargs)
