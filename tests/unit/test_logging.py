"""Unit tests for structured logging."""

import json
import logging

import pytest

from multicluster_service_account.observability.logging import (
    CorrelationIDFilter,
    HealthCheckFilter,
    OperatorLogger,
    StructuredFormatter,
    set_correlation_id,
    setup_structured_logging,
)


def record(message: str, **extra) -> logging.LogRecord:
    log_record = logging.LogRecord(
        "msa.test", logging.INFO, __file__, 1, message, None, None
    )
    for key, value in extra.items():
        setattr(log_record, key, value)
    return log_record


class TestStructuredFormatter:
    def test_json_fields(self):
        line = StructuredFormatter().format(
            record(
                "mirrored",
                correlation_id="abc123",
                cluster_name="cluster2",
                secret_name="imp-token-abcde",
                unrelated="dropped",
            )
        )

        data = json.loads(line)
        assert data["message"] == "mirrored"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc123"
        assert data["cluster_name"] == "cluster2"
        assert data["secret_name"] == "imp-token-abcde"
        assert "unrelated" not in data


class TestHealthCheckFilter:
    def test_drops_health_check_lines(self):
        check_filter = HealthCheckFilter()
        assert not check_filter.filter(record('"GET /healthz HTTP/1.1" 200'))
        assert check_filter.filter(record("Admission of pod p: patched"))

    def test_metrics_scrape_dropped(self):
        assert not HealthCheckFilter().filter(record("GET /metrics HTTP/1.1"))


class TestOperatorLogger:
    """Tests for the event helpers."""

    def test_reconciliation_start_sets_correlation_id(self, caplog):
        caplog.set_level(logging.INFO)
        logger = OperatorLogger("msa.test")

        correlation = logger.log_reconciliation_start(
            "serviceaccountimport", "imp", "team-a", correlation_id="fixed-id"
        )

        assert correlation == "fixed-id"
        (entry,) = caplog.records
        assert entry.resource_name == "imp"
        assert entry.operation == "reconcile_start"

    def test_rejected_admission_is_warning(self, caplog):
        caplog.set_level(logging.INFO)
        set_correlation_id("req")

        OperatorLogger("msa.test").log_admission_decision(
            "p", "default", "rejected", ["imp"], "not ready"
        )

        (entry,) = caplog.records
        assert entry.levelno == logging.WARNING
        assert entry.import_names == ["imp"]
        assert "not ready" in entry.getMessage()

    def test_retryable_error_has_no_traceback(self, caplog):
        from multicluster_service_account.errors import RemoteUnreachableError

        try:
            raise RemoteUnreachableError("cluster2", "timeout")
        except RemoteUnreachableError as e:
            OperatorLogger("msa.test").log_reconciliation_error(
                "serviceaccountimport", "imp", "team-a", e, 0.1
            )

        (entry,) = caplog.records
        assert entry.exc_info is None
        assert entry.error_type == "RemoteUnreachableError"

    def test_permanent_error_keeps_traceback(self, caplog):
        from multicluster_service_account.errors import ValidationError

        try:
            raise ValidationError("cluster name is empty")
        except ValidationError as e:
            error = e

        # Logged after the except block, as the reconciler does
        OperatorLogger("msa.test").log_reconciliation_error(
            "serviceaccountimport", "imp", "team-a", error, 0.1
        )

        (entry,) = caplog.records
        assert entry.exc_info[1] is error
        assert entry.error_type == "ValidationError"


class TestSetupStructuredLogging:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root_logger = logging.getLogger()
        handlers, level = root_logger.handlers[:], root_logger.level
        yield
        root_logger.handlers[:] = handlers
        root_logger.setLevel(level)

    def test_json_handler(self):
        setup_structured_logging(log_level="debug")

        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, StructuredFormatter)
        assert [type(f) for f in handler.filters] == [
            CorrelationIDFilter,
            HealthCheckFilter,
        ]
        assert logging.getLogger().level == logging.DEBUG

    def test_plain_handler_keeping_health_check_lines(self):
        setup_structured_logging(enable_json_formatting=False, log_health_checks=True)

        (handler,) = logging.getLogger().handlers
        assert not isinstance(handler.formatter, StructuredFormatter)
        assert "%(correlation_id)s" in handler.formatter._fmt
        assert [type(f) for f in handler.filters] == [CorrelationIDFilter]
