"""
Tests for the exception hierarchy.
"""

import uuid

from core.exceptions import (
    ErrorClassification,
    FeedAuthenticationError,
    InvalidConfigError,
    PositionClosedError,
    Severity,
    StaleRiskStateError,
    classify_exception,
)


class TestExceptionHierarchy:

    def test_stale_state_is_transient(self):
        error = StaleRiskStateError(uuid.uuid4(), 3)

        assert error.is_recoverable
        assert error.severity == Severity.HIGH
        assert error.context["expected_version"] == 3

    def test_config_error_is_not_recoverable(self):
        error = InvalidConfigError("MAX_POSITIONS", "many", "not a number")

        assert not error.is_recoverable
        assert error.to_dict()["type"] == "InvalidConfigError"
        assert error.to_dict()["context"]["key"] == "MAX_POSITIONS"

    def test_endpoint_in_context(self):
        error = FeedAuthenticationError("auth failed", endpoint="wss://example")
        assert error.context == {"endpoint": "wss://example"}

    def test_position_closed(self):
        assert PositionClosedError("D1").deal_id == "D1"

    def test_classify_builtin_errors(self):
        assert classify_exception(TimeoutError()) == ErrorClassification.TRANSIENT
        assert classify_exception(ValueError()) == ErrorClassification.RECOVERABLE
        assert classify_exception(RuntimeError()) == ErrorClassification.NON_RECOVERABLE
