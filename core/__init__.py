"""
Core Module Package.

Shared infrastructure the risk core depends on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock, ensure_utc, parse_timestamp
from .exceptions import (
    Severity,
    ErrorClassification,
    TradingException,
    ConfigurationError,
    InvalidConfigError,
    DataError,
    DataValidationError,
    SignalValidationError,
    MessageDecodeError,
    RiskError,
    StaleRiskStateError,
    CommunicationError,
    FeedAuthenticationError,
    StateTransitionError,
    PositionClosedError,
    DatabaseError,
    classify_exception,
)

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "parse_timestamp",
    "Severity",
    "ErrorClassification",
    "TradingException",
    "ConfigurationError",
    "InvalidConfigError",
    "DataError",
    "DataValidationError",
    "SignalValidationError",
    "MessageDecodeError",
    "RiskError",
    "StaleRiskStateError",
    "CommunicationError",
    "FeedAuthenticationError",
    "StateTransitionError",
    "PositionClosedError",
    "DatabaseError",
    "classify_exception",
]
