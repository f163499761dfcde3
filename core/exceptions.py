"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy of the risk core.

- Risk rejections are NOT exceptions; they are returned as
  RiskDecision values
- Exceptions are reserved for malformed input, connection
  faults, persistence faults and illegal state transitions
- Every exception carries severity and context for alerting

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── DataError
│   ├── DataValidationError
│   │   └── SignalValidationError
│   └── MessageDecodeError
├── RiskError
│   └── StaleRiskStateError
├── CommunicationError
│   └── FeedAuthenticationError
├── StateTransitionError
│   └── PositionClosedError
└── DatabaseError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all risk core errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for retry decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class InvalidConfigError(ConfigurationError):
    """A configuration value cannot be used."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid config {key}={value!r}: {reason}",
            context={"key": key, "value": repr(value), "reason": reason},
        )
        self.key = key


# ============================================================
# DATA ERRORS
# ============================================================

class DataError(TradingException):
    """Base class for malformed or missing input data."""


class DataValidationError(DataError):
    """Input failed validation at the boundary."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        self.errors = list(errors or [])
        if self.errors:
            context["errors"] = self.errors
        super().__init__(message, context=context, **kwargs)


class SignalValidationError(DataValidationError):
    """Trade signal does not have the accepted shape."""


class MessageDecodeError(DataError):
    """Inbound stream frame could not be decoded."""

    def __init__(self, message: str, raw: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if raw is not None:
            context["raw"] = raw[:200]
        super().__init__(message, context=context, **kwargs)


# ============================================================
# RISK ERRORS
# ============================================================

class RiskError(TradingException):
    """Base class for risk-state errors."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class StaleRiskStateError(RiskError):
    """
    Session state changed between validation and position open.

    The caller must validate the signal again.
    """

    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, session_id: Any, expected_version: int, **kwargs):
        super().__init__(
            f"Session {session_id} changed since validation "
            f"(expected state_version={expected_version})",
            context={"session_id": str(session_id), "expected_version": expected_version},
            **kwargs,
        )
        self.expected_version = expected_version


# ============================================================
# COMMUNICATION ERRORS
# ============================================================

class CommunicationError(TradingException):
    """Streaming connection fault."""

    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if endpoint:
            context["endpoint"] = endpoint
        super().__init__(message, context=context, **kwargs)


class FeedAuthenticationError(CommunicationError):
    """Venue refused the authentication handshake."""

    default_severity = Severity.HIGH


# ============================================================
# STATE ERRORS
# ============================================================

class StateTransitionError(TradingException):
    """Illegal lifecycle transition."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        super().__init__(message, context=context, **kwargs)


class PositionClosedError(StateTransitionError):
    """Closed positions are immutable."""

    def __init__(self, deal_id: str):
        super().__init__(
            f"Position {deal_id} is closed and cannot be modified",
            from_state="closed",
            context={"deal_id": deal_id},
        )
        self.deal_id = deal_id


class DatabaseError(TradingException):
    """Persistence collaborator failure."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def classify_exception(exc: Exception) -> ErrorClassification:
    """Classify an exception for error handling."""
    if isinstance(exc, TradingException):
        return exc.classification

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorClassification.TRANSIENT

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorClassification.RECOVERABLE

    return ErrorClassification.NON_RECOVERABLE


__all__ = [
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
