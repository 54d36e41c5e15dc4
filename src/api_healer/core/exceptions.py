"""
Error taxonomy for the self-healing pipeline.

Only the completion-service boundary and the file loaders raise these during
normal operation. Classification, diffing and rule application degrade to
"unknown" or empty results instead. The healing orchestrator is the single
place that converts any of them into a per-test failure reason.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


class HealingError(Exception):
    """Base class for all self-healing errors."""

    error_code: str = "HEAL_000"
    recoverable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a dictionary for logging and reports."""
        return {
            "error_code": self.error_code,
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat()
        }


class ConfigurationError(HealingError):
    """Raised when configuration is invalid or cannot be loaded."""

    error_code = "HEAL_CFG"


class CompletionError(HealingError):
    """Non-retryable failure reported by the completion service."""

    error_code = "HEAL_LLM"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code


class RateLimitError(CompletionError):
    """The completion service throttled the request."""

    error_code = "HEAL_LLM_RATE"
    recoverable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=429, details=details)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after_seconds"] = retry_after


class TransportError(CompletionError):
    """Connection reset, timeout or 5xx from the completion service."""

    error_code = "HEAL_LLM_TRANSPORT"
    recoverable = True


class ValidationError(HealingError):
    """Regenerated code was rejected by structural validation."""

    error_code = "HEAL_VALIDATION"

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message, {"issues": list(issues or [])})
        self.issues = list(issues or [])


class NonHealableError(HealingError):
    """Policy decision that a failure is not worth repairing automatically."""

    error_code = "HEAL_NON_HEALABLE"

    def __init__(self, message: str, analysis: Optional[Any] = None):
        details = {}
        if analysis is not None:
            details = {"failure_kind": analysis.failure_kind.value, "confidence": analysis.confidence}
        super().__init__(message, details)
        self.analysis = analysis


class BudgetExceededError(HealingError):
    """Per-test attempt budget or global time budget is exhausted."""

    error_code = "HEAL_BUDGET"

    def __init__(self, message: str, scope: str = "test", limit: Optional[float] = None):
        super().__init__(message, {"scope": scope, "limit": limit})
        self.scope = scope
        self.limit = limit


class FileIOError(HealingError):
    """Reading or writing a test source file failed."""

    error_code = "HEAL_IO"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, {"path": path})
        self.path = path


class SpecLoadError(HealingError):
    """An API specification document could not be loaded or is incomplete."""

    error_code = "HEAL_SPEC"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, {"path": path})
        self.path = path


class MissingFailureInfoError(HealingError):
    """A test outcome carries no error information to classify."""

    error_code = "HEAL_NO_ERROR_INFO"
