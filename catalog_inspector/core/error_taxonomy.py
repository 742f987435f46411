"""
Error Taxonomy for the Catalog Inspector

Provides systematic classification of failure modes with:
- Error categories aligned to read and write paths
- Recoverability indicators
- Suggested recovery actions
- Structured error context for notifications and debugging

Read-path failures (failed link lookups, unknown kinds) are degraded locally
and only logged. Malformed field values never become errors at all. Write-path failures are classified here and
handed back to the caller so they can be shown against the record and fields
involved.
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import logging
import traceback

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Read path: degraded locally, never propagated
    UNKNOWN_ENTITY_KIND = auto()
    LINK_RESOLUTION_FAILED = auto()

    # Startup
    INVALID_SCHEMA = auto()

    # Storage collaborator
    AUTHENTICATION_FAILED = auto()
    RATE_LIMITED = auto()
    STORAGE_UNAVAILABLE = auto()
    REQUEST_TIMEOUT = auto()
    RECORD_NOT_FOUND = auto()
    WRITE_REJECTED = auto()

    # Funnel event source
    FUNNEL_SOURCE_UNAVAILABLE = auto()

    # System Errors
    CONFIGURATION_ERROR = auto()
    INTERNAL_ERROR = auto()
    UNKNOWN_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RecoveryAction:
    """Suggested action to recover from an error."""
    action_type: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def retry(delay_seconds: float = 1.0, max_attempts: int = 3) -> "RecoveryAction":
        return RecoveryAction(
            action_type="retry",
            description=f"Retry after {delay_seconds}s (max {max_attempts} attempts)",
            parameters={"delay": delay_seconds, "max_attempts": max_attempts}
        )

    @staticmethod
    def fallback(fallback_method: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="fallback",
            description=f"Use fallback: {fallback_method}",
            parameters={"method": fallback_method}
        )

    @staticmethod
    def refresh(entity_kind: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="refresh",
            description=f"Reload the {entity_kind} collection and retry the edit",
            parameters={"entity_kind": entity_kind}
        )

    @staticmethod
    def abort(reason: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="abort",
            description=f"Abort operation: {reason}",
            parameters={"reason": reason}
        )


@dataclass
class ClassifiedError:
    """A classified error with full context."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool
    recovery_actions: List[RecoveryAction]

    original_exception: Optional[Exception] = None
    operation: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    user_message: Optional[str] = None

    def __post_init__(self):
        if self.original_exception and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            ))

        if not self.user_message:
            self.user_message = self._generate_user_message()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message."""
        messages = {
            ErrorCategory.AUTHENTICATION_FAILED: "Not authorized to change this record. Sign in again.",
            ErrorCategory.RATE_LIMITED: "The storage API is rate limiting requests. Try again in a moment.",
            ErrorCategory.STORAGE_UNAVAILABLE: "Record storage is temporarily unavailable.",
            ErrorCategory.REQUEST_TIMEOUT: "The storage API did not answer in time.",
            ErrorCategory.RECORD_NOT_FOUND: "The record no longer exists.",
            ErrorCategory.UNKNOWN_ENTITY_KIND: "This entity kind is not configured.",
            ErrorCategory.FUNNEL_SOURCE_UNAVAILABLE: "Funnel events are unavailable; showing estimates.",
            ErrorCategory.CONFIGURATION_ERROR: "The inspector is not configured. Run `setup` first.",
        }
        return messages.get(self.category, f"An error occurred: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "recovery_actions": [
                {"type": a.action_type, "description": a.description}
                for a in self.recovery_actions
            ],
            "operation": self.operation,
            "context": self.context,
        }


class InspectorError(Exception):
    """Base exception for inspector errors with classification."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        recovery_actions: List[RecoveryAction] = None,
        context: Dict[str, Any] = None,
    ):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.recoverable = recoverable
        self.recovery_actions = recovery_actions or []
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=self.severity,
            message=str(self),
            recoverable=self.recoverable,
            recovery_actions=self.recovery_actions,
            original_exception=self,
            context=dict(self.context),
        )


class SchemaValidationError(InspectorError):
    """Raised at registry load when the schema tables break an invariant."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.INVALID_SCHEMA,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            recovery_actions=[RecoveryAction.abort("fix entity_schemas.yaml")],
            context=context,
        )


class StorageError(InspectorError):
    """Raised by the storage client when a request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Dict[str, Any] = None,
    ):
        category, severity, recoverable, actions = _categorize_status(
            status_code, (context or {}).get("entity_kind")
        )
        super().__init__(
            message,
            category=category,
            severity=severity,
            recoverable=recoverable,
            recovery_actions=actions,
            context=context,
        )
        self.status_code = status_code


class LinkResolutionError(InspectorError):
    """A linked-entity lookup failed; the field renders with no chips."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.LINK_RESOLUTION_FAILED,
            severity=ErrorSeverity.LOW,
            recoverable=True,
            recovery_actions=[RecoveryAction.fallback("render the field without resolved references")],
            context=context,
        )


class ConfigurationError(InspectorError):
    """Raised when record storage is used before it is configured."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION_ERROR,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            recovery_actions=[RecoveryAction.abort("set INSPECTOR_API_BASE_URL and a key or token")],
            context=context,
        )


class FunnelSourceError(InspectorError):
    """Raised when the funnel event endpoint cannot be read."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.FUNNEL_SOURCE_UNAVAILABLE,
            severity=ErrorSeverity.LOW,
            recoverable=True,
            recovery_actions=[RecoveryAction.fallback("estimate funnel stages from records")],
            context=context,
        )


def _categorize_status(status_code: Optional[int], entity_kind: Optional[str] = None):
    """Map an HTTP status to (category, severity, recoverable, actions)."""
    if status_code is None:
        return (
            ErrorCategory.STORAGE_UNAVAILABLE, ErrorSeverity.HIGH, True,
            [RecoveryAction.retry(delay_seconds=5.0)],
        )
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION_FAILED, ErrorSeverity.HIGH, False, []
    if status_code == 404:
        return (
            ErrorCategory.RECORD_NOT_FOUND, ErrorSeverity.MEDIUM, False,
            [RecoveryAction.refresh(entity_kind)] if entity_kind else [],
        )
    if status_code == 408:
        return (
            ErrorCategory.REQUEST_TIMEOUT, ErrorSeverity.MEDIUM, True,
            [RecoveryAction.retry(delay_seconds=5.0)],
        )
    if status_code == 429:
        return (
            ErrorCategory.RATE_LIMITED, ErrorSeverity.MEDIUM, True,
            [RecoveryAction.retry(delay_seconds=60)],
        )
    if status_code >= 500:
        return (
            ErrorCategory.STORAGE_UNAVAILABLE, ErrorSeverity.HIGH, True,
            [RecoveryAction.retry(delay_seconds=5.0)],
        )
    return (
        ErrorCategory.WRITE_REJECTED, ErrorSeverity.MEDIUM, False,
        [RecoveryAction.refresh(entity_kind)] if entity_kind else [],
    )


def classify_error(
    exception: Exception,
    operation: str = None,
    context: Dict[str, Any] = None,
) -> ClassifiedError:
    """Classify an exception into a structured error."""
    context = context or {}

    if isinstance(exception, InspectorError):
        classified = exception.classify()
        classified.operation = operation
        classified.context.update(context)
        return classified

    error_str = str(exception).lower()
    error_type_name = type(exception).__name__

    # Timeout (requests.Timeout, socket timeouts, asyncio.TimeoutError)
    if "timeout" in error_type_name.lower() or "timed out" in error_str:
        return ClassifiedError(
            category=ErrorCategory.REQUEST_TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.retry(delay_seconds=5.0)],
            original_exception=exception,
            operation=operation,
            context=context,
        )

    # Rate limiting
    if "rate limit" in error_str or "429" in error_str:
        return ClassifiedError(
            category=ErrorCategory.RATE_LIMITED,
            severity=ErrorSeverity.MEDIUM,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.retry(delay_seconds=60)],
            original_exception=exception,
            operation=operation,
            context=context,
        )

    # Authentication
    if "unauthorized" in error_str or "401" in error_str or "403" in error_str:
        return ClassifiedError(
            category=ErrorCategory.AUTHENTICATION_FAILED,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=[],
            original_exception=exception,
            operation=operation,
            context=context,
        )

    # Connection problems
    if "connection" in error_type_name.lower() or "connection" in error_str:
        return ClassifiedError(
            category=ErrorCategory.STORAGE_UNAVAILABLE,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=True,
            recovery_actions=[RecoveryAction.retry(delay_seconds=5.0)],
            original_exception=exception,
            operation=operation,
            context=context,
        )

    if isinstance(exception, (KeyError, TypeError, ValueError, AttributeError)):
        return ClassifiedError(
            category=ErrorCategory.INTERNAL_ERROR,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=[],
            original_exception=exception,
            operation=operation,
            context=context,
        )

    # Default
    return ClassifiedError(
        category=ErrorCategory.UNKNOWN_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(exception),
        recoverable=False,
        recovery_actions=[],
        original_exception=exception,
        operation=operation,
        context=context,
    )
