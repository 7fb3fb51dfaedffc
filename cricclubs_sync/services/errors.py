"""Error handling for the CricClubs data sync host.

This module provides:
- Exception classes for configuration and sync failures
- User-friendly error messages with suggested actions
- A centralized error handling service that logs and records errors
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

log = structlog.stdlib.get_logger()


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    CONFIGURATION = "configuration"
    FILE_SYSTEM = "file_system"
    VALIDATION = "validation"
    SYNC = "sync"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ErrorContext:
    """Context information for an error."""
    operation: str
    component: str
    details: dict[str, Any]


@dataclass(frozen=True)
class UserFriendlyError:
    """User-friendly error representation with suggested actions."""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_actions: list[str]
    technical_details: str | None = None
    recoverable: bool = True


class AppError(Exception):
    """Base exception class for application errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        suggested_actions: list[str] | None = None,
        technical_details: str | None = None,
        recoverable: bool = True,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.suggested_actions = suggested_actions or []
        self.technical_details = technical_details
        self.recoverable = recoverable
        self.context = context

    def to_user_friendly(self) -> UserFriendlyError:
        """Convert to user-friendly error representation."""
        return UserFriendlyError(
            message=self.message,
            category=self.category,
            severity=self.severity,
            suggested_actions=self.suggested_actions,
            technical_details=self.technical_details,
            recoverable=self.recoverable,
        )


class ConfigurationError(AppError):
    """Raised when configuration cannot be loaded or bound.

    Configuration errors are fatal for the run: the host reports them and
    exits without starting the sync service.
    """

    def __init__(
        self,
        message: str,
        section: str | None = None,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
        source: str | None = None,
    ) -> None:
        suggested_actions = [
            "Check the configuration settings",
            "Remove the value to fall back to the default",
        ]
        if expected:
            suggested_actions.append(f"Expected: {expected}")

        technical_details = None
        if source:
            technical_details = f"Source: {source}"
        if section:
            setting = f"{section}:{field}" if field else section
            technical_details = (technical_details + "\n" if technical_details else "") + f"Setting: {setting}"
        if value is not None:
            value_str = str(value)[:100]  # Truncate long values
            technical_details = (technical_details or "") + f"\nCurrent: {value_str}"

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            suggested_actions=suggested_actions,
            technical_details=technical_details,
            recoverable=False,
        )
        self.section = section
        self.field = field
        self.value = value
        self.expected = expected
        self.source = source


class SyncError(AppError):
    """Exception for failures inside a sync run."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if operation:
            technical_details = f"Operation: {operation}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {type(original_error).__name__}: {str(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.SYNC,
            severity=ErrorSeverity.ERROR,
            suggested_actions=[
                "Check the log files for details",
                "Run the sync again",
            ],
            technical_details=technical_details,
            recoverable=True,
        )
        self.operation = operation
        self.original_error = original_error


class ErrorHandlingService:
    """Centralized error handling service.

    This service provides:
    - Error classification and user-friendly message generation
    - Error logging with technical details
    - A bounded history of handled errors
    """

    def __init__(self, max_history_size: int = 100) -> None:
        self._error_history: list[tuple[float, AppError]] = []
        self._max_history_size = max_history_size
        log.debug("Error handling service initialized")

    def handle_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None = None,
    ) -> UserFriendlyError:
        """Handle an error and return a user-friendly representation.

        Args:
            error: The exception that occurred
            operation: The operation being performed
            component: The component where the error occurred
            context: Additional context information

        Returns:
            User-friendly error representation
        """
        app_error = self._convert_to_app_error(error, operation, component, context)

        self._log_error(app_error, operation, component, context)

        self._error_history.append((time.time(), app_error))
        if len(self._error_history) > self._max_history_size:
            self._error_history.pop(0)

        return app_error.to_user_friendly()

    def _convert_to_app_error(
        self,
        error: Exception,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> AppError:
        """Convert a standard exception to an AppError."""
        if isinstance(error, AppError):
            return error

        if isinstance(error, (FileNotFoundError, PermissionError)):
            return AppError(
                message=f"A file system error occurred: {str(error)}",
                category=ErrorCategory.FILE_SYSTEM,
                technical_details=f"{type(error).__name__}: {str(error)}",
            )
        elif isinstance(error, (ValueError, TypeError)):
            return AppError(
                message=f"Invalid data: {str(error)}",
                category=ErrorCategory.VALIDATION,
                severity=ErrorSeverity.WARNING,
                technical_details=f"{type(error).__name__}: {str(error)}",
            )

        return AppError(
            message="An unexpected error occurred.",
            category=ErrorCategory.UNEXPECTED,
            severity=ErrorSeverity.ERROR,
            technical_details=f"{type(error).__name__}: {str(error)}",
            recoverable=True,
            context=ErrorContext(
                operation=operation,
                component=component,
                details=context or {},
            ),
        )

    def _log_error(
        self,
        error: AppError,
        operation: str,
        component: str,
        context: dict[str, Any] | None,
    ) -> None:
        """Log error with full technical details."""
        if error.severity == ErrorSeverity.CRITICAL:
            log_method = log.critical
        elif error.severity == ErrorSeverity.ERROR:
            log_method = log.error
        else:
            log_method = log.warning

        log_method(
            "Error occurred",
            error_message=error.message,
            category=error.category.value,
            severity=error.severity.value,
            operation=operation,
            component=component,
            technical_details=error.technical_details,
            recoverable=error.recoverable,
            context=context,
        )

    def get_recent_errors(self, count: int = 10) -> list[AppError]:
        """Get recent errors from history, oldest first."""
        recent = self._error_history[-count:] if self._error_history else []
        return [error for _, error in recent]

    def get_error_count_by_category(self) -> dict[ErrorCategory, int]:
        counts: dict[ErrorCategory, int] = {}
        for _, error in self._error_history:
            counts[error.category] = counts.get(error.category, 0) + 1
        return counts

    def create_user_message(
        self,
        error: UserFriendlyError,
        include_suggestions: bool = True,
    ) -> str:
        """Create a formatted user message from an error.

        Args:
            error: The user-friendly error
            include_suggestions: Whether to include suggested actions

        Returns:
            Formatted message string
        """
        parts = [error.message]

        if include_suggestions and error.suggested_actions:
            parts.append("\nSuggested actions:")
            for action in error.suggested_actions[:3]:  # Limit to 3 suggestions
                parts.append(f"  • {action}")

        return "\n".join(parts)


# Global error handling service instance
_error_service: ErrorHandlingService | None = None


def get_error_service() -> ErrorHandlingService:
    """Get the global error handling service instance."""
    global _error_service
    if _error_service is None:
        _error_service = ErrorHandlingService()
    return _error_service


def handle_error(
    error: Exception,
    operation: str,
    component: str,
    context: dict[str, Any] | None = None,
) -> UserFriendlyError:
    """Convenience function to handle errors using the global service."""
    return get_error_service().handle_error(error, operation, component, context)
