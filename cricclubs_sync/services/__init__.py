"""Service layer: configuration, logging, HTTP and the sync lifecycle."""

from .config import (
    BindResult,
    ConfigurationService,
    ConfigurationSnapshot,
    FieldBinding,
    SectionBinding,
    bind_section,
    bind_settings,
)
from .errors import (
    AppError,
    ConfigurationError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    SyncError,
    UserFriendlyError,
    get_error_service,
    handle_error,
)
from .http_client import HttpClientFactory
from .logging import LoggingService, setup_logging
from .sync_service import ServiceState, SyncService

__all__ = [
    "AppError",
    "BindResult",
    "ConfigurationError",
    "ConfigurationService",
    "ConfigurationSnapshot",
    "ErrorCategory",
    "ErrorHandlingService",
    "ErrorSeverity",
    "FieldBinding",
    "HttpClientFactory",
    "LoggingService",
    "SectionBinding",
    "ServiceState",
    "SyncError",
    "SyncService",
    "UserFriendlyError",
    "bind_section",
    "bind_settings",
    "get_error_service",
    "handle_error",
    "setup_logging",
]
