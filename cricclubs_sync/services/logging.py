"""Logging configuration service for the CricClubs data sync host."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog


class LoggingService:
    """Service for configuring and tearing down process-wide logging.

    The service owns every handler it installs on the root logger. Use it as
    a context manager so the handlers are flushed and closed on every exit
    path::

        with LoggingService(log_level="INFO", log_dir=Path("logs")) as logging_service:
            ...
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Path | None = None,
        environment: str | None = None,
    ) -> None:
        """Initialize the logging service.

        Args:
            log_level: The minimum log level to capture
            log_dir: Directory for log files (None for console only)
            environment: Environment name; defaults to the ENVIRONMENT variable
        """
        self.log_level = log_level.upper()
        self.log_dir = log_dir
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.is_development = self.environment.lower() == "development"
        self._handlers: list[logging.Handler] = []
        self._configured = False

    def __enter__(self) -> "LoggingService":
        self.configure()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self) -> None:
        """Configure structlog with appropriate processors and handlers."""
        self._configure_stdlib_logging()

        structlog.configure(
            processors=self._get_processors(),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )
        self._configured = True

    def shutdown(self) -> None:
        """Flush and close every handler this service installed."""
        root_logger = logging.getLogger()
        for handler in self._handlers:
            try:
                handler.flush()
            finally:
                root_logger.removeHandler(handler)
                handler.close()
        self._handlers.clear()
        self._configured = False

    def _configure_stdlib_logging(self) -> None:
        """Configure standard library logging handlers."""
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        self._handlers.clear()

        numeric_level = getattr(logging, self.log_level, logging.INFO)
        root_logger.setLevel(numeric_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)

        if self.is_development:
            console_formatter = logging.Formatter(
                fmt="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
                datefmt="%H:%M:%S"
            )
        else:
            # Production: the message is already rendered JSON
            console_formatter = logging.Formatter("%(message)s")

        console_handler.setFormatter(console_formatter)
        self._add_handler(root_logger, console_handler)

        if self.log_dir:
            self._setup_file_logging(root_logger, numeric_level)

    def _setup_file_logging(self, root_logger: logging.Logger, level: int) -> None:
        """Set up file-based logging with daily rotation."""
        if not self.log_dir:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)

        file_formatter = logging.Formatter("%(message)s")

        # Main log, one file per day
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=self.log_dir / "cricclubs-sync.log",
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        self._add_handler(root_logger, file_handler)

        # Error log (ERROR and CRITICAL only)
        error_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "error.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        self._add_handler(root_logger, error_handler)

    def _add_handler(self, root_logger: logging.Logger, handler: logging.Handler) -> None:
        root_logger.addHandler(handler)
        self._handlers.append(handler)

    def _get_processors(self) -> list[Any]:
        """Get the appropriate structlog processors for the environment."""
        common_processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        if self.is_development and not self.log_dir:
            return common_processors + [
                structlog.dev.ConsoleRenderer(colors=False)
            ]
        # Files always get JSON
        return common_processors + [
            structlog.processors.JSONRenderer()
        ]

    def get_logger(self, name: str | None = None) -> structlog.stdlib.BoundLogger:
        """Get a configured logger instance.

        Args:
            name: Logger name (defaults to calling module)

        Returns:
            Configured structlog logger
        """
        return structlog.stdlib.get_logger(name)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
    environment: str | None = None,
) -> LoggingService:
    """Set up application logging with the specified configuration.

    Args:
        log_level: Minimum log level to capture
        log_dir: Directory for log files (None for console only)
        environment: Environment name (development/production)

    Returns:
        Configured LoggingService instance; call ``shutdown()`` when done
    """
    service = LoggingService(log_level=log_level, log_dir=log_dir, environment=environment)
    service.configure()
    return service
