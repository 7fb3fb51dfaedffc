"""Main entry point for the CricClubs data sync host.

This module provides the application entry point with:
- Command-line argument parsing
- Logging setup and guaranteed teardown
- Layered configuration assembly
- Running the single sync task and graceful shutdown
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog

from . import __version__
from .services.config import BindResult, ConfigurationService, resolve_environment_name
from .services.errors import get_error_service, handle_error
from .services.http_client import HttpClientFactory
from .services.logging import LoggingService
from .services.sync_service import ServiceState, SyncService


log = structlog.stdlib.get_logger()

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130  # Standard exit code for SIGINT


class SyncHost:
    """Runs one sync service and owns the process-level resources around it.

    The host hands the service a cancellation event (set on SIGINT/SIGTERM)
    and a shutdown callback. When the service calls back, the host stops it,
    closes its HTTP clients and returns the run's outcome.
    """

    def __init__(
        self,
        bind_result: BindResult,
        logger: structlog.stdlib.BoundLogger | None = None,
        **service_options: object,
    ) -> None:
        self._bind_result = bind_result
        self._log = logger or log
        self._service_options = service_options

        self._service: SyncService | None = None
        self._http_clients: HttpClientFactory | None = None
        self._cancel_event: asyncio.Event | None = None
        self._shutdown_event: asyncio.Event | None = None
        self._shutdown_requested: bool = False

    @property
    def service(self) -> SyncService | None:
        return self._service

    @property
    def http_clients(self) -> HttpClientFactory | None:
        return self._http_clients

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Shutdown callback handed to the sync service."""
        self._shutdown_requested = True
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        self._log.info("Shutdown requested")

    def request_cancel(self) -> None:
        """Ask the running sync to stop early."""
        if self._cancel_event is not None and not self._cancel_event.is_set():
            self._cancel_event.set()
            self._log.info("Cancellation requested")

    async def run(self, handle_signals: bool = True) -> ServiceState | None:
        """Build the service, run it once and tear everything down.

        Returns:
            The run's terminal state

        Raises:
            ConfigurationError: If the configuration failed to bind
        """
        self._cancel_event = asyncio.Event()
        self._shutdown_event = asyncio.Event()

        self._service = SyncService.from_bind_result(
            self._bind_result,
            self.request_shutdown,
            logger=self._log,
            **self._service_options,
        )
        self._http_clients = HttpClientFactory(self._bind_result.unwrap().client)

        loop = asyncio.get_running_loop()
        installed = setup_signal_handlers(self, loop) if handle_signals else []
        try:
            task = self._service.start(self._cancel_event)
            shutdown_waiter = asyncio.create_task(self._shutdown_event.wait())
            try:
                await asyncio.wait({shutdown_waiter, task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                shutdown_waiter.cancel()
        finally:
            remove_signal_handlers(loop, installed)
            await self.cleanup()

        outcome = self._service.outcome
        self._log.info("Sync host finished", outcome=outcome.value if outcome else None)
        return outcome

    async def cleanup(self) -> None:
        """Stop the service and close HTTP clients."""
        self._log.info("Cleaning up application resources")

        if self._service is not None:
            await self._service.stop()

        if self._http_clients is not None:
            await self._http_clients.close()

        self._log.info("Application cleanup complete")


class ParsedArgs:
    """Type-safe container for parsed command-line arguments."""

    def __init__(
        self,
        config_dir: Path | None,
        environment: str | None,
        log_level: str,
        log_dir: Path | None,
        env_prefix: str,
        overrides: list[str],
    ) -> None:
        self.config_dir: Path | None = config_dir
        self.environment: str | None = environment
        self.log_level: str = log_level
        self.log_dir: Path | None = log_dir
        self.env_prefix: str = env_prefix
        self.overrides: list[str] = overrides


def parse_arguments(argv: Sequence[str] | None = None) -> ParsedArgs:
    """Parse command-line arguments.

    Host options are consumed here; every other token is kept as a
    configuration override (``--SyncOptions:BatchSize=25``).

    Returns:
        Parsed arguments container
    """
    parser = argparse.ArgumentParser(
        prog="cricclubs-sync",
        description="Synchronize CricClubs data using layered configuration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Examples:
  cricclubs-sync                                   Run with ./appsettings.json
  cricclubs-sync --environment Development         Also load appsettings.Development.json
  cricclubs-sync --SyncOptions:SeasonIds:0=2024    Override a setting
        """
    )

    _ = parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    _ = parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory containing appsettings.json (default: current directory)"
    )

    _ = parser.add_argument(
        "--environment",
        default=None,
        help="Environment name (default: $CRICCLUBS_ENVIRONMENT, $ENVIRONMENT or Production)"
    )

    _ = parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (default: INFO)"
    )

    _ = parser.add_argument(
        "--log-dir",
        type=Path,
        default=Path("logs"),
        help="Directory for log files (default: ./logs)"
    )

    _ = parser.add_argument(
        "--env-prefix",
        default="",
        help="Only read environment variables with this prefix"
    )

    ns, overrides = parser.parse_known_args(argv)

    return ParsedArgs(
        config_dir=ns.config_dir,
        environment=ns.environment,
        log_level=ns.log_level if ns.log_level else "INFO",
        log_dir=ns.log_dir,
        env_prefix=ns.env_prefix or "",
        overrides=list(overrides),
    )


def setup_signal_handlers(host: SyncHost, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
    """Route SIGINT and SIGTERM to the host's cancellation signal.

    Returns:
        The signals that were installed
    """
    def signal_handler(signum: signal.Signals) -> None:
        log.info("Received signal", signal=signum.name)
        host.request_cancel()

    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except (NotImplementedError, RuntimeError):
            # No loop signal support (Windows, or not the main thread)
            continue
        installed.append(signum)

    log.debug("Signal handlers registered", signals=[s.name for s in installed])
    return installed


def remove_signal_handlers(loop: asyncio.AbstractEventLoop, installed: list[signal.Signals]) -> None:
    for signum in installed:
        loop.remove_signal_handler(signum)


def run(argv: Sequence[str] | None = None) -> int:
    """Run the host and return the process exit code."""
    args = parse_arguments(argv)
    environment = resolve_environment_name(args.environment)

    with LoggingService(log_level=args.log_level, log_dir=args.log_dir, environment=environment):
        log.info(
            "Starting CricClubs Data Sync application",
            version=__version__,
            environment=environment,
            log_level=args.log_level,
        )

        try:
            config_service = ConfigurationService(
                config_dir=args.config_dir,
                environment=args.environment,
                args=args.overrides,
                env_prefix=args.env_prefix,
            )
            bind_result = config_service.try_bind()
            host = SyncHost(bind_result)
            outcome = asyncio.run(host.run())
            log.info("Sync finished", outcome=outcome.value if outcome else None)
            exit_code = EXIT_OK

        except KeyboardInterrupt:
            log.info("Application interrupted by user")
            exit_code = EXIT_INTERRUPTED

        except Exception as e:
            friendly = handle_error(e, operation="startup", component="host")
            log.critical("Application terminated unexpectedly", error=str(e), exc_info=True)
            print(f"Fatal error: {get_error_service().create_user_message(friendly)}", file=sys.stderr)
            exit_code = EXIT_FATAL

        log.info("Application exiting", exit_code=exit_code)

    return exit_code


def main() -> None:
    """Main entry point for the application."""
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
