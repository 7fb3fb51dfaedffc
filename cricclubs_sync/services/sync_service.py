"""Supervised single-run sync service.

The service runs its task body exactly once. Whatever happens to the body
(completion, failure or cancellation) it asks the host to shut down
exactly once, from a ``finally`` block backed by a task done callback.
"""

import asyncio
import traceback
from collections.abc import Callable
from enum import Enum

import structlog

from ..models import ClientConfig, StoreConfig, SyncOptions, SyncSettings
from .config import BindResult
from .errors import ErrorHandlingService, SyncError, get_error_service

log = structlog.stdlib.get_logger()

DEFAULT_WORK_DELAY = 0.1  # seconds


class ServiceState(Enum):
    """Lifecycle state of the sync service."""
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAULTED = "faulted"
    CANCELLED = "cancelled"
    STOP_REQUESTED = "stop_requested"
    STOPPED = "stopped"


TERMINAL_STATES = frozenset({ServiceState.COMPLETED, ServiceState.FAULTED, ServiceState.CANCELLED})


class SyncService:
    """Runs one CricClubs sync to completion, then requests shutdown."""

    def __init__(
        self,
        client_config: ClientConfig,
        store_config: StoreConfig,
        sync_options: SyncOptions,
        request_shutdown: Callable[[], None],
        logger: structlog.stdlib.BoundLogger | None = None,
        error_service: ErrorHandlingService | None = None,
        work_delay: float = DEFAULT_WORK_DELAY,
    ) -> None:
        """Initialize the sync service.

        Args:
            client_config: CricClubs API settings
            store_config: Persistence settings
            sync_options: Scope of the run
            request_shutdown: Called once when the run is over
            logger: Logger to use (default: module logger)
            error_service: Error handling service (default: global service)
            work_delay: Length of the bounded wait in the task body, in seconds
        """
        self._client_config = client_config
        self._store_config = store_config
        self._sync_options = sync_options
        self._request_shutdown = request_shutdown
        self._log = (logger or log).bind(component="sync_service")
        self._error_service = error_service or get_error_service()
        self._work_delay = work_delay

        self._state = ServiceState.CREATED
        self._outcome: ServiceState | None = None
        self._error: Exception | None = None
        self._task: asyncio.Task[None] | None = None
        self._cancel_event: asyncio.Event | None = None
        self._shutdown_requested = False

        # Reading the injected sections here surfaces bad handles at construction
        self._log.debug(
            "Sync service created",
            api_base_url=client_config.api_base_url,
            has_connection=store_config.has_connection,
            batch_size=sync_options.batch_size,
        )

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        request_shutdown: Callable[[], None],
        **kwargs: object,
    ) -> "SyncService":
        return cls(settings.client, settings.store, settings.sync, request_shutdown, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def from_bind_result(
        cls,
        result: BindResult,
        request_shutdown: Callable[[], None],
        **kwargs: object,
    ) -> "SyncService":
        """Build the service from a bind result.

        Raises:
            ConfigurationError: If binding failed. Not caught here.
        """
        return cls.from_settings(result.unwrap(), request_shutdown, **kwargs)

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def outcome(self) -> ServiceState | None:
        """The terminal state of the run (COMPLETED, FAULTED or CANCELLED), once known."""
        return self._outcome

    @property
    def error(self) -> Exception | None:
        """The error that faulted the run, if any."""
        return self._error

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def start(self, cancel_event: asyncio.Event) -> "asyncio.Task[None]":
        """Start the run under the given cancellation signal.

        Must be called from a running event loop.

        Args:
            cancel_event: Set by the host to ask the run to stop

        Returns:
            The asyncio task executing the run

        Raises:
            RuntimeError: If the service was already started
        """
        if self._state is not ServiceState.CREATED:
            raise RuntimeError(f"Sync service cannot start from state {self._state.value}")

        self._state = ServiceState.STARTING
        self._cancel_event = cancel_event
        self._task = asyncio.create_task(self._execute(cancel_event), name="cricclubs-sync")
        self._task.add_done_callback(self._on_task_done)
        self._state = ServiceState.RUNNING
        self._log.info("Sync service started")
        return self._task

    async def wait(self) -> ServiceState | None:
        """Wait for the run to finish and return its outcome."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self._outcome

    async def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the service. Safe to call at any time; never raises.

        Sets the cancellation signal, waits up to ``timeout`` seconds for the
        run to unwind and cancels the task if it has not.
        """
        if self._state in (ServiceState.STOP_REQUESTED, ServiceState.STOPPED):
            return

        self._state = ServiceState.STOP_REQUESTED
        self._log.info("Sync service stopping")
        try:
            if self._cancel_event is not None:
                self._cancel_event.set()

            if self._task is not None and not self._task.done():
                done, _ = await asyncio.wait({self._task}, timeout=timeout)
                if not done:
                    self._log.warning("Sync run did not stop in time, cancelling", timeout=timeout)
                    self._task.cancel()
                    await asyncio.wait({self._task})
        except Exception as e:
            self._log.warning("Error while stopping sync service", error=str(e))
        finally:
            self._state = ServiceState.STOPPED
            self._log.info("Sync service stopped", outcome=self._outcome.value if self._outcome else None)

    async def _execute(self, cancel_event: asyncio.Event) -> None:
        """Run the task body once and always request shutdown afterwards."""
        try:
            if cancel_event.is_set():
                self._log.info("Sync cancelled before it started")
                self._finish(ServiceState.CANCELLED)
                return

            await self._run_sync(cancel_event)

            self._finish(ServiceState.CANCELLED if cancel_event.is_set() else ServiceState.COMPLETED)

        except asyncio.CancelledError:
            self._log.info("Sync task cancelled")
            self._finish(ServiceState.CANCELLED)
            raise

        except Exception as e:
            self._error = e
            self._error_service.handle_error(
                SyncError("An error occurred during sync execution", operation="sync", original_error=e),
                operation="sync",
                component="sync_service",
                context={"traceback": traceback.format_exc()},
            )
            self._finish(ServiceState.FAULTED)

        finally:
            self._request_shutdown_once()

    async def _run_sync(self, cancel_event: asyncio.Event) -> None:
        """The task body.

        Logs the resolved configuration and performs a bounded wait that the
        cancellation signal interrupts. The real sync engine plugs in here.
        """
        options = self._sync_options
        self._log.info("CricClubs Data Sync service starting...")
        self._log.info("Configuration loaded successfully")
        self._log.info("API base URL", api_base_url=self._client_config.api_base_url)
        self._log.info("Database connection configured", has_connection=self._store_config.has_connection)
        self._log.info(
            "Sync scope",
            season_ids=options.season_ids,
            competition_ids=options.competition_ids,
            team_ids=options.team_ids,
            from_date=options.from_date.isoformat() if options.from_date else None,
            to_date=options.to_date.isoformat() if options.to_date else None,
            match_formats=options.match_formats,
            batch_size=options.batch_size,
            include_player_stats=options.include_player_stats,
            include_match_details=options.include_match_details,
            calculate_analytics=options.calculate_analytics,
            sync_historical_data=options.sync_historical_data,
        )

        if await self._wait_or_cancel(self._work_delay, cancel_event):
            self._log.info("Sync cancelled")
            return

        self._log.info("CricClubs Data Sync service completed successfully")

    @staticmethod
    async def _wait_or_cancel(delay: float, cancel_event: asyncio.Event) -> bool:
        """Wait ``delay`` seconds. Returns True if cancelled first."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(self, outcome: ServiceState) -> None:
        self._outcome = outcome
        # A stop in progress keeps its own state
        if self._state is ServiceState.RUNNING:
            self._state = outcome
        self._log.info("Sync run finished", outcome=outcome.value)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        # A task cancelled before its first step never enters _execute
        if self._outcome is None:
            self._log.info("Sync task cancelled before it ran")
            self._finish(ServiceState.CANCELLED)
        self._request_shutdown_once()

    def _request_shutdown_once(self) -> None:
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        self._log.info("Requesting application shutdown")
        self._request_shutdown()
