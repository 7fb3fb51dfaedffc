"""Tests for the host entry point."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from cricclubs_sync import main as host_main
from cricclubs_sync.main import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, SyncHost, parse_arguments, run
from cricclubs_sync.models import ClientConfig, SyncSettings
from cricclubs_sync.services import ConfigurationError
from cricclubs_sync.services.config import BindResult
from cricclubs_sync.services.sync_service import ServiceState, SyncService


@pytest.fixture
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ENVIRONMENT", "CRICCLUBS_ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)


def _log_events(log_dir: Path) -> list[dict]:
    text = (log_dir / "cricclubs-sync.log").read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestParseArguments:
    """Host options are consumed; the rest are configuration overrides."""

    def test_defaults(self) -> None:
        args = parse_arguments([])

        assert args.config_dir is None
        assert args.environment is None
        assert args.log_level == "INFO"
        assert args.log_dir == Path("logs")
        assert args.env_prefix == ""
        assert args.overrides == []

    def test_host_options_and_overrides(self, tmp_path: Path) -> None:
        args = parse_arguments([
            "--environment", "Development",
            "--config-dir", str(tmp_path),
            "--SyncOptions:BatchSize=25",
            "--log-level", "DEBUG",
            "--ClientConfig:RequestTimeoutSeconds", "-5",
        ])

        assert args.environment == "Development"
        assert args.config_dir == tmp_path
        assert args.log_level == "DEBUG"
        assert args.overrides == [
            "--SyncOptions:BatchSize=25",
            "--ClientConfig:RequestTimeoutSeconds", "-5",
        ]


class TestSyncHost:
    """The host runs the service once and tears down."""

    @pytest.mark.asyncio
    async def test_run_completes(self) -> None:
        settings = SyncSettings(client=ClientConfig(api_base_url="https://api.cricclubs.com"))
        host = SyncHost(BindResult(settings=settings), work_delay=0.01)

        outcome = await host.run(handle_signals=False)

        assert outcome is ServiceState.COMPLETED
        assert host.shutdown_requested
        assert host.service is not None
        assert host.service.state is ServiceState.STOPPED
        assert host.http_clients is not None
        with pytest.raises(RuntimeError):
            host.http_clients.create_client()

    @pytest.mark.asyncio
    async def test_run_with_failed_bind_raises(self) -> None:
        host = SyncHost(BindResult(error=ConfigurationError("bad", section="SyncOptions", field="BatchSize")))

        with pytest.raises(ConfigurationError):
            await host.run(handle_signals=False)

        assert not host.shutdown_requested

    @pytest.mark.asyncio
    async def test_faulted_run_shuts_down_gracefully(self) -> None:
        host = SyncHost(BindResult(settings=SyncSettings()))

        with patch.object(SyncService, "_run_sync", new=AsyncMock(side_effect=RuntimeError("boom"))):
            outcome = await host.run(handle_signals=False)

        assert outcome is ServiceState.FAULTED
        assert host.shutdown_requested

    @pytest.mark.asyncio
    async def test_cancel_request_ends_the_run(self) -> None:
        host = SyncHost(BindResult(settings=SyncSettings()), work_delay=30)

        run_task = asyncio.create_task(host.run(handle_signals=False))
        await asyncio.sleep(0.05)
        host.request_cancel()
        outcome = await asyncio.wait_for(run_task, timeout=2.0)

        assert outcome is ServiceState.CANCELLED
        assert host.shutdown_requested

    def test_request_cancel_before_run_is_a_no_op(self) -> None:
        host = SyncHost(BindResult(settings=SyncSettings()))

        host.request_cancel()

        assert not host.shutdown_requested


@pytest.mark.usefixtures("clean_environment")
class TestRun:
    """End-to-end runs through ``run(argv)``."""

    def test_successful_run(self, config_dir: Path, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"

        exit_code = run(["--config-dir", str(config_dir), "--log-dir", str(log_dir)])

        assert exit_code == EXIT_OK
        events = [event["event"] for event in _log_events(log_dir)]
        assert "Starting CricClubs Data Sync application" in events
        assert "CricClubs Data Sync service completed successfully" in events
        assert events[-1] == "Application exiting"

    def test_faulted_run_still_exits_cleanly(self, config_dir: Path, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"

        with patch.object(SyncService, "_run_sync", new=AsyncMock(side_effect=RuntimeError("boom"))):
            exit_code = run(["--config-dir", str(config_dir), "--log-dir", str(log_dir)])

        assert exit_code == EXIT_OK
        events = _log_events(log_dir)
        failures = [e for e in events if e["level"] == "error"]
        assert len(failures) == 1
        assert failures[0]["error_message"] == "An error occurred during sync execution"
        assert "RuntimeError: boom" in failures[0]["context"]["traceback"]
        assert any(e["event"] == "Sync finished" and e["outcome"] == "faulted" for e in events)

    def test_bind_error_is_fatal(
        self,
        config_dir: Path,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        exit_code = run([
            "--config-dir", str(config_dir),
            "--log-dir", str(tmp_path / "logs"),
            "--ClientConfig:RequestTimeoutSeconds=thirty",
        ])

        assert exit_code == EXIT_FATAL
        stderr = capsys.readouterr().err
        assert "Fatal error" in stderr
        assert "ClientConfig:RequestTimeoutSeconds" in stderr

    def test_missing_base_file_is_fatal(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        log_dir = tmp_path / "logs"

        exit_code = run(["--config-dir", str(tmp_path / "empty"), "--log-dir", str(log_dir)])

        assert exit_code == EXIT_FATAL
        assert "appsettings.json" in capsys.readouterr().err
        assert _log_events(log_dir)[-1]["event"] == "Application exiting"

    def test_negative_timeout_override_is_accepted(self, config_dir: Path, tmp_path: Path) -> None:
        exit_code = run([
            "--config-dir", str(config_dir),
            "--log-dir", str(tmp_path / "logs"),
            "--ClientConfig:RequestTimeoutSeconds", "-5",
        ])

        assert exit_code == EXIT_OK

    def test_keyboard_interrupt(self, config_dir: Path, tmp_path: Path) -> None:
        def interrupted(coro: object) -> None:
            coro.close()  # type: ignore[attr-defined]
            raise KeyboardInterrupt

        with patch.object(host_main.asyncio, "run", side_effect=interrupted):
            exit_code = run(["--config-dir", str(config_dir), "--log-dir", str(tmp_path / "logs")])

        assert exit_code == EXIT_INTERRUPTED

    def test_main_exits_with_run_code(self, config_dir: Path, tmp_path: Path) -> None:
        argv = ["cricclubs-sync", "--config-dir", str(config_dir), "--log-dir", str(tmp_path / "logs")]

        with patch.object(host_main.sys, "argv", argv):
            with pytest.raises(SystemExit) as exc_info:
                host_main.main()

        assert exc_info.value.code == EXIT_OK
