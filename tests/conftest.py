"""Shared fixtures for the CricClubs data sync tests."""

import json
import logging
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from cricclubs_sync.services.config import ConfigurationSnapshot


def default_test_values() -> dict[str, str | None]:
    """A complete in-memory configuration for all three sections."""
    return {
        "ClientConfig:ApiBaseUrl": "https://test.api.cricclubs.com",
        "ClientConfig:Username": "testuser",
        "ClientConfig:Password": "testpass",
        "ClientConfig:ApiKey": "test-key",
        "ClientConfig:RequestTimeoutSeconds": "30",
        "ClientConfig:MaxRetryAttempts": "3",
        "ClientConfig:RateLimitDelayMs": "1000",
        "ClientConfig:MaxConcurrentRequests": "5",

        "StoreConfig:ConnectionString": "Server=localhost;Database=TestDb;Trusted_Connection=true;",
        "StoreConfig:CommandTimeoutSeconds": "30",
        "StoreConfig:EnableSensitiveDataLogging": "false",
        "StoreConfig:EnableDetailedErrors": "false",

        "SyncOptions:BatchSize": "50",
        "SyncOptions:IncludePlayerStats": "true",
        "SyncOptions:IncludeMatchDetails": "true",
        "SyncOptions:CalculateAnalytics": "true",
        "SyncOptions:SyncHistoricalData": "false",
        "SyncOptions:MatchFormats:0": "T20",
        "SyncOptions:MatchFormats:1": "ODI",
        "SyncOptions:MatchFormats:2": "Test",
    }


def snapshot_of(values: dict[str, str | None]) -> ConfigurationSnapshot:
    return ConfigurationSnapshot(values)


def write_settings(directory: Path, data: dict[str, Any], environment: str | None = None) -> Path:
    """Write appsettings.json (or appsettings.{environment}.json) into directory."""
    name = f"appsettings.{environment}.json" if environment else "appsettings.json"
    path = directory / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """A directory with a minimal base settings file."""
    write_settings(tmp_path, {
        "ClientConfig": {"ApiBaseUrl": "https://api.cricclubs.com", "RequestTimeoutSeconds": 30},
        "StoreConfig": {"ConnectionString": "Server=localhost;Database=CricClubsData;"},
        "SyncOptions": {"BatchSize": 50, "MatchFormats": ["T20", "ODI", "Test"]},
    })
    return tmp_path


@pytest.fixture
def shutdown_callback() -> MagicMock:
    return MagicMock(name="request_shutdown")


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Keep handlers installed by one test from leaking into the next."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
