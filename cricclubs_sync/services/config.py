"""Configuration service: layered sources bound into typed sections.

Sources are merged into a flat snapshot of ``:``-separated keys, lowest
precedence first:

1. ``appsettings.json`` (required)
2. ``appsettings.{Environment}.json`` (optional)
3. environment variables (``__`` separates segments)
4. command-line arguments

Keys compare case-insensitively. Each section is then bound from the
snapshot through a static table of ``FieldBinding`` entries; fields with no
value keep the dataclass defaults.
"""

import json
import os
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import structlog

from ..models import ClientConfig, StoreConfig, SyncOptions, SyncSettings
from .errors import ConfigurationError

log = structlog.stdlib.get_logger()

KEY_DELIMITER = ":"
ENV_KEY_DELIMITER = "__"
BASE_SETTINGS_FILE = "appsettings.json"
DEFAULT_ENVIRONMENT = "Production"
ENVIRONMENT_VARIABLES = ("CRICCLUBS_ENVIRONMENT", "ENVIRONMENT")

_INT_PATTERN = re.compile(r"^[+-]?\d+$")


# --------------------------------------------------------------------------------------
# Snapshot
# --------------------------------------------------------------------------------------

class ConfigurationSnapshot:
    """Immutable, case-insensitive view of the merged configuration.

    A key mapped to ``None`` is treated as absent. This is how a JSON ``null``
    in a later source hides a value from an earlier one.
    """

    def __init__(self, values: Mapping[str, str | None] | None = None) -> None:
        self._values: dict[str, str | None] = {}
        for key, value in (values or {}).items():
            self._values[_normalize_key(key)] = value

    @classmethod
    def merge(cls, layers: Iterable[Mapping[str, str | None]]) -> "ConfigurationSnapshot":
        """Merge layers in order; later layers win on key collision."""
        merged: dict[str, str | None] = {}
        for layer in layers:
            for key, value in layer.items():
                merged[_normalize_key(key)] = value
        return cls(merged)

    def get(self, key: str) -> str | None:
        return self._values.get(_normalize_key(key))

    def __getitem__(self, key: str) -> str | None:
        return self.get(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._values)

    def section_exists(self, section: str) -> bool:
        prefix = _normalize_key(section) + KEY_DELIMITER
        return any(key.startswith(prefix) for key in self._values)


def _normalize_key(key: str) -> str:
    return key.strip().casefold()


# --------------------------------------------------------------------------------------
# Sources
# --------------------------------------------------------------------------------------

def flatten_json(data: Any, prefix: str = "") -> dict[str, str | None]:
    """Flatten parsed JSON into ``:``-separated keys.

    Objects nest by key, arrays by index. Booleans become ``true``/``false``
    and ``null`` becomes ``None``.
    """
    items: dict[str, str | None] = {}
    if isinstance(data, dict):
        for key, value in data.items():
            items.update(flatten_json(value, f"{prefix}{KEY_DELIMITER}{key}" if prefix else str(key)))
    elif isinstance(data, list):
        for index, value in enumerate(data):
            items.update(flatten_json(value, f"{prefix}{KEY_DELIMITER}{index}"))
    elif data is None:
        items[prefix] = None
    elif isinstance(data, bool):
        items[prefix] = "true" if data else "false"
    else:
        items[prefix] = str(data)
    return items


def load_json_settings(path: Path, optional: bool = False) -> dict[str, str | None]:
    """Load and flatten a JSON settings file.

    Raises:
        ConfigurationError: If a required file is missing, or any file cannot
            be read or is not a JSON object.
    """
    if not path.exists():
        if optional:
            return {}
        raise ConfigurationError(
            f"Required settings file not found: {path}",
            source=str(path),
            expected="an existing JSON file",
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Settings file {path} is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            source=str(path),
            expected="a JSON object",
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Settings file {path} could not be read: {e}",
            source=str(path),
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Settings file {path} must contain a JSON object at the top level",
            source=str(path),
            expected="a JSON object",
        )
    return flatten_json(data)


def read_environment(environ: Mapping[str, str], prefix: str = "") -> dict[str, str | None]:
    """Map environment variables to configuration keys.

    ``ClientConfig__ApiBaseUrl`` becomes ``ClientConfig:ApiBaseUrl``. With a
    prefix only matching variables are read, and the prefix is removed.
    """
    items: dict[str, str | None] = {}
    folded_prefix = prefix.casefold()
    for name, value in environ.items():
        if folded_prefix:
            if not name.casefold().startswith(folded_prefix):
                continue
            name = name[len(prefix):]
        if not name:
            continue
        items[name.replace(ENV_KEY_DELIMITER, KEY_DELIMITER)] = value
    return items


def parse_command_line(args: Sequence[str]) -> dict[str, str | None]:
    """Parse ``--Key=value``, ``--Key value``, ``/Key value`` and ``Key=value``.

    Tokens without a key marker and without ``=`` are ignored.

    Raises:
        ConfigurationError: For single-dash switches and for a trailing
            ``--Key`` with no value.
    """
    items: dict[str, str | None] = {}
    tokens = list(args)
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1

        if token.startswith("--"):
            body = token[2:]
        elif token.startswith("/"):
            body = token[1:]
        elif token.startswith("-"):
            raise ConfigurationError(
                f"Unsupported command-line switch '{token}'",
                source="command line",
                value=token,
                expected="--Key=value or --Key value",
            )
        elif "=" in token:
            body = token
        else:
            continue

        if "=" in body:
            key, value = body.split("=", 1)
        else:
            if i >= len(tokens):
                raise ConfigurationError(
                    f"Command-line switch '{token}' has no value",
                    source="command line",
                    value=token,
                    expected="--Key=value or --Key value",
                )
            key, value = body, tokens[i]
            i += 1

        if not key:
            raise ConfigurationError(
                f"Command-line argument '{token}' has an empty key",
                source="command line",
                value=token,
            )
        items[key] = value
    return items


def resolve_environment_name(
    explicit: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the environment name: explicit value, then variables, then Production."""
    if explicit:
        return explicit
    environ = os.environ if environ is None else environ
    for name in ENVIRONMENT_VARIABLES:
        value = environ.get(name)
        if value:
            return value
    return DEFAULT_ENVIRONMENT


# --------------------------------------------------------------------------------------
# Binding
# --------------------------------------------------------------------------------------

def parse_str(raw: str) -> str:
    return raw


def parse_int(raw: str) -> int:
    text = raw.strip()
    if not _INT_PATTERN.match(text):
        raise ValueError(f"invalid integer: {raw!r}")
    return int(text)


def parse_bool(raw: str) -> bool:
    text = raw.strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(f"invalid boolean: {raw!r}")


def parse_date(raw: str) -> date:
    text = raw.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        # Accept a date-time and keep its calendar date
        return datetime.fromisoformat(text).date()


_TYPE_NAMES: dict[Callable[[str], Any], str] = {
    parse_str: "string",
    parse_int: "integer",
    parse_bool: "boolean (true/false)",
    parse_date: "ISO-8601 date (YYYY-MM-DD)",
}


@dataclass(frozen=True)
class FieldBinding:
    """Maps one dataclass attribute to a configuration key and parser."""
    attribute: str
    key: str
    parser: Callable[[str], Any]
    is_list: bool = False

    @property
    def type_name(self) -> str:
        name = _TYPE_NAMES.get(self.parser, self.parser.__name__)
        return f"list of {name}" if self.is_list else name


@dataclass(frozen=True)
class SectionBinding:
    """Static binding table for one configuration section."""
    name: str
    record_type: type
    fields: tuple[FieldBinding, ...]


CLIENT_CONFIG_SECTION = SectionBinding(
    name="ClientConfig",
    record_type=ClientConfig,
    fields=(
        FieldBinding("api_base_url", "ApiBaseUrl", parse_str),
        FieldBinding("username", "Username", parse_str),
        FieldBinding("password", "Password", parse_str),
        FieldBinding("api_key", "ApiKey", parse_str),
        FieldBinding("request_timeout_seconds", "RequestTimeoutSeconds", parse_int),
        FieldBinding("max_retry_attempts", "MaxRetryAttempts", parse_int),
        FieldBinding("rate_limit_delay_ms", "RateLimitDelayMs", parse_int),
        FieldBinding("max_concurrent_requests", "MaxConcurrentRequests", parse_int),
    ),
)

STORE_CONFIG_SECTION = SectionBinding(
    name="StoreConfig",
    record_type=StoreConfig,
    fields=(
        FieldBinding("connection_string", "ConnectionString", parse_str),
        FieldBinding("command_timeout_seconds", "CommandTimeoutSeconds", parse_int),
        FieldBinding("enable_sensitive_data_logging", "EnableSensitiveDataLogging", parse_bool),
        FieldBinding("enable_detailed_errors", "EnableDetailedErrors", parse_bool),
    ),
)

SYNC_OPTIONS_SECTION = SectionBinding(
    name="SyncOptions",
    record_type=SyncOptions,
    fields=(
        FieldBinding("season_ids", "SeasonIds", parse_int, is_list=True),
        FieldBinding("competition_ids", "CompetitionIds", parse_int, is_list=True),
        FieldBinding("team_ids", "TeamIds", parse_int, is_list=True),
        FieldBinding("from_date", "FromDate", parse_date),
        FieldBinding("to_date", "ToDate", parse_date),
        FieldBinding("include_player_stats", "IncludePlayerStats", parse_bool),
        FieldBinding("include_match_details", "IncludeMatchDetails", parse_bool),
        FieldBinding("calculate_analytics", "CalculateAnalytics", parse_bool),
        FieldBinding("sync_historical_data", "SyncHistoricalData", parse_bool),
        FieldBinding("batch_size", "BatchSize", parse_int),
        FieldBinding("match_formats", "MatchFormats", parse_str, is_list=True),
    ),
)

SECTIONS: tuple[SectionBinding, ...] = (
    CLIENT_CONFIG_SECTION,
    STORE_CONFIG_SECTION,
    SYNC_OPTIONS_SECTION,
)


def _parse_value(section: SectionBinding, binding: FieldBinding, key: str, raw: str) -> Any:
    try:
        return binding.parser(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {key}: {raw!r} is not a valid {_TYPE_NAMES.get(binding.parser, 'value')}",
            section=section.name,
            field=binding.key,
            value=raw,
            expected=binding.type_name,
        ) from e


def bind_section(snapshot: ConfigurationSnapshot, section: SectionBinding) -> Any:
    """Bind one section of the snapshot into its record type.

    Raises:
        ConfigurationError: If any present value cannot be parsed. The whole
            section fails; there is no per-field fallback.
    """
    values: dict[str, Any] = {}
    for binding in section.fields:
        key = f"{section.name}{KEY_DELIMITER}{binding.key}"

        if binding.is_list:
            items: list[Any] = []
            index = 0
            while (raw := snapshot.get(f"{key}{KEY_DELIMITER}{index}")) is not None:
                items.append(_parse_value(section, binding, f"{key}{KEY_DELIMITER}{index}", raw))
                index += 1
            values[binding.attribute] = tuple(items)
            continue

        raw = snapshot.get(key)
        if raw is None:
            continue
        if raw == "" and binding.parser is not parse_str:
            # Empty non-string values keep the default
            continue
        values[binding.attribute] = _parse_value(section, binding, key, raw)

    return section.record_type(**values)


def bind_settings(snapshot: ConfigurationSnapshot) -> SyncSettings:
    """Bind all three sections. Pure: same snapshot, equal settings."""
    return SyncSettings(
        client=bind_section(snapshot, CLIENT_CONFIG_SECTION),
        store=bind_section(snapshot, STORE_CONFIG_SECTION),
        sync=bind_section(snapshot, SYNC_OPTIONS_SECTION),
    )


@dataclass(frozen=True)
class BindResult:
    """Outcome of binding: either settings or the configuration error."""
    settings: SyncSettings | None = None
    error: ConfigurationError | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and self.settings is not None

    def unwrap(self) -> SyncSettings:
        """Return the settings, or raise the captured error."""
        if self.error is not None:
            raise self.error
        if self.settings is None:
            raise ConfigurationError("No settings were bound")
        return self.settings


# --------------------------------------------------------------------------------------
# Service
# --------------------------------------------------------------------------------------

class ConfigurationService:
    """Service for assembling layered configuration and binding it."""

    def __init__(
        self,
        config_dir: Path | None = None,
        environment: str | None = None,
        args: Sequence[str] = (),
        environ: Mapping[str, str] | None = None,
        env_prefix: str = "",
    ) -> None:
        """Initialize the configuration service.

        Args:
            config_dir: Directory holding the appsettings files (default: cwd)
            environment: Environment name; resolved from variables when None
            args: Command-line tokens for the highest-precedence source
            environ: Environment variables (default: ``os.environ``)
            env_prefix: Only read variables with this prefix, stripping it
        """
        self.config_dir: Path = config_dir or Path.cwd()
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._explicit_environment = environment
        self.environment: str = resolve_environment_name(environment, self._environ)
        self._args: list[str] = list(args)
        self.env_prefix = env_prefix
        log.info(
            "Configuration service initialized",
            config_dir=str(self.config_dir),
            environment=self.environment,
        )

    @property
    def base_settings_path(self) -> Path:
        return self.config_dir / BASE_SETTINGS_FILE

    @property
    def environment_settings_path(self) -> Path:
        return self.config_dir / f"appsettings.{self.environment}.json"

    def load_snapshot(self) -> ConfigurationSnapshot:
        """Read every source and merge them in precedence order.

        Raises:
            ConfigurationError: If the base file is missing or any source is
                malformed.
        """
        base = load_json_settings(self.base_settings_path)
        log.info("Settings file loaded", path=str(self.base_settings_path), keys=len(base))

        environment_file = load_json_settings(self.environment_settings_path, optional=True)
        if environment_file:
            log.info("Settings file loaded", path=str(self.environment_settings_path), keys=len(environment_file))
        else:
            log.debug("Environment settings file not found, skipping", path=str(self.environment_settings_path))

        environment_variables = read_environment(self._environ, self.env_prefix)

        command_line = parse_command_line(self._args)
        if self._explicit_environment:
            command_line.setdefault("environment", self._explicit_environment)

        snapshot = ConfigurationSnapshot.merge([base, environment_file, environment_variables, command_line])
        log.debug("Configuration snapshot assembled", keys=len(snapshot), overrides=len(command_line))
        return snapshot

    def bind(self, snapshot: ConfigurationSnapshot | None = None) -> SyncSettings:
        """Bind all sections, loading the snapshot first if not given."""
        if snapshot is None:
            snapshot = self.load_snapshot()
        return bind_settings(snapshot)

    def try_bind(self, snapshot: ConfigurationSnapshot | None = None) -> BindResult:
        """Like ``bind`` but returns configuration errors as a ``BindResult``."""
        try:
            settings = self.bind(snapshot)
        except ConfigurationError as e:
            log.error(
                "Configuration binding failed",
                error=e.message,
                section=e.section,
                field=e.field,
                source=e.source,
            )
            return BindResult(error=e)

        log.info("Configuration loaded successfully")
        return BindResult(settings=settings)
