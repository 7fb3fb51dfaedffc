"""Configuration data models."""

from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class ClientConfig:
    """CricClubs API access settings."""
    api_base_url: str = ""
    username: str = ""
    password: str = ""
    api_key: str = ""
    request_timeout_seconds: int = 30
    max_retry_attempts: int = 3
    rate_limit_delay_ms: int = 1000
    max_concurrent_requests: int = 5

    @property
    def has_credentials(self) -> bool:
        """True when either a username or an API key is configured."""
        return bool(self.username or self.api_key)


@dataclass(frozen=True)
class StoreConfig:
    """Persistence access settings."""
    connection_string: str = ""
    command_timeout_seconds: int = 30
    enable_sensitive_data_logging: bool = False
    enable_detailed_errors: bool = False

    @property
    def has_connection(self) -> bool:
        return bool(self.connection_string)


@dataclass(frozen=True)
class SyncOptions:
    """Scope of a synchronization run."""
    season_ids: tuple[int, ...] = ()
    competition_ids: tuple[int, ...] = ()
    team_ids: tuple[int, ...] = ()
    from_date: date | None = None
    to_date: date | None = None
    include_player_stats: bool = True
    include_match_details: bool = True
    calculate_analytics: bool = True
    sync_historical_data: bool = False
    batch_size: int = 50
    match_formats: tuple[str, ...] = ()  # "T20", "ODI", ... not validated

    @property
    def has_date_range(self) -> bool:
        return self.from_date is not None or self.to_date is not None


@dataclass(frozen=True)
class SyncSettings:
    """The three bound sections handed to the sync service."""
    client: ClientConfig = field(default_factory=ClientConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncOptions = field(default_factory=SyncOptions)
