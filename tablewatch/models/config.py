"""Configuration models for the table watcher."""

from typing import Literal

from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from tablewatch.models.record import EventKind

DEFAULT_ENDPOINT_URL = "https://api.airtable.com"


class AirtableConfig(BaseModel):
    """Configuration for the Airtable record store."""

    endpoint_url: HttpUrl = Field(
        default=DEFAULT_ENDPOINT_URL, description="Airtable API endpoint URL"
    )
    api_key: str = Field(default=..., min_length=1, description="API key or personal access token")
    base_id: str = Field(default=..., min_length=1, description="Airtable base identifier")
    page_size: int = Field(default=100, ge=1, le=100, description="Records per page")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP request timeout")


class PollingConfig(BaseModel):
    """Configuration for the polling scheduler."""

    interval_seconds: float = Field(
        default=10.0, gt=0, description="Delay between the starts of consecutive ticks"
    )
    fetch_failure_policy: Literal["empty", "keep_previous"] = Field(
        default="empty",
        description=(
            "What a table whose fetch failed contributes to the tick: an empty table, "
            "or the previously captured table (suppresses spurious removals)"
        ),
    )


class StoreConfig(BaseModel):
    """Configuration for the persistent key-value store."""

    type: Literal["memory", "json"] = Field(default="memory", description="Store backend")
    path: str | None = Field(default=None, description="State file path for the json backend")
    namespace: str = Field(default="tablewatch", description="Prefix for persisted keys")


class SubscriptionConfig(BaseModel):
    """A subscription declared in the configuration file."""

    table: str = Field(default=..., min_length=1, description="Watched table name")
    event: EventKind = Field(default=..., description="Event kind to subscribe to")
    raw_mode: bool = Field(
        default=False, description="Deliver every raw modification instead of settled ones"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the APP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    airtable: AirtableConfig
    polling: PollingConfig = Field(default_factory=PollingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    connector_id: str = Field(default="default", min_length=1, description="Connector identifier")
    subscriptions: list[SubscriptionConfig] = Field(
        default_factory=list, description="Subscriptions registered by the CLI"
    )
