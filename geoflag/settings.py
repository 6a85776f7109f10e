import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Upstream API Configuration
    api_endpoint: str = Field(
        default="https://x.com/i/api/graphql/XRqGa7EeokUU5kppkh13EA/AboutAccountQuery",
        alias="GEOFLAG_API_ENDPOINT",
    )
    request_timeout: float = Field(default=10.0, alias="GEOFLAG_REQUEST_TIMEOUT")

    # Cache Configuration
    cache_storage_key: str = Field(
        default="twitter_location_cache", alias="GEOFLAG_CACHE_KEY"
    )
    cache_ttl_days: int = Field(default=30, alias="GEOFLAG_CACHE_TTL_DAYS")
    cache_save_debounce: float = Field(default=5.0, alias="GEOFLAG_CACHE_SAVE_DEBOUNCE")
    cache_periodic_save_interval: float = Field(
        default=30.0, alias="GEOFLAG_CACHE_PERIODIC_SAVE_INTERVAL"
    )

    # Annotation toggle, persisted alongside the cache
    toggle_storage_key: str = Field(
        default="extension_enabled", alias="GEOFLAG_TOGGLE_KEY"
    )
    enabled_default: bool = Field(default=True, alias="GEOFLAG_ENABLED")

    # Rate Limiting Configuration
    min_request_interval: float = Field(
        default=2.0, alias="GEOFLAG_MIN_REQUEST_INTERVAL"
    )
    max_concurrent_requests: int = Field(
        default=2, ge=1, alias="GEOFLAG_MAX_CONCURRENT"
    )
    max_queue_size: int = Field(default=1000, alias="GEOFLAG_MAX_QUEUE_SIZE")
    rate_limit_max_recheck: float = Field(
        default=60.0, alias="GEOFLAG_RATE_LIMIT_MAX_RECHECK"
    )
    rate_limit_fallback_pause: float = Field(
        default=60.0, alias="GEOFLAG_RATE_LIMIT_FALLBACK_PAUSE"
    )

    # Retry Configuration
    retry_max_attempts: int = Field(default=3, alias="GEOFLAG_RETRY_MAX_ATTEMPTS")
    retry_initial_delay: float = Field(
        default=1.0, alias="GEOFLAG_RETRY_INITIAL_DELAY"
    )
    retry_max_delay: float = Field(default=10.0, alias="GEOFLAG_RETRY_MAX_DELAY")
    retry_backoff_multiplier: float = Field(
        default=2.0, alias="GEOFLAG_RETRY_BACKOFF_MULTIPLIER"
    )
    retry_status_codes: list[int] = Field(
        default=[408, 500, 502, 503, 504], alias="GEOFLAG_RETRY_STATUS_CODES"
    )

    # Authentication context (headers harvested from host traffic)
    auth_wait_timeout: float = Field(default=3.0, alias="GEOFLAG_AUTH_WAIT_TIMEOUT")
    auth_poll_interval: float = Field(
        default=0.1, gt=0, alias="GEOFLAG_AUTH_POLL_INTERVAL"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./geoflag.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    debug: bool = Field(default=False, alias="GEOFLAG_DEBUG")

    @field_validator("retry_status_codes", mode="before")
    @classmethod
    def _split_status_codes(cls, value):
        # Environment values arrive as "408,500,502"
        if isinstance(value, str):
            return [int(code) for code in value.split(",") if code.strip()]
        return value


global_settings = Settings.model_validate(dict(os.environ))
