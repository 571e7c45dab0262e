"""kidsnet settings, read from the environment or a .env file.

Covers the pfSense and UniFi endpoints, the schedule timezone, loop timing,
webhooks, and the API key. Invalid or missing required values stop startup.
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kidsnet.utils.url_safety import validate_controller_url


class Settings(BaseSettings):
    """kidsnet settings. All values sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Firewall (pfSense REST API v2): required
    pfsense_url: str
    pfsense_api_key: str
    pfsense_verify_tls: bool = False

    # Wireless controller (UniFi): optional, device blocking is skipped without it
    unifi_url: str | None = None
    unifi_api_key: str | None = None
    unifi_site: str = "default"
    unifi_path_prefix: str = "/proxy/network"
    unifi_verify_tls: bool = False

    # Subjects
    subjects_file_path: str = "./subjects.yaml"

    # Database
    database_url: str = "sqlite+aiosqlite:///./kidsnet.db"
    db_pool_timeout: int = 5
    db_connect_timeout: int = 5

    # Reconciliation
    timezone: str = "UTC"
    reconcile_interval_seconds: float = 15.0
    audit_log_max_entries: int = 500

    # HTTP client: bounded timeout on every downstream call
    httpx_timeout_seconds: float = 10.0

    # Notifications: sent to whichever webhooks are configured
    discord_webhook_url: AnyHttpUrl | None = None
    slack_webhook_url: AnyHttpUrl | None = None
    notifications_enabled: bool = True

    # API server (3030 matches the household dashboard's historical port)
    api_host: str = "127.0.0.1"
    api_port: int = 3030
    kidsnet_api_key: str
    cors_allowed_origins: str = "http://localhost:3030"
    rate_limit_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("pfsense_url")
    @classmethod
    def pfsense_url_valid(cls, v: str) -> str:
        return validate_controller_url(v)

    @field_validator("unifi_url")
    @classmethod
    def unifi_url_valid(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return validate_controller_url(v)

    @field_validator("pfsense_api_key")
    @classmethod
    def pfsense_key_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("PFSENSE_API_KEY must not be empty")
        return v.strip()

    @field_validator("kidsnet_api_key")
    @classmethod
    def api_key_strong(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("KIDSNET_API_KEY must not be empty")
        if len(v.strip()) < 32:
            raise ValueError("KIDSNET_API_KEY must be at least 32 characters")
        return v

    @field_validator("database_url")
    @classmethod
    def database_url_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must not be empty")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_known(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {v!r}") from exc
        return v

    @field_validator("reconcile_interval_seconds", "httpx_timeout_seconds")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator("audit_log_max_entries")
    @classmethod
    def audit_cap_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("AUDIT_LOG_MAX_ENTRIES must be at least 1")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        """The zone schedule windows are evaluated in."""
        return ZoneInfo(self.timezone)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list, dropping '*'."""
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]
        return [origin for origin in origins if origin != "*"]


def get_settings() -> Settings:
    """Create and return a validated Settings instance.

    Raises ValidationError with clear messages if required env vars are missing.
    """
    return Settings()  # type: ignore[call-arg]
