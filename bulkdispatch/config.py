# bulkdispatch/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 1
    pg_pool_max: int = 5
    pg_connect_timeout: int = 5

    # Recipient store backend
    # "postgres" - asyncpg-backed recipients table (durable, resumable)
    # "memory"   - in-process store (dev / demos, lost on restart)
    recipient_store: Literal["postgres", "memory"] = "postgres"

    # Security
    admin_token: str | None = None
    allowed_origins: list[str] = ["*"]

    # Transport selection
    # "meta"    - Meta WhatsApp Cloud API (Graph)
    # "dry_run" - never sends, every recipient is reported as existing
    transport_provider: Literal["meta", "dry_run"] = "dry_run"

    # Meta WhatsApp Cloud API
    meta_access_token: str | None = None
    meta_phone_number_id: str | None = None
    meta_graph_api_version: str = "v20.0"

    # Transport supervisor (reconnect backoff, seconds)
    transport_reconnect_initial_delay: float = 1.0
    transport_reconnect_max_delay: float = 30.0

    # Dispatch loop
    dispatch_min_delay_seconds: int = 3   # pacing window lower bound (inclusive)
    dispatch_max_delay_seconds: int = 10  # pacing window upper bound (inclusive)
    dispatch_page_size: int = 50          # pending records fetched per page
    dispatch_resume_pending: bool = False  # skip purge when pending records survive a restart

    # Random number generation ("random" source)
    generator_region_code: str = "258"
    generator_prefixes: list[str] = ["84", "82", "85", "86", "87"]
    generator_suffix_width: int = 7
    generator_suffix_min: int = 1000000
    generator_suffix_max: int = 9999999
    generator_max_quantity: int = 10000

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def meta_enabled(self) -> bool:
        """Check if Meta Cloud API is configured"""
        return bool(self.meta_access_token and self.meta_phone_number_id)

    @property
    def pacing_window(self) -> tuple[int, int]:
        return self.dispatch_min_delay_seconds, self.dispatch_max_delay_seconds

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
        ]

        if self.recipient_store == "postgres":
            required_fields.append(("database_url or pghost", self.database_url or self.pghost))

        if self.transport_provider == "meta":
            required_fields.extend([
                ("meta_access_token", self.meta_access_token),
                ("meta_phone_number_id", self.meta_phone_number_id),
            ])

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.is_production and s.transport_provider == "dry_run":
        warnings.append("prod: transport_provider=dry_run (no message will actually be sent).")

    if s.is_production and s.recipient_store == "memory":
        warnings.append("prod: recipient_store=memory (progress is lost on restart).")

    if s.dispatch_min_delay_seconds > s.dispatch_max_delay_seconds:
        warnings.append(
            "dispatch_min_delay_seconds > dispatch_max_delay_seconds "
            "(the bounds will be swapped)."
        )

    if s.dispatch_max_delay_seconds < 1 and s.transport_provider != "dry_run":
        warnings.append(
            "dispatch_max_delay_seconds < 1: unpaced sends are likely to trip abuse detection."
        )

    if s.transport_provider == "meta" and not s.meta_enabled:
        warnings.append("transport_provider=meta but meta_access_token/meta_phone_number_id is missing.")

    if not s.admin_token:
        warnings.append("admin_token is not set (HTTP dispatch commands are disabled).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
