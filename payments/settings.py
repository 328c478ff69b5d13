"""Application configuration using pydantic-settings."""
from __future__ import annotations

from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env``."""

    organisation_name: str = Field(
        "Leatherhead & District Local History Society",
        description="Display name used in page titles and invoices",
    )
    http: bool = Field(False, description="Serve plaintext HTTP instead of HTTPS")
    run_user: str | None = Field(
        None, description="Non-root user to drop to after reading TLS material"
    )
    tls_certificate_file: Path | None = Field(None, description="TLS certificate chain")
    tls_certificate_key_file: Path | None = Field(None, description="TLS private key")

    enable_other_member_types: bool = Field(
        False, description="Enable associate members and friends of the museum"
    )
    enable_giftaid: bool = Field(False, description="Enable the Gift Aid tickbox")
    email_address_for_questions: str = Field(
        "membership@example.org", description="Contact shown on the success page"
    )
    email_address_for_failures: str = Field(
        "treasurer@example.org", description="Contact shown after a failed paid checkout"
    )

    ordinary_member_fee: float = Field(24.0, ge=0, description="Ordinary member fee in GBP")
    associate_member_fee: float = Field(6.0, ge=0, description="Associate member fee in GBP")
    friend_fee: float = Field(5.0, ge=0, description="Friend of the museum fee in GBP")

    log_level: str = Field("INFO", description="Log level")
    log_dir: Path = Field(Path("logs"), description="Directory for the daily log files")
    log_leader: str = Field("payments", description="Leading part of each log file name")

    host: str = Field("0.0.0.0", description="Host for the HTTP server")
    port: int = Field(8443, description="Port for the HTTP server")
    app_timezone: str = Field(
        "Europe/London", description="Timezone anchoring the membership year"
    )
    shutdown_at_midnight: bool = Field(
        True, description="Stop the server at local midnight so the supervisor restarts it"
    )

    database_url: str = Field(
        "sqlite:///./membership.db", description="SQLAlchemy database URL"
    )
    stripe_secret_key: str = Field("", description="Stripe API secret key")
    stripe_api_base: str = Field(
        "https://api.stripe.com", description="Base URL of the Stripe REST API"
    )
    http_timeout_seconds: float = Field(15.0, description="HTTP client timeout")

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @computed_field
    @property
    def scheme(self) -> str:
        return "http" if self.http else "https"


settings = Settings()
