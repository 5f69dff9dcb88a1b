"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fetchses.core.exceptions import ConfigurationError


class FetchSesSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="FETCHSES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AWS / S3 mailbox
    aws_profile: str | None = None
    aws_region: str | None = None
    bucket: str = ""
    new_mail_prefix: str = "incoming"
    error_prefix: str = "undeliverable"
    kms_key_id: str = ""

    # Delivery
    domain: str = ""
    smtp_server: str = "localhost:25"
    smtp_timeout_seconds: float = 30.0
    error_path: Path = Path("/var/spool/fetchses/undelivered")

    # Alerts
    alert_method: Literal["smtp", "script", "none"] = "smtp"
    alert_to: list[str] = []
    alert_from: str = ""
    alert_script: Path | None = None
    alert_timeout_seconds: float = 60.0
    virus_alert_body: str = ""

    # Logging
    log_console: bool = True
    syslog_address: str = "/dev/log"
    syslog_socktype: Literal["udp", "tcp"] = "udp"
    log_level: str = "INFO"

    @field_validator("new_mail_prefix", "error_prefix")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        return value.strip("/")

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        return value.strip().lower()

    def require_complete(self) -> None:
        """Raise ConfigurationError when settings needed for a pass are missing."""
        missing = [name for name in ("bucket", "domain") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        if self.alert_method == "script" and self.alert_script is None:
            raise ConfigurationError("alert_method 'script' requires alert_script")
