import os
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.sideshift_affiliate_id:
            fallback = os.getenv("SIDESHIFT_AFFILIATE") or os.getenv("AFFILIATE")
            if fallback:
                object.__setattr__(self, "sideshift_affiliate_id", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    app_base_url: str = Field(default="http://localhost:3000", description="Public base URL of this service")

    # Telegram
    telegram_bot_token: str = Field(default="", description="Telegram bot token")
    telegram_webhook_secret: str = Field(
        default="",
        description="Secret path segment (and header token) expected on webhook deliveries",
    )
    telegram_api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL",
    )

    # SideShift
    sideshift_base_url: str = Field(
        default="https://sideshift.ai/api/v2",
        description="SideShift REST API base URL",
    )
    sideshift_secret: str = Field(default="", description="SideShift private key (x-sideshift-secret)")
    sideshift_affiliate_id: str = Field(
        default="",
        description="Affiliate id attached to quotes and shifts",
        validation_alias=AliasChoices("sideshift_affiliate_id", "SIDESHIFT_AFFILIATE_ID", "AFFILIATE_ID"),
    )
    sideshift_commission_rate: float = Field(
        default=0.0,
        ge=0,
        description="Default commission rate merged into requests that omit one",
        validation_alias=AliasChoices("sideshift_commission_rate", "SIDESHIFT_COMMISSION_RATE", "COMMISSION_RATE"),
    )

    # Timeouts and session policy
    request_timeout_seconds: int = Field(default=30, description="Request timeout")
    session_ttl_seconds: int = Field(
        default=1800,
        ge=0,
        description="Idle lifetime of a top-up session (0 disables expiry)",
    )

    @property
    def has_bot_token(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def has_webhook_secret(self) -> bool:
        return bool(self.telegram_webhook_secret)

    @property
    def has_sideshift_secret(self) -> bool:
        return bool(self.sideshift_secret)

    @property
    def webhook_url(self) -> str | None:
        if not (self.app_base_url and self.telegram_webhook_secret):
            return None
        return f"{self.app_base_url.rstrip('/')}/webhook/telegram/{self.telegram_webhook_secret}"


# Global settings instance
settings = Settings()
