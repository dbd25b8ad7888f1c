"""
Configuration management with Pydantic settings.
Loads bridge credentials and relay tuning from the environment or a .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation and type safety."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telegram Bot API Configuration
    bot_token: str = Field(..., description="Bot token from @BotFather")
    telegram_channel_id: Optional[str] = Field(
        default=None,
        description="Only relay posts from this channel id (all channels when unset)"
    )

    # WhatsApp destination
    whatsapp_chat_id: Optional[str] = Field(
        default=None,
        description="Destination chat id, e.g. 15551234567@c.us or ...@g.us"
    )
    whatsapp_invite_code: Optional[str] = Field(
        default=None,
        description="Group invite code used once at startup to resolve the chat id"
    )

    # WhatsApp HTTP API (WAHA) Configuration
    waha_base_url: str = Field(default="http://localhost:3000")
    waha_session: str = Field(default="default")
    waha_api_key: Optional[str] = Field(default=None)
    session_poll_interval: float = Field(default=15.0, ge=1.0, le=600.0)
    request_timeout: float = Field(default=60.0, ge=1.0, le=600.0)

    # Relay Configuration
    media_group_window_seconds: float = Field(default=60.0, gt=0, le=3600)
    relay_header: bool = Field(default=True, description="Prefix relayed text with the channel title")

    # Logging Configuration
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    debug_mode: bool = Field(default=False)
    log_file: Optional[str] = Field(default="bridge.log")

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lower-case level names from the environment."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('telegram_channel_id', 'whatsapp_chat_id', 'whatsapp_invite_code', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        """Treat empty environment values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator('whatsapp_invite_code')
    @classmethod
    def strip_invite_link(cls, v):
        """Allow a full chat.whatsapp.com link in place of the bare code."""
        if v and "/" in v:
            return v.rstrip("/").rsplit("/", 1)[-1]
        return v

    @field_validator('waha_base_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @model_validator(mode='after')
    def require_destination(self):
        """A destination chat id or an invite code to derive it from is required."""
        if not self.whatsapp_chat_id and not self.whatsapp_invite_code:
            raise ValueError("Set WHATSAPP_CHAT_ID or WHATSAPP_INVITE_CODE")
        return self

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug_mode else self.log_level


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
