"""Configuration management with Pydantic Settings.

This module models the notification configuration tree and loads it,
together with application settings, from environment variables and
``.env`` files.

The tree accepts both snake_case keys and the camelCase keys used by
pipeline configuration files (``onStart``, ``includeCommandLine``, ...),
so an already-parsed configuration block can be passed straight to
``NotificationConfig.model_validate``.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class _TreeModel(BaseModel):
    """Base for configuration tree nodes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class BotConfig(_TreeModel):
    """Bot token authentication settings."""

    token: SecretStr | None = Field(default=None, description="Bot token (xoxb-/xoxp-)")
    destination: str | None = Field(
        default=None,
        validation_alias=AliasChoices("destination", "channel"),
        description="Channel ID messages are posted to",
    )


class WebhookConfig(_TreeModel):
    """Incoming webhook settings."""

    url: SecretStr | None = Field(default=None, description="Incoming webhook URL")


class CustomFieldConfig(_TreeModel):
    """A user-defined field attached to a structured message."""

    title: str
    value: str
    short: bool = Field(default=False, validation_alias=AliasChoices("short", "compact"))

    @field_validator("title", "value", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        """Accept numbers and other scalars as field text."""
        return "" if v is None else str(v)


class StructuredMessageConfig(_TreeModel):
    """Structured customization of an event's message."""

    text: str | None = None
    color: str | None = None
    include_fields: list[str] = Field(default_factory=list)
    custom_fields: list[CustomFieldConfig] = Field(default_factory=list)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        """Validate hex colour format."""
        if v is not None and not HEX_COLOR_PATTERN.match(v):
            raise ValueError("color must be a hex colour such as #2EB887")
        return v


class EventConfig(_TreeModel):
    """Settings for one lifecycle event kind."""

    enabled: bool = True
    message: str | StructuredMessageConfig | None = None
    include_command_line: bool = True
    include_resource_usage: bool = True


class DeliveryConfig(_TreeModel):
    """Tuning of the delivery client."""

    rate_limit_per_second: float = Field(default=1.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=10.0, ge=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=5.0, gt=0)
    queue_size: int = Field(default=100, ge=1)
    shutdown_timeout: float = Field(default=30.0, ge=0)


class NotificationConfig(_TreeModel):
    """The resolved ``slack`` configuration tree."""

    enabled: bool = True
    bot: BotConfig = Field(default_factory=BotConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    on_start: EventConfig = Field(default_factory=EventConfig)
    on_complete: EventConfig = Field(default_factory=EventConfig)
    on_error: EventConfig = Field(default_factory=EventConfig)
    username: str | None = None
    icon_emoji: str | None = None
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)

    def redacted_summary(self) -> dict[str, str]:
        """Get a summary of the tree with secrets redacted."""
        token = self.bot.token.get_secret_value() if self.bot.token else ""
        url = self.webhook.url.get_secret_value() if self.webhook.url else ""
        return {
            "enabled": str(self.enabled),
            "bot_token": f"{token[:10]}..." if token else "(not set)",
            "bot_destination": self.bot.destination or "(not set)",
            "webhook_url": self._redact_url(url) if url else "(not set)",
            "on_start": str(self.on_start.enabled),
            "on_complete": str(self.on_complete.enabled),
            "on_error": str(self.on_error.enabled),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Keep scheme and host of a webhook URL, hide its secret path."""
        if "://" not in url:
            return "***"
        scheme, rest = url.split("://", 1)
        host = rest.split("/", 1)[0]
        return f"{scheme}://{host}/***"


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files. Nested keys of the notification tree are joined with
    ``__``.

    Example:
        ```python
        # SLACK__BOT__TOKEN=xoxb-... SLACK__BOT__CHANNEL=C0123456789
        from pipeline_notifier.config import get_settings

        settings = get_settings()
        print(settings.slack.bot.destination)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    slack: NotificationConfig = Field(default_factory=NotificationConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log notifications instead of sending them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Raises:
        pydantic.ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
