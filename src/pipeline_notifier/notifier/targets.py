"""Delivery target resolution.

Picks the single active delivery target out of the two mutually
exclusive credential schemes:

1. Bot: token + channel ID, posted through ``chat.postMessage``
2. Webhook: a single incoming-webhook URL

Bot takes precedence when both are configured. Missing credentials
disable notifications silently; malformed credentials raise
ConfigurationError so the host can fail at startup.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import pydantic

from pipeline_notifier.config import NotificationConfig
from pipeline_notifier.notifier.errors import ConfigurationError

logger = logging.getLogger(__name__)

BOT_API_URL = "https://slack.com/api/chat.postMessage"
WEBHOOK_HOST = "hooks.slack.com"

BOT_TOKEN_PATTERN = re.compile(r"^xox[bp]-")
CHANNEL_ID_PATTERN = re.compile(r"^[A-Z0-9]+$")


@dataclass(frozen=True)
class BotTarget:
    """Bot token target posting to a channel ID."""

    token: str
    destination: str
    endpoint: str = BOT_API_URL

    def __repr__(self) -> str:
        return f"BotTarget(destination={self.destination!r}, token={self.token[:10]!r}...)"


@dataclass(frozen=True)
class WebhookTarget:
    """Incoming webhook target."""

    endpoint: str

    def __repr__(self) -> str:
        return "WebhookTarget(endpoint='https://hooks.slack.com/***')"


DeliveryTarget = BotTarget | WebhookTarget


def load_notification_config(
    raw: NotificationConfig | Mapping[str, Any] | None,
) -> NotificationConfig:
    """Validate a raw configuration tree.

    Args:
        raw: Parsed ``slack`` configuration block, or an existing model.

    Returns:
        The validated configuration tree.

    Raises:
        ConfigurationError: If the tree has invalid values.
    """
    if isinstance(raw, NotificationConfig):
        return raw
    try:
        return NotificationConfig.model_validate(dict(raw or {}))
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid notification configuration: {problems}") from e


def resolve_target(
    raw: NotificationConfig | Mapping[str, Any] | None,
) -> DeliveryTarget | None:
    """Resolve the active delivery target from configuration.

    Args:
        raw: Parsed ``slack`` configuration block, or an existing model.

    Returns:
        The resolved target, or None if notifications are disabled or
        no credentials are configured.

    Raises:
        ConfigurationError: If the selected credentials are malformed.
    """
    config = load_notification_config(raw)

    if not config.enabled:
        logger.debug("Notifications explicitly disabled in configuration")
        return None

    token = config.bot.token.get_secret_value().strip() if config.bot.token else ""
    destination = (config.bot.destination or "").strip()
    webhook_url = config.webhook.url.get_secret_value().strip() if config.webhook.url else ""

    if token and destination:
        if not BOT_TOKEN_PATTERN.match(token):
            raise ConfigurationError(
                "Invalid Slack bot token format. Expected token starting with "
                f"'xoxb-' or 'xoxp-', got: {token[:10]}..."
            )
        if not CHANNEL_ID_PATTERN.match(destination):
            raise ConfigurationError(
                "Invalid Slack channel ID format. Expected alphanumeric channel ID "
                f"(e.g. 'C1234567890'), got: {destination}. Channel names such as "
                "'#my-channel' are not supported, use the channel ID instead."
            )
        logger.info("Notifications enabled with bot token (channel: %s)", destination)
        return BotTarget(token=token, destination=destination)

    if webhook_url:
        _validate_webhook_url(webhook_url)
        logger.info("Notifications enabled with incoming webhook")
        return WebhookTarget(endpoint=webhook_url)

    logger.debug("No bot or webhook credentials configured, notifications disabled")
    return None


def _validate_webhook_url(url: str) -> None:
    """Check scheme and host of an incoming webhook URL."""
    parts = urlsplit(url)
    if parts.scheme != "https":
        raise ConfigurationError("Slack webhook URL must use https")
    if (parts.hostname or "").lower() != WEBHOOK_HOST:
        raise ConfigurationError(
            f"Slack webhook URL must point at {WEBHOOK_HOST}, got: {parts.hostname}"
        )
