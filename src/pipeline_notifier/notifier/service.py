"""Startup wiring of the notification subsystem.

Resolves the delivery target once and hands the same dispatcher to the
lifecycle observer and the ad-hoc notifier.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pipeline_notifier.config import NotificationConfig
from pipeline_notifier.notifier.client import DeliveryClient
from pipeline_notifier.notifier.composer import MessageComposer
from pipeline_notifier.notifier.dispatcher import NotificationDispatcher
from pipeline_notifier.notifier.notify import Notifier
from pipeline_notifier.notifier.observer import LifecycleObserver
from pipeline_notifier.notifier.targets import (
    DeliveryTarget,
    load_notification_config,
    resolve_target,
)

logger = logging.getLogger(__name__)


@dataclass
class NotificationService:
    """Handles to the wired notification components."""

    config: NotificationConfig
    target: DeliveryTarget | None
    observer: LifecycleObserver
    notifier: Notifier
    dispatcher: NotificationDispatcher | None = None

    @property
    def enabled(self) -> bool:
        """Check if a delivery target is active."""
        return self.target is not None

    async def shutdown(self, timeout: float | None = None) -> None:
        """Give pending notifications a grace period, then stop."""
        if self.dispatcher is not None:
            await self.dispatcher.stop(timeout)


def build_notification_service(
    raw: NotificationConfig | Mapping[str, Any] | None,
    *,
    dry_run: bool = False,
) -> NotificationService:
    """Build the notification subsystem from configuration.

    Args:
        raw: Parsed ``slack`` configuration block, or an existing model.
        dry_run: Log payloads instead of sending them.

    Returns:
        The wired service; disabled (but usable) if no credentials exist.

    Raises:
        ConfigurationError: If credentials or settings are malformed.
    """
    config = load_notification_config(raw)
    target = resolve_target(config)
    composer = MessageComposer()

    dispatcher = None
    if target is not None:
        client = DeliveryClient.from_config(target, config, dry_run=dry_run)
        dispatcher = NotificationDispatcher(
            client,
            queue_size=config.delivery.queue_size,
            shutdown_timeout=config.delivery.shutdown_timeout,
        )
    else:
        logger.debug("Notification service built without a delivery target")

    return NotificationService(
        config=config,
        target=target,
        observer=LifecycleObserver(config, composer, dispatcher),
        notifier=Notifier(composer, dispatcher),
        dispatcher=dispatcher,
    )
