"""Lifecycle event entry points.

The host calls ``on_start``, ``on_complete`` and ``on_error`` from its
own callbacks. Each call composes a message and queues it on the
dispatcher; none of them blocks on network I/O or raises.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from pipeline_notifier.notifier.composer import template_from_config
from pipeline_notifier.notifier.models import EventKind

if TYPE_CHECKING:
    from pipeline_notifier.config import EventConfig, NotificationConfig
    from pipeline_notifier.notifier.composer import MessageComposer
    from pipeline_notifier.notifier.dispatcher import NotificationDispatcher
    from pipeline_notifier.notifier.models import EventContext, FailureInfo, StructuredTemplate

logger = logging.getLogger(__name__)


class LifecycleObserver:
    """Turns host lifecycle events into queued notifications."""

    def __init__(
        self,
        config: NotificationConfig,
        composer: MessageComposer,
        dispatcher: NotificationDispatcher | None,
    ) -> None:
        """Initialize the observer.

        Args:
            config: Validated notification configuration.
            composer: Message composer.
            dispatcher: Dispatcher for the active target, or None when
                notifications are disabled.
        """
        self._composer = composer
        self._dispatcher = dispatcher
        self._events: dict[EventKind, EventConfig] = {
            EventKind.STARTED: config.on_start,
            EventKind.COMPLETED: config.on_complete,
            EventKind.FAILED: config.on_error,
        }
        self._templates: dict[EventKind, StructuredTemplate] = {
            kind: template_from_config(kind, event) for kind, event in self._events.items()
        }

    @property
    def enabled(self) -> bool:
        """Check if a delivery target is active."""
        return self._dispatcher is not None

    def on_start(self, ctx: EventContext) -> bool:
        """Notify that a run has started."""
        return self._emit(EventKind.STARTED, ctx)

    def on_complete(self, ctx: EventContext) -> bool:
        """Notify that a run has completed successfully."""
        return self._emit(EventKind.COMPLETED, ctx)

    def on_error(self, ctx: EventContext, failure: FailureInfo | None = None) -> bool:
        """Notify that a run has failed.

        Args:
            ctx: Snapshot of the failed run.
            failure: Information about the failed step, overriding ``ctx.failure``.
        """
        if failure is not None:
            ctx = replace(ctx, failure=failure)
        return self._emit(EventKind.FAILED, ctx)

    def _emit(self, kind: EventKind, ctx: EventContext) -> bool:
        """Compose and queue a lifecycle notification.

        Returns:
            True if a message was queued.
        """
        if self._dispatcher is None:
            logger.debug("Notifications not configured, skipping %s event", kind.value)
            return False
        if not self._events[kind].enabled:
            logger.debug("Notifications for %s events are disabled", kind.value)
            return False

        try:
            message = self._composer.compose(kind, ctx, self._templates[kind])
        except Exception as e:
            logger.error("Failed to compose %s notification: %s", kind.value, e, exc_info=True)
            return False
        return self._dispatcher.submit(message)
