"""Ad-hoc notifications sent by the host at arbitrary times.

Example:
    ```python
    notifier.notify("Analysis starting for sample S1")
    notifier.notify(
        {
            "message": "Analysis complete",
            "color": "#2EB887",
            "fields": [{"title": "Sample", "value": "S1", "short": True}],
        }
    )
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pipeline_notifier.config import HEX_COLOR_PATTERN
from pipeline_notifier.notifier.errors import ValidationError
from pipeline_notifier.notifier.models import (
    EventContext,
    EventKind,
    Field,
    MessageTemplate,
    StructuredTemplate,
    TextTemplate,
)

if TYPE_CHECKING:
    from pipeline_notifier.notifier.composer import MessageComposer
    from pipeline_notifier.notifier.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotifyOptions:
    """Structured ad-hoc message request.

    Attributes:
        message: Main message text (required).
        color: Optional hex colour of the attachment bar.
        fields: Fields shown below the text.
    """

    message: str
    color: str | None = None
    fields: tuple[Field, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NotifyOptions:
        """Create options from a ``{message, color, fields}`` mapping.

        Raises:
            ValidationError: If the mapping is malformed.
        """
        raw_fields = data.get("fields") or []
        if not isinstance(raw_fields, list | tuple):
            raise ValidationError("'fields' must be a list of {title, value, short} mappings")
        fields = []
        for raw in raw_fields:
            if not isinstance(raw, Mapping):
                raise ValidationError("'fields' must be a list of {title, value, short} mappings")
            fields.append(Field.from_dict(dict(raw)))

        message = data.get("message")
        return cls(
            message="" if message is None else str(message),
            color=data.get("color"),
            fields=tuple(fields),
        )


class Notifier:
    """Facade for ad-hoc notifications.

    A no-op when no delivery target is active. Rejected requests are
    logged, never raised, so they cannot affect the host.
    """

    def __init__(
        self,
        composer: MessageComposer,
        dispatcher: NotificationDispatcher | None,
    ) -> None:
        self._composer = composer
        self._dispatcher = dispatcher

    @property
    def enabled(self) -> bool:
        """Check if a delivery target is active."""
        return self._dispatcher is not None

    def notify(self, message: str | NotifyOptions | Mapping[str, Any]) -> bool:
        """Queue an ad-hoc message.

        Args:
            message: Plain text, or structured options (as NotifyOptions
                or a ``{message, color, fields}`` mapping).

        Returns:
            True if the message was queued for delivery.
        """
        if self._dispatcher is None:
            logger.debug("Notifications not configured, skipping message")
            return False

        try:
            template = _template_for(message)
            composed = self._composer.compose(EventKind.CUSTOM, EventContext(), template)
        except ValidationError as e:
            logger.error("Invalid notification request: %s", e)
            return False
        except Exception as e:
            logger.error("Error building notification: %s", e, exc_info=True)
            return False

        queued = self._dispatcher.submit(composed)
        if queued:
            logger.debug("Queued custom %s message", "text" if composed.plain else "rich")
        return queued


def _template_for(message: str | NotifyOptions | Mapping[str, Any]) -> MessageTemplate:
    """Map an ad-hoc request onto a message template."""
    if isinstance(message, str):
        return TextTemplate(text=message)
    if isinstance(message, Mapping):
        message = NotifyOptions.from_dict(message)
    if not isinstance(message, NotifyOptions):
        raise ValidationError(f"Unsupported message type: {type(message).__name__}")
    if not message.message.strip():
        raise ValidationError("'message' parameter is required for rich messages")
    if message.color is not None and not HEX_COLOR_PATTERN.match(str(message.color)):
        raise ValidationError(f"Invalid color {message.color!r}, expected #RRGGBB")
    return StructuredTemplate(
        text=message.message,
        color=message.color,
        custom_fields=message.fields,
    )
