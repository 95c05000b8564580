"""Message composer for lifecycle and ad-hoc notifications.

This module turns an event kind, the event's context and a message
template into a normalized, target-agnostic Message. Composition never
fails on missing context: placeholders are substituted instead. The only
error it raises is ValidationError for an empty ad-hoc message.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import timedelta

from pipeline_notifier.config import EventConfig, StructuredMessageConfig
from pipeline_notifier.notifier.errors import ValidationError
from pipeline_notifier.notifier.models import (
    EventContext,
    EventKind,
    Field,
    FieldKey,
    Message,
    MessageTemplate,
    StructuredTemplate,
    TaskStats,
    TextTemplate,
)

logger = logging.getLogger(__name__)

# Attachment colours
COLOR_INFO = "#3AA3E3"
COLOR_SUCCESS = "#2EB887"
COLOR_ERROR = "#A30301"

# Size limits of the chat API
MAX_TITLE_LENGTH = 50
MAX_VALUE_LENGTH = 2000
MAX_MESSAGE_BYTES = 4000
ERROR_TEXT_BUDGET = 500
FALLBACK_LENGTH = 150
MAX_AUTHOR_LENGTH = 100
TRUNCATION_MARKER = "..."

UNKNOWN_WORKFLOW = "Unknown workflow"
UNKNOWN_RUN = "Unknown run"
UNKNOWN_ERROR = "Unknown error"

DEFAULT_TEXT = {
    EventKind.STARTED: "🚀 *Pipeline started*",
    EventKind.COMPLETED: "✅ *Pipeline completed successfully*",
    EventKind.FAILED: "❌ *Pipeline failed*",
    EventKind.CUSTOM: "*Pipeline event*",
}

DEFAULT_COLOR = {
    EventKind.STARTED: COLOR_INFO,
    EventKind.COMPLETED: COLOR_SUCCESS,
    EventKind.FAILED: COLOR_ERROR,
    EventKind.CUSTOM: COLOR_INFO,
}

STATUS_TEXT = {
    EventKind.STARTED: "🚀 Running",
    EventKind.COMPLETED: "✅ Success",
    EventKind.FAILED: "❌ Failed",
}

FOOTER_TEXT = {
    EventKind.STARTED: "Started",
    EventKind.COMPLETED: "Completed",
    EventKind.FAILED: "Failed",
}

# Built-in fields each event kind may surface
ALLOWED_FIELDS: dict[EventKind, frozenset[FieldKey]] = {
    EventKind.STARTED: frozenset(
        {FieldKey.RUN_NAME, FieldKey.STATUS, FieldKey.COMMAND_LINE, FieldKey.WORK_DIR}
    ),
    EventKind.COMPLETED: frozenset(
        {
            FieldKey.RUN_NAME,
            FieldKey.DURATION,
            FieldKey.STATUS,
            FieldKey.COMMAND_LINE,
            FieldKey.TASKS,
        }
    ),
    EventKind.FAILED: frozenset(
        {
            FieldKey.RUN_NAME,
            FieldKey.DURATION,
            FieldKey.STATUS,
            FieldKey.COMMAND_LINE,
            FieldKey.ERROR_MESSAGE,
            FieldKey.FAILED_PROCESS,
        }
    ),
    EventKind.CUSTOM: frozenset(),
}


def truncate_text(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Truncate text to at most ``limit`` characters, ending with a marker."""
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return marker[:limit]
    return text[: limit - len(marker)] + marker


def format_duration(duration: timedelta | None) -> str:
    """Format a duration as ``1d 2h 3m 4s``, or milliseconds below a second."""
    if duration is None:
        return "0s"
    total_ms = int(duration.total_seconds() * 1000)
    if total_ms <= 0:
        return "0s"
    if total_ms < 1000:
        return f"{total_ms}ms"

    seconds = total_ms // 1000
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def format_task_stats(stats: TaskStats | None) -> str | None:
    """Join non-zero task counters into a comma-separated summary."""
    if stats is None:
        return None
    parts = []
    if stats.cached:
        parts.append(f"Cached: {stats.cached}")
    if stats.succeeded:
        parts.append(f"Completed: {stats.succeeded}")
    if stats.failed:
        parts.append(f"Failed: {stats.failed}")
    return ", ".join(parts) or None


def default_fields(
    kind: EventKind,
    *,
    include_command_line: bool = True,
    include_resource_usage: bool = True,
) -> tuple[str, ...]:
    """Get the built-in fields shown when an event has no field list."""
    keys: list[FieldKey] = []
    if kind is EventKind.STARTED:
        keys = [FieldKey.RUN_NAME]
        if include_command_line:
            keys.append(FieldKey.COMMAND_LINE)
        keys.append(FieldKey.WORK_DIR)
    elif kind is EventKind.COMPLETED:
        keys = [FieldKey.RUN_NAME, FieldKey.DURATION, FieldKey.STATUS]
        if include_resource_usage:
            keys.append(FieldKey.TASKS)
        if include_command_line:
            keys.append(FieldKey.COMMAND_LINE)
    elif kind is EventKind.FAILED:
        keys = [
            FieldKey.RUN_NAME,
            FieldKey.DURATION,
            FieldKey.STATUS,
            FieldKey.ERROR_MESSAGE,
            FieldKey.FAILED_PROCESS,
        ]
        if include_command_line:
            keys.append(FieldKey.COMMAND_LINE)
    return tuple(key.value for key in keys)


def template_from_config(kind: EventKind, config: EventConfig) -> StructuredTemplate:
    """Build the message template for an event kind from its configuration.

    A plain string replaces the body text only; the standard fields
    selected by the include flags are kept. A structured object is
    used exactly as written.
    """
    message = config.message
    if isinstance(message, StructuredMessageConfig):
        return StructuredTemplate(
            text=message.text,
            color=message.color,
            include_fields=tuple(message.include_fields),
            custom_fields=tuple(
                Field(title=f.title, value=f.value, compact=f.short)
                for f in message.custom_fields
            ),
        )
    return StructuredTemplate(
        text=message or None,
        include_fields=default_fields(
            kind,
            include_command_line=config.include_command_line,
            include_resource_usage=config.include_resource_usage,
        ),
    )


class MessageComposer:
    """Composes normalized messages from events and templates.

    Composition is deterministic: the same kind, context and template
    always give equal messages (the timestamp is not compared).
    """

    def __init__(
        self,
        *,
        error_budget: int = ERROR_TEXT_BUDGET,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
    ) -> None:
        """Initialize the composer.

        Args:
            error_budget: Maximum length of the error message field value.
            max_message_bytes: Size limit of a serialized message.
        """
        self.error_budget = error_budget
        self.max_message_bytes = max_message_bytes

    def compose(
        self,
        kind: EventKind,
        ctx: EventContext | None = None,
        template: MessageTemplate | None = None,
    ) -> Message:
        """Compose a message for an event.

        Args:
            kind: The event kind.
            ctx: Snapshot of the triggering run.
            template: How to render the message; None uses the defaults.

        Returns:
            The composed message.

        Raises:
            ValidationError: If a custom message has no body text.
        """
        ctx = ctx or EventContext()

        fields: list[Field] = []
        color = DEFAULT_COLOR[kind]
        if isinstance(template, StructuredTemplate):
            body = template.text
            color = template.color or color
            fields.extend(self._builtin_fields(kind, ctx, template.include_fields))
            fields.extend(_clip_field(f) for f in template.custom_fields)
        elif isinstance(template, TextTemplate):
            body = template.text
        else:
            body = None

        if kind is EventKind.CUSTOM:
            if not body or not body.strip():
                raise ValidationError("Message text is required")
            message = Message(
                body_text=body,
                color=color,
                fields=tuple(fields),
                fallback=truncate_text(body, FALLBACK_LENGTH),
                plain=isinstance(template, TextTemplate),
            )
        else:
            workflow = ctx.workflow_name or UNKNOWN_WORKFLOW
            message = Message(
                body_text=body or DEFAULT_TEXT[kind],
                color=color,
                fields=tuple(fields),
                fallback=truncate_text(f"Pipeline {workflow} {kind.value}", FALLBACK_LENGTH),
                author=truncate_text(workflow, MAX_AUTHOR_LENGTH),
                footer=FOOTER_TEXT[kind],
            )

        return self._fit(message)

    def _builtin_fields(
        self, kind: EventKind, ctx: EventContext, keys: tuple[str, ...]
    ) -> list[Field]:
        """Resolve the requested built-in fields, skipping illegal keys."""
        allowed = ALLOWED_FIELDS[kind]
        seen: set[FieldKey] = set()
        fields = []
        for raw_key in keys:
            try:
                key = FieldKey(raw_key)
            except ValueError:
                logger.debug("Ignoring unknown field %r", raw_key)
                continue
            if key not in allowed or key in seen:
                continue
            seen.add(key)
            built = self._builtin_field(key, kind, ctx)
            if built is not None:
                fields.append(_clip_field(built))
        return fields

    def _builtin_field(self, key: FieldKey, kind: EventKind, ctx: EventContext) -> Field | None:
        """Extract and format a single built-in field."""
        if key is FieldKey.RUN_NAME:
            run_name = truncate_text(ctx.run_name or UNKNOWN_RUN, MAX_VALUE_LENGTH)
            return Field("Run Name", run_name, compact=True)
        if key is FieldKey.DURATION:
            return Field("Duration", format_duration(ctx.duration), compact=True)
        if key is FieldKey.STATUS:
            return Field("Status", STATUS_TEXT[kind], compact=True)
        if key is FieldKey.COMMAND_LINE:
            if not ctx.command_line:
                return None
            command = truncate_text(ctx.command_line, MAX_VALUE_LENGTH - 6)
            return Field("Command Line", f"```{command}```")
        if key is FieldKey.WORK_DIR:
            if not ctx.work_dir:
                return None
            work_dir = truncate_text(ctx.work_dir, MAX_VALUE_LENGTH - 2)
            return Field("Work Directory", f"`{work_dir}`")
        if key is FieldKey.TASKS:
            summary = format_task_stats(ctx.stats)
            return Field("Tasks", summary, compact=True) if summary else None
        if key is FieldKey.ERROR_MESSAGE:
            error = ctx.error_message or UNKNOWN_ERROR
            return Field("Error Message", truncate_text(error, self.error_budget))
        if key is FieldKey.FAILED_PROCESS:
            if ctx.failure is None or not ctx.failure.process:
                return None
            process = truncate_text(ctx.failure.process, MAX_VALUE_LENGTH - 2)
            return Field("Failed Process", f"`{process}`", compact=True)
        return None

    def _fit(self, message: Message) -> Message:
        """Shrink a message until its wire body fits the API size limit."""
        return fit_message(message, lambda m: m.encoded_size, self.max_message_bytes)


def fit_message(message: Message, measure: Callable[[Message], int], limit: int) -> Message:
    """Shrink a message until ``measure(message)`` is at most ``limit`` bytes.

    Trailing fields are dropped first; then the body, the fallback and the
    author are truncated in turn.

    Args:
        message: Message to shrink.
        measure: Size in bytes of the body the message serializes to.
        limit: Maximum size in bytes.

    Returns:
        The message, trimmed if it was too large.
    """
    size = measure(message)
    if size <= limit:
        return message

    logger.warning("Message of %d bytes exceeds %d byte limit, trimming", size, limit)
    fields = list(message.fields)
    while fields and measure(message) > limit:
        fields.pop()
        message = replace(message, fields=tuple(fields))

    for name in ("body_text", "fallback", "author"):
        message = _shrink_text(message, name, measure, limit)

    size = measure(message)
    if size > limit:
        logger.warning("Message still %d bytes after trimming", size)
    return message


def _shrink_text(
    message: Message, name: str, measure: Callable[[Message], int], limit: int
) -> Message:
    """Truncate one text attribute of a message until it fits or is minimal."""
    min_length = len(TRUNCATION_MARKER) + 1
    while True:
        overflow = measure(message) - limit
        text = getattr(message, name) or ""
        if overflow <= 0 or len(text) <= min_length:
            return message
        length = max(len(text) - overflow, min_length)
        message = replace(message, **{name: truncate_text(text, length)})


def _clip_field(field: Field) -> Field:
    """Clip a caller field to the API's title and value limits."""
    title = truncate_text(field.title, MAX_TITLE_LENGTH)
    value = truncate_text(field.value, MAX_VALUE_LENGTH)
    if title == field.title and value == field.value:
        return field
    return Field(title=title, value=value, compact=field.compact)
