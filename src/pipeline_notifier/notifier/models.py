"""Data models for the notifier module."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


def format_timestamp(timestamp: datetime) -> str:
    """Format a timestamp for display in a message footer."""
    return timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def payload_size(payload: dict[str, Any]) -> int:
    """Size in bytes of a JSON body, measured with the default (widest) encoding."""
    return len(json.dumps(payload).encode("utf-8"))


class EventKind(str, Enum):
    """Category of a lifecycle event or ad-hoc message."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CUSTOM = "custom"


class FieldKey(str, Enum):
    """Keys of the built-in fields a template may ask for."""

    RUN_NAME = "runName"
    DURATION = "duration"
    STATUS = "status"
    COMMAND_LINE = "commandLine"
    WORK_DIR = "workDir"
    TASKS = "tasks"
    ERROR_MESSAGE = "errorMessage"
    FAILED_PROCESS = "failedProcess"


@dataclass(frozen=True)
class TaskStats:
    """Aggregate task counters for a run."""

    succeeded: int = 0
    cached: int = 0
    failed: int = 0


@dataclass(frozen=True)
class FailureInfo:
    """Details of the step that made a run fail."""

    process: str | None = None
    exit_status: int | None = None


@dataclass(frozen=True)
class EventContext:
    """Read-only snapshot of the run that triggered an event.

    Every attribute is optional: the composer substitutes placeholders
    for anything the host could not supply.

    Attributes:
        run_id: Unique identifier of the run.
        run_name: Human-friendly run name.
        workflow_name: Name of the script or workflow being run.
        command_line: Command line used to launch the run.
        work_dir: Working directory of the run.
        start_time: When the run started.
        duration: Elapsed wall time of the run.
        stats: Aggregate task counters.
        error_message: Error text for failed runs.
        failure: Information about the failed step, if known.
    """

    run_id: str | None = None
    run_name: str | None = None
    workflow_name: str | None = None
    command_line: str | None = None
    work_dir: str | None = None
    start_time: datetime | None = None
    duration: timedelta | None = None
    stats: TaskStats | None = None
    error_message: str | None = None
    failure: FailureInfo | None = None


@dataclass(frozen=True)
class Field:
    """A title/value pair rendered in a message's structured body.

    ``compact`` is a rendering hint only: compact fields are laid out
    side by side by the chat client.
    """

    title: str
    value: str
    compact: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Field:
        """Create a Field from a ``{title, value, short}`` mapping."""
        compact = data.get("short", data.get("compact", False))
        return cls(
            title=_text(data.get("title")),
            value=_text(data.get("value")),
            compact=bool(compact),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire representation."""
        return {"title": self.title, "value": self.value, "short": self.compact}


@dataclass(frozen=True)
class TextTemplate:
    """Template whose text is used verbatim as the message body."""

    text: str


@dataclass(frozen=True)
class StructuredTemplate:
    """Template customizing body, colour and fields of a message.

    Attributes:
        text: Body text, or None for the per-kind default.
        color: Hex colour (``#RRGGBB``), or None for the per-kind default.
        include_fields: Built-in field keys to surface, in display order.
        custom_fields: Caller fields appended after the built-in ones.
    """

    text: str | None = None
    color: str | None = None
    include_fields: tuple[str, ...] = ()
    custom_fields: tuple[Field, ...] = ()


MessageTemplate = TextTemplate | StructuredTemplate


@dataclass(frozen=True)
class Message:
    """Normalized, target-agnostic message produced by the composer.

    Attributes:
        body_text: Main message text in the chat provider's markup.
        color: Hex colour of the attachment bar.
        fields: Ordered structured fields.
        fallback: Short summary shown in notifications.
        author: Workflow the message is about, if any.
        footer: Footer label; rendered with the timestamp.
        plain: True for body-only messages sent without an attachment.
        timestamp: Time of composition, excluded from equality.
    """

    body_text: str
    color: str
    fields: tuple[Field, ...] = ()
    fallback: str = ""
    author: str | None = None
    footer: str | None = None
    plain: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the target-agnostic wire body.

        Plain messages carry only their text; all others are sent as a
        single attachment.
        """
        if self.plain:
            return {"text": self.body_text}

        attachment: dict[str, Any] = {
            "fallback": self.fallback or self.body_text,
            "color": self.color,
            "text": self.body_text,
            "fields": [f.to_dict() for f in self.fields],
            "ts": int(self.timestamp.timestamp()),
        }
        if self.author:
            attachment["author_name"] = self.author
        if self.footer:
            attachment["footer"] = f"{self.footer} at {format_timestamp(self.timestamp)}"
        return {"text": self.fallback or self.body_text, "attachments": [attachment]}

    @property
    def encoded_size(self) -> int:
        """Size in bytes of the serialized wire body, before target metadata."""
        return payload_size(self.to_payload())


@dataclass
class DeliveryAttempt:
    """Book-keeping for one delivery call; discarded after the outcome."""

    message: Message
    attempt_number: int = 1
    next_delay: float = 0.0


def _text(value: Any) -> str:
    return "" if value is None else str(value)
