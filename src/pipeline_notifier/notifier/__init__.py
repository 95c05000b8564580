"""Notification layer - Slack delivery for lifecycle events and ad-hoc messages."""

from pipeline_notifier.notifier.client import DeliveryClient, ErrorLog, RateLimiter
from pipeline_notifier.notifier.composer import MessageComposer
from pipeline_notifier.notifier.dispatcher import NotificationDispatcher
from pipeline_notifier.notifier.errors import (
    ConfigurationError,
    FatalFailure,
    NotifierError,
    RetryableFailure,
    ValidationError,
)
from pipeline_notifier.notifier.models import (
    EventContext,
    EventKind,
    FailureInfo,
    Field,
    Message,
    StructuredTemplate,
    TaskStats,
    TextTemplate,
)
from pipeline_notifier.notifier.notify import Notifier, NotifyOptions
from pipeline_notifier.notifier.observer import LifecycleObserver
from pipeline_notifier.notifier.service import NotificationService, build_notification_service
from pipeline_notifier.notifier.targets import BotTarget, WebhookTarget, resolve_target

__all__ = [
    "BotTarget",
    "ConfigurationError",
    "DeliveryClient",
    "ErrorLog",
    "EventContext",
    "EventKind",
    "FailureInfo",
    "FatalFailure",
    "Field",
    "LifecycleObserver",
    "Message",
    "MessageComposer",
    "NotificationDispatcher",
    "NotificationService",
    "Notifier",
    "NotifierError",
    "NotifyOptions",
    "RateLimiter",
    "RetryableFailure",
    "StructuredTemplate",
    "TaskStats",
    "TextTemplate",
    "ValidationError",
    "WebhookTarget",
    "build_notification_service",
    "resolve_target",
]
