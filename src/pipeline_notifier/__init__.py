"""Pipeline Notifier - Slack notifications for pipeline lifecycle events."""

__version__ = "0.1.0"
