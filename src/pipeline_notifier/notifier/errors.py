"""Error taxonomy for the notification subsystem.

Only ConfigurationError is allowed to leave the subsystem: it is raised
while resolving credentials at startup. Every other error is caught at
the delivery, dispatch or ad-hoc boundary and ends in a log line.
"""

from __future__ import annotations


class NotifierError(Exception):
    """Base exception for notification errors."""


class ConfigurationError(NotifierError):
    """Raised when notification credentials or settings are malformed."""


class ValidationError(NotifierError):
    """Raised when an ad-hoc message request is malformed."""


class DeliveryFailure(NotifierError):
    """Outcome of a single failed delivery attempt."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RetryableFailure(DeliveryFailure):
    """Transient transport or provider error; the attempt may be retried."""


class FatalFailure(DeliveryFailure):
    """Permanent transport or provider error; retrying cannot help."""
