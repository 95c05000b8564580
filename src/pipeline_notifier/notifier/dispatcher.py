"""Background dispatch of notifications.

Lifecycle callbacks and ad-hoc calls must never wait on the network.
They hand composed messages to a NotificationDispatcher, whose single
worker task feeds them to the DeliveryClient one at a time.

Usage:
    ```python
    dispatcher = NotificationDispatcher(client)
    dispatcher.submit(message)  # returns immediately
    ...
    await dispatcher.stop()  # flush with a grace period
    ```
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pipeline_notifier.notifier.client import DeliveryClient
    from pipeline_notifier.notifier.models import Message

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100
DEFAULT_SHUTDOWN_TIMEOUT = 30.0


class NotificationDispatcher:
    """Bounded queue drained by a single delivery worker.

    ``submit`` must be called from the event loop that owns the
    dispatcher; the worker starts lazily on the first submission.
    """

    def __init__(
        self,
        client: DeliveryClient,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            client: Delivery client used by the worker.
            queue_size: Maximum number of pending messages.
            shutdown_timeout: Default grace period for ``stop``.
        """
        self.client = client
        self.shutdown_timeout = shutdown_timeout

        self._queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def is_running(self) -> bool:
        """Check if the worker task is alive."""
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        """Number of messages waiting for delivery."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker task if it is not running."""
        if self.is_running:
            return
        self._stopping = False
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="notification-dispatcher"
        )
        logger.debug("Notification dispatcher started")

    def submit(self, message: Message) -> bool:
        """Queue a message for delivery without waiting.

        Returns:
            True if the message was queued, False if it was dropped.
        """
        if self._stopping:
            logger.warning("Notification dispatcher is stopping, message dropped")
            return False
        try:
            self.start()
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Notification queue full (%d pending), message dropped", self._queue.qsize()
            )
            return False
        except RuntimeError as e:
            logger.error("Cannot queue notification outside an event loop: %s", e)
            return False
        return True

    async def _run(self) -> None:
        """Deliver queued messages one at a time."""
        while True:
            message = await self._queue.get()
            try:
                await self.client.deliver(message)
            except Exception as e:
                logger.error("Notification worker error: %s", e, exc_info=True)
            finally:
                self._queue.task_done()

    async def stop(self, timeout: float | None = None) -> None:
        """Flush pending messages, then stop the worker.

        Args:
            timeout: Grace period in seconds; defaults to ``shutdown_timeout``.
        """
        self._stopping = True
        if self._worker is None:
            return

        grace = self.shutdown_timeout if timeout is None else timeout
        if self.is_running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=grace)
            except TimeoutError:
                logger.warning(
                    "Shutdown grace period of %.1fs expired, abandoning %d pending notification(s)",
                    grace,
                    self._queue.qsize(),
                )

        self._worker.cancel()
        with suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.debug("Notification dispatcher stopped")
