"""Tests for the background notification dispatcher."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from pipeline_notifier.notifier.dispatcher import NotificationDispatcher
from pipeline_notifier.notifier.models import Message

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def message() -> Message:
    """Create a sample message."""
    return Message(body_text="hello", color="#3AA3E3", plain=True)


@pytest.fixture
def mock_client() -> MagicMock:
    """Create a mock delivery client that always succeeds."""
    client = MagicMock()
    client.deliver = AsyncMock(return_value=True)
    return client


# ============================================================================
# NotificationDispatcher Tests
# ============================================================================


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    def test_init(self, mock_client: MagicMock) -> None:
        """Test dispatcher initialization."""
        dispatcher = NotificationDispatcher(mock_client, queue_size=5, shutdown_timeout=2.0)

        assert dispatcher.client is mock_client
        assert dispatcher.shutdown_timeout == 2.0
        assert dispatcher.is_running is False
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_submit_delivers_in_background(
        self, mock_client: MagicMock, message: Message
    ) -> None:
        """Submitted messages are delivered by the worker."""
        dispatcher = NotificationDispatcher(mock_client)

        assert dispatcher.submit(message) is True
        assert dispatcher.is_running is True

        await dispatcher.stop()

        mock_client.deliver.assert_awaited_once_with(message)
        assert dispatcher.is_running is False

    @pytest.mark.asyncio
    async def test_submit_does_not_wait_for_delivery(self, message: Message) -> None:
        """submit returns while delivery is still in flight."""
        release = asyncio.Event()

        async def slow_deliver(_: Message) -> bool:
            await release.wait()
            return True

        client = MagicMock()
        client.deliver = AsyncMock(side_effect=slow_deliver)
        dispatcher = NotificationDispatcher(client)

        assert dispatcher.submit(message) is True
        assert dispatcher.submit(message) is True

        release.set()
        await dispatcher.stop()
        assert client.deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_messages_delivered_in_order(self, mock_client: MagicMock) -> None:
        """The single worker preserves submission order."""
        dispatcher = NotificationDispatcher(mock_client)
        messages = [Message(body_text=f"m{i}", color="#3AA3E3") for i in range(5)]

        for m in messages:
            dispatcher.submit(m)
        await dispatcher.stop()

        delivered = [c.args[0] for c in mock_client.deliver.await_args_list]
        assert delivered == messages

    @pytest.mark.asyncio
    async def test_queue_full_drops_message(self, message: Message) -> None:
        """Messages beyond the queue bound are dropped."""
        release = asyncio.Event()

        async def blocked_deliver(_: Message) -> bool:
            await release.wait()
            return True

        client = MagicMock()
        client.deliver = AsyncMock(side_effect=blocked_deliver)
        dispatcher = NotificationDispatcher(client, queue_size=1)

        assert dispatcher.submit(message) is True
        await asyncio.sleep(0)  # worker takes the first message
        assert dispatcher.submit(message) is True
        assert dispatcher.submit(message) is False

        release.set()
        await dispatcher.stop()
        assert client.deliver.await_count == 2

    @pytest.mark.asyncio
    async def test_worker_survives_client_errors(
        self, message: Message, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An exception escaping the client does not kill the worker."""
        client = MagicMock()
        client.deliver = AsyncMock(side_effect=[RuntimeError("boom"), True])
        dispatcher = NotificationDispatcher(client)

        with caplog.at_level(logging.ERROR):
            dispatcher.submit(message)
            dispatcher.submit(message)
            await dispatcher.stop()

        assert client.deliver.await_count == 2
        assert "Notification worker error" in caplog.text

    @pytest.mark.asyncio
    async def test_submit_after_stop_is_rejected(
        self, mock_client: MagicMock, message: Message
    ) -> None:
        """Messages submitted during shutdown are dropped."""
        dispatcher = NotificationDispatcher(mock_client)
        dispatcher.submit(message)
        await dispatcher.stop()

        assert dispatcher.submit(message) is False
        assert mock_client.deliver.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, mock_client: MagicMock) -> None:
        """Stopping an idle dispatcher is a no-op."""
        dispatcher = NotificationDispatcher(mock_client)
        await dispatcher.stop()
        assert dispatcher.is_running is False

    @pytest.mark.asyncio
    async def test_stop_abandons_after_grace_period(
        self, message: Message, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Pending messages are abandoned once the grace period expires."""

        async def hang(_: Message) -> bool:
            await asyncio.sleep(10)
            return True

        client = MagicMock()
        client.deliver = AsyncMock(side_effect=hang)
        dispatcher = NotificationDispatcher(client)
        dispatcher.submit(message)
        dispatcher.submit(message)

        with caplog.at_level(logging.WARNING):
            await dispatcher.stop(timeout=0.05)

        assert dispatcher.is_running is False
        assert "abandoning" in caplog.text

    def test_submit_outside_event_loop(self, mock_client: MagicMock, message: Message) -> None:
        """Submitting without a running loop fails softly."""
        dispatcher = NotificationDispatcher(mock_client)
        assert dispatcher.submit(message) is False
