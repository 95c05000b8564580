"""Tests for lifecycle event notifications."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pipeline_notifier.config import NotificationConfig
from pipeline_notifier.notifier.composer import COLOR_ERROR, MessageComposer
from pipeline_notifier.notifier.models import EventContext, FailureInfo, Message
from pipeline_notifier.notifier.observer import LifecycleObserver


@pytest.fixture
def dispatcher() -> MagicMock:
    """Create a mock dispatcher that accepts every message."""
    mock = MagicMock()
    mock.submit.return_value = True
    return mock


@pytest.fixture
def ctx() -> EventContext:
    """Create a sample run context."""
    return EventContext(
        run_name="happy_turing",
        workflow_name="main.nf",
        command_line="nextflow run main.nf",
        work_dir="/data/work",
        duration=timedelta(minutes=3),
    )


def make_observer(dispatcher: MagicMock | None, **config: object) -> LifecycleObserver:
    return LifecycleObserver(
        NotificationConfig.model_validate(config), MessageComposer(), dispatcher
    )


def submitted(dispatcher: MagicMock) -> Message:
    message: Message = dispatcher.submit.call_args.args[0]
    return message


class TestLifecycleObserver:
    """Tests for LifecycleObserver."""

    def test_on_start_queues_message(self, dispatcher: MagicMock, ctx: EventContext) -> None:
        """A start event is composed and queued."""
        observer = make_observer(dispatcher)

        assert observer.on_start(ctx) is True

        message = submitted(dispatcher)
        assert message.footer == "Started"
        assert [f.title for f in message.fields] == [
            "Run Name",
            "Command Line",
            "Work Directory",
        ]

    def test_on_complete_uses_configured_text(
        self, dispatcher: MagicMock, ctx: EventContext
    ) -> None:
        """A string message replaces the default body text."""
        observer = make_observer(dispatcher, onComplete={"message": "All done :tada:"})

        observer.on_complete(ctx)

        message = submitted(dispatcher)
        assert message.body_text == "All done :tada:"
        assert message.fields[0].title == "Run Name"

    def test_on_error_with_failure_info(self, dispatcher: MagicMock, ctx: EventContext) -> None:
        """Failure details passed to on_error appear in the message."""
        observer = make_observer(dispatcher)

        observer.on_error(ctx, FailureInfo(process="ALIGN", exit_status=137))

        message = submitted(dispatcher)
        assert message.color == COLOR_ERROR
        values = {f.title: f.value for f in message.fields}
        assert values["Failed Process"] == "`ALIGN`"
        assert values["Error Message"] == "Unknown error"

    def test_disabled_event_is_skipped(self, dispatcher: MagicMock, ctx: EventContext) -> None:
        """Events disabled in configuration queue nothing."""
        observer = make_observer(dispatcher, onStart={"enabled": False})

        assert observer.on_start(ctx) is False
        assert observer.on_complete(ctx) is True
        assert dispatcher.submit.call_count == 1

    def test_no_dispatcher_is_noop(self, ctx: EventContext) -> None:
        """Without a delivery target every event is skipped."""
        observer = make_observer(None)

        assert observer.enabled is False
        assert observer.on_start(ctx) is False
        assert observer.on_complete(ctx) is False
        assert observer.on_error(ctx) is False

    def test_composition_error_is_contained(self, dispatcher: MagicMock, ctx: EventContext) -> None:
        """A failing composer never propagates to the host."""
        composer = MagicMock()
        composer.compose.side_effect = RuntimeError("boom")
        observer = LifecycleObserver(NotificationConfig(), composer, dispatcher)

        assert observer.on_start(ctx) is False
        dispatcher.submit.assert_not_called()

    def test_dropped_message_reported(self, dispatcher: MagicMock, ctx: EventContext) -> None:
        """A full queue is reported as False."""
        dispatcher.submit.return_value = False
        observer = make_observer(dispatcher)

        assert observer.on_complete(ctx) is False
