from pathlib import Path
from clipmerge.domain.events import FilesCleanedUp, MergeFailed, MergeStageChanged
from clipmerge.domain.models import MergeState
from clipmerge.infrastructure.event_bus import EventBus


def test_publish_reaches_type_subscribers(event_bus):
    received = []
    event_bus.subscribe(MergeFailed, received.append)

    event_bus.publish(MergeFailed(session_id="s1", error_message="boom"))
    event_bus.publish(FilesCleanedUp(removed=2))

    assert len(received) == 1
    assert received[0].error_message == "boom"


def test_decorator_subscription(event_bus):
    seen = []

    @event_bus.subscribe(MergeStageChanged)
    def on_stage(event):
        seen.append(event.state)

    event_bus.publish(MergeStageChanged(session_id="s1", state=MergeState.VALIDATING))
    assert seen == [MergeState.VALIDATING]


def test_unsubscribe(event_bus):
    seen = []
    event_bus.subscribe(FilesCleanedUp, seen.append)
    event_bus.unsubscribe(FilesCleanedUp, seen.append)
    event_bus.unsubscribe(FilesCleanedUp, seen.append)  # unknown callback is ignored

    event_bus.publish(FilesCleanedUp(removed=1))
    assert seen == []


def test_failing_subscriber_does_not_stop_delivery(event_bus, caplog):
    seen = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    event_bus.subscribe(FilesCleanedUp, broken)
    event_bus.subscribe(FilesCleanedUp, seen.append)

    event_bus.publish(FilesCleanedUp(removed=1))

    assert len(seen) == 1
    assert "EVENT_HANDLER_ERROR" in caplog.text


def test_no_subscribers_is_noop():
    EventBus().publish(FilesCleanedUp(removed=1))
