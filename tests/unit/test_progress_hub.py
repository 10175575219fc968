import asyncio
import threading
from pathlib import Path
from clipmerge.domain.events import (
    FilesCleanedUp,
    MergeCompleted,
    MergeFailed,
    MergeProgressUpdated,
    MergeStageChanged,
)
from clipmerge.domain.models import MergeState, ProgressSnapshot
from clipmerge.infrastructure.event_bus import EventBus
from clipmerge.infrastructure.progress_hub import ProgressHub, event_payload


def _progress(percent, subscriber_id="sub"):
    return MergeProgressUpdated(
        session_id="s1",
        subscriber_id=subscriber_id,
        stage="concat",
        message="Merging clips (stream copy)",
        snapshot=ProgressSnapshot(
            percent=percent, elapsed_seconds=4, total_seconds=8, remaining_seconds=4, eta="00:00:04"
        ),
    )


def _attached_hub(**kwargs):
    hub = ProgressHub(**kwargs)
    hub.attach(EventBus(), asyncio.get_running_loop())
    return hub


def test_publish_reaches_only_matching_subscriber():
    async def scenario():
        hub = _attached_hub()
        mine = await hub.subscribe("sub-a")
        other = await hub.subscribe("sub-b")
        hub.publish_threadsafe("sub-a", {"percent": 10.0})
        await asyncio.sleep(0)
        return mine.get_nowait(), other.empty()

    payload, other_empty = asyncio.run(scenario())
    assert payload == {"percent": 10.0}
    assert other_empty


def test_full_queue_drops_oldest():
    async def scenario():
        hub = _attached_hub(maxsize=2)
        q = await hub.subscribe("sub")
        for i in range(4):
            hub.publish_threadsafe("sub", {"n": i})
        await asyncio.sleep(0)
        return [q.get_nowait()["n"] for _ in range(q.qsize())]

    assert asyncio.run(scenario()) == [2, 3]


def test_unsubscribe_stops_delivery():
    async def scenario():
        hub = _attached_hub()
        q = await hub.subscribe("sub")
        await hub.unsubscribe("sub", q)
        await hub.unsubscribe("sub", q)
        hub.publish_threadsafe("sub", {"percent": 1.0})
        await asyncio.sleep(0)
        return q.empty()

    assert asyncio.run(scenario())


def test_bus_events_from_worker_thread_are_forwarded():
    bus = EventBus()

    async def scenario():
        hub = ProgressHub()
        hub.attach(bus, asyncio.get_running_loop())
        q = await hub.subscribe("sub")

        def worker():
            bus.publish(MergeStageChanged(session_id="s1", subscriber_id="sub", state=MergeState.VALIDATING,
                                          message="Validating 2 clips"))
            bus.publish(_progress(50.0))
            bus.publish(_progress(75.0, subscriber_id=None))
            bus.publish(MergeFailed(session_id="s1", subscriber_id="sub", error_message="Corrupted file"))

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        received = [await asyncio.wait_for(q.get(), timeout=2) for _ in range(3)]
        hub.detach(bus)
        return received, q.empty()

    received, drained = asyncio.run(scenario())
    assert [p["stage"] for p in received] == ["validating", "concat", "error"]
    assert received[1]["percent"] == 50.0
    assert received[2]["message"] == "Corrupted file"
    assert drained


def test_detach_stops_forwarding():
    bus = EventBus()

    async def scenario():
        hub = ProgressHub()
        hub.attach(bus, asyncio.get_running_loop())
        q = await hub.subscribe("sub")
        hub.detach(bus)
        bus.publish(_progress(10.0))
        await asyncio.sleep(0)
        return q.empty()

    assert asyncio.run(scenario())


def test_publish_threadsafe_without_loop_is_dropped():
    ProgressHub().publish_threadsafe("sub", {"percent": 1.0})


def test_event_payloads(tmp_path):
    done = event_payload(MergeCompleted(
        session_id="s1", subscriber_id="sub", output_path=tmp_path / "output_s1_1.mp4",
        duration_seconds=8.0, size_bytes=100,
    ))
    assert done == {
        "percent": 100.0,
        "stage": "done",
        "message": "Merge complete",
        "output": "/videos/output_s1_1.mp4",
        "duration": 8.0,
        "size": 100,
    }
    stage = event_payload(MergeStageChanged(session_id="s1", state=MergeState.CONCAT_FALLBACK))
    assert stage == {"percent": 0.0, "stage": "concat_fallback", "message": "CONCAT_FALLBACK"}
    assert event_payload(FilesCleanedUp(removed=1)) is None
