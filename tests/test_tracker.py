from __future__ import annotations

import asyncio
from typing import List

import pytest

from fleet_eta.schemas.tracking import RawFix
from fleet_eta.services.broadcast import ROUTE_UPDATE_EVENT, SNAPSHOT_EVENT, Broadcaster
from fleet_eta.services.eta_pipeline import ETAPipeline
from fleet_eta.services.fix_source import FixSourceError
from fleet_eta.services.notifications import NotificationService
from fleet_eta.services.tracker import FleetTracker
from tests.conftest import DESTINATION, NOW, FakeRoutingClient, later, make_fix


class FakeFixSource:
    def __init__(self, fixes: List[RawFix]):
        self.fixes = fixes
        self.fail = False
        self.calls = 0

    async def fetch_fixes(self) -> List[RawFix]:
        self.calls += 1
        if self.fail:
            raise FixSourceError("Device API timeout (>10s)")
        return list(self.fixes)


class PeakConcurrencyClient(FakeRoutingClient):
    """Records the highest number of overlapping provider calls"""

    def __init__(self):
        super().__init__(delay=0.02)
        self.active = 0
        self.peak = 0

    async def get_eta(self, *args):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await super().get_eta(*args)
        finally:
            self.active -= 1


class SlowVehicleClient(FakeRoutingClient):
    """Delays provider answers for fixes at one latitude"""

    def __init__(self, slow_lat: float, slow_delay: float):
        super().__init__()
        self.slow_lat = slow_lat
        self.slow_delay = slow_delay

    async def get_eta(self, origin_lat, *args):
        if origin_lat == self.slow_lat:
            await asyncio.sleep(self.slow_delay)
        return await super().get_eta(origin_lat, *args)


def _tracker(fixes, client=None, **kwargs) -> FleetTracker:
    return FleetTracker(
        pipeline=ETAPipeline(client or FakeRoutingClient()),
        fix_source=FakeFixSource(fixes),
        destination=DESTINATION,
        broadcaster=Broadcaster(),
        notifications=kwargs.pop("notifications", None),
        poll_interval=kwargs.pop("poll_interval", 60),
        max_concurrency=kwargs.pop("max_concurrency", 5),
    )


def _drain(queue: asyncio.Queue) -> list:
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


@pytest.mark.asyncio
async def test_cycle_publishes_payloads_then_snapshot() -> None:
    tracker = _tracker([make_fix("BUS001"), make_fix("BUS002", lat=-1.9500)])
    queue = tracker.broadcaster.subscribe()

    snapshot = await tracker.run_cycle(NOW)

    assert snapshot.count == 2
    assert snapshot.timestamp == NOW
    assert {p.vehicle_id for p in snapshot.vehicles} == {"BUS001", "BUS002"}
    assert set(tracker.latest_payloads) == {"BUS001", "BUS002"}
    assert tracker.last_fetched_at == NOW

    events = [m["event"] for m in _drain(queue)]
    assert events == [ROUTE_UPDATE_EVENT, ROUTE_UPDATE_EVENT, SNAPSHOT_EVENT]


@pytest.mark.asyncio
async def test_fetch_failure_keeps_previous_snapshot() -> None:
    tracker = _tracker([make_fix()])
    first = await tracker.run_cycle(NOW)

    tracker.fix_source.fail = True
    assert await tracker.run_cycle(later(60)) is None

    assert tracker.last_snapshot is first
    assert tracker.last_fetch_error == "Device API timeout (>10s)"
    assert tracker.last_fetched_at == NOW


@pytest.mark.asyncio
async def test_invalid_fix_is_dropped_without_failing_cycle() -> None:
    tracker = _tracker([make_fix("BUS001"), make_fix("BUS002", lat=float("nan"))])

    snapshot = await tracker.run_cycle(NOW)

    assert snapshot.count == 1
    assert snapshot.vehicles[0].vehicle_id == "BUS001"


@pytest.mark.asyncio
async def test_provider_calls_are_bounded() -> None:
    client = PeakConcurrencyClient()
    fixes = [make_fix(f"BUS{i:03d}", lat=-1.9441 - i * 0.001) for i in range(8)]
    tracker = _tracker(fixes, client=client, max_concurrency=2)

    snapshot = await tracker.run_cycle(NOW)

    assert snapshot.count == 8
    assert client.eta_calls == 8
    assert client.peak <= 2


@pytest.mark.asyncio
async def test_cycle_triggers_due_notifications() -> None:
    sent = []

    class RecordingNotifications(NotificationService):
        async def _send_push(self, push_token, title, body, data):
            sent.append((push_token, data))

    notifications = RecordingNotifications(push_url="http://push.test")
    notifications.register("BUS001", 20, "ExponentPushToken[abc]")
    tracker = _tracker([make_fix()], notifications=notifications)

    await tracker.run_cycle(NOW)
    await tracker.run_cycle(later(10))

    assert sent == [("ExponentPushToken[abc]", {"vehicle_id": "BUS001", "eta": 15})]


@pytest.mark.asyncio
async def test_start_and_stop_background_loop() -> None:
    tracker = _tracker([make_fix()], poll_interval=0.01)

    await tracker.start()
    assert tracker.is_running is True
    await asyncio.sleep(0.05)
    await tracker.stop()

    assert tracker.is_running is False
    assert tracker.fix_source.calls >= 1
    assert tracker.last_snapshot.count == 1


@pytest.mark.asyncio
async def test_start_is_idempotent() -> None:
    tracker = _tracker([make_fix()], poll_interval=0.01)

    await tracker.start()
    task = tracker._task
    await tracker.start()

    assert tracker._task is task
    await tracker.stop()


def test_broadcaster_drops_oldest_when_full() -> None:
    broadcaster = Broadcaster(max_queue_size=2)
    queue = broadcaster.subscribe()

    for i in range(3):
        broadcaster.publish(ROUTE_UPDATE_EVENT, {"n": i})

    assert [m["data"]["n"] for m in _drain(queue)] == [1, 2]
    broadcaster.unsubscribe(queue)
    assert broadcaster.subscriber_count == 0


@pytest.mark.asyncio
async def test_fast_vehicle_is_published_while_slow_one_is_pending() -> None:
    client = SlowVehicleClient(slow_lat=-1.9500, slow_delay=0.5)
    tracker = _tracker([make_fix("SLOW", lat=-1.9500), make_fix("FAST")], client=client)
    queue = tracker.broadcaster.subscribe()

    cycle = asyncio.create_task(tracker.run_cycle(NOW))
    await asyncio.sleep(0.1)

    emitted = [m["data"]["vehicle_id"] for m in _drain(queue)]
    assert emitted == ["FAST"]
    assert not cycle.done()

    snapshot = await cycle
    assert snapshot.count == 2
    events = [m["event"] for m in _drain(queue)]
    assert events == [ROUTE_UPDATE_EVENT, SNAPSHOT_EVENT]


@pytest.mark.asyncio
async def test_slow_push_does_not_hold_back_other_payloads() -> None:
    class SlowNotifications(NotificationService):
        async def _send_push(self, push_token, title, body, data):
            await asyncio.sleep(0.5)

    notifications = SlowNotifications(push_url="http://push.test")
    notifications.register("BUS001", 20, "ExponentPushToken[abc]")
    tracker = _tracker(
        [make_fix("BUS001"), make_fix("BUS002", lat=-1.9500)],
        notifications=notifications,
    )
    queue = tracker.broadcaster.subscribe()

    cycle = asyncio.create_task(tracker.run_cycle(NOW))
    await asyncio.sleep(0.1)

    events = [m["event"] for m in _drain(queue)]
    assert events == [ROUTE_UPDATE_EVENT, ROUTE_UPDATE_EVENT, SNAPSHOT_EVENT]
    assert not cycle.done()
    await cycle
