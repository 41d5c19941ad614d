import asyncio

import pytest

from tk700.exceptions.projector import LinkClosed, LinkTimeout
from tk700.services.broadcast import SharedValue
from tk700.services.poller import (
    ConditionalPoller,
    PictureSettings,
    PowerPoller,
    ProjectorMonitor,
    fetch_picture_settings,
)
from tk700.services.power_state import PowerState

FAST = 0.01
GATED = ("tmp1", "fan1", "vol", "appmod", "bri", "con", "sharp")


async def eventually(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestSharedValue:
    async def test_new_subscriber_gets_latest_value_first(self):
        shared = SharedValue("volume")
        shared.publish(4)
        stream = shared.subscribe()
        assert await stream.__anext__() == 4
        shared.publish(6)
        assert await stream.__anext__() == 6
        await stream.aclose()
        assert shared.subscriber_count == 0

    def test_distinct_suppresses_repeats(self):
        seen = []
        shared = SharedValue("on", initial=False, distinct=True)
        shared.listen(seen.append)
        assert shared.publish(False) is False
        assert shared.publish(True) is True
        assert shared.publish(True) is False
        shared.publish(False)
        assert seen == [False, True, False]

    def test_listener_can_be_removed(self):
        seen = []
        shared = SharedValue("x")
        remove = shared.listen(seen.append)
        remove()
        shared.publish(1)
        assert seen == [None]

    async def test_slow_subscriber_drops_oldest(self):
        shared = SharedValue("x", initial=0)
        stream = shared.subscribe(maxsize=2)
        assert await stream.__anext__() == 0
        for v in (1, 2, 3):
            shared.publish(v)
        assert await stream.__anext__() == 2
        assert await stream.__anext__() == 3
        await stream.aclose()


class TestPowerPoller:
    async def test_tick_feeds_state_machine_and_signal(self, client, power):
        poller = PowerPoller(client, power, interval=10)
        info = await poller.tick()
        assert info.state == PowerState.ON
        assert poller.power.value == info
        assert poller.is_on.value is True

    async def test_failed_tick_publishes_none_and_timer_keeps_running(self, client, link, power):
        link.failing["pow"] = LinkTimeout(5000)
        poller = PowerPoller(client, power, interval=FAST)
        poller.start()
        try:
            await eventually(lambda: link.count("pow") >= 3)
            assert poller.power.value is None
            assert poller.is_on.value is False

            del link.failing["pow"]
            await eventually(lambda: poller.power.value is not None)
            assert poller.power.value.state == PowerState.ON
        finally:
            await poller.stop()

    async def test_first_tick_is_immediate(self, client, link, power):
        poller = PowerPoller(client, power, interval=60)
        poller.start()
        try:
            await eventually(lambda: link.count("pow") == 1, timeout=0.5)
        finally:
            await poller.stop()

    async def test_warming_up_is_not_on(self, client, link, power):
        link.values["pow"] = "OFF"
        poller = PowerPoller(client, power, interval=10)
        await poller.tick()
        power.initiate_transition(True)
        link.values["pow"] = "ON"
        info = await poller.tick()
        assert info.state == PowerState.WARMING_UP
        assert info.power_on is True
        assert poller.is_on.value is False


class TestConditionalPoller:
    def make(self, client, interval=FAST):
        gate = SharedValue("on", initial=False, distinct=True)
        poller = ConditionalPoller("volume", client.get_volume, gate, interval)
        return gate, poller

    async def test_idle_while_off(self, client, link):
        gate, poller = self.make(client)
        poller.start()
        await asyncio.sleep(0.05)
        assert link.count("vol") == 0
        assert poller.value.value is None
        assert not poller.running
        await poller.stop()

    async def test_polls_while_on_and_clears_on_off(self, client, link):
        gate, poller = self.make(client)
        poller.start()
        gate.publish(True)
        try:
            await eventually(lambda: poller.value.value == 5)
            await eventually(lambda: link.count("vol") >= 3)

            gate.publish(False)
            # cleared right away, not left at the last reading
            assert poller.value.value is None
            assert not poller.running

            await asyncio.sleep(0.03)
            polled = link.count("vol")
            await asyncio.sleep(0.05)
            assert link.count("vol") == polled
            assert poller.value.value is None
        finally:
            await poller.stop()

    async def test_failed_tick_is_none_and_next_tick_recovers(self, client, link):
        gate, poller = self.make(client)
        link.failing["vol"] = LinkClosed()
        poller.start()
        gate.publish(True)
        try:
            await eventually(lambda: link.count("vol") >= 3)
            assert poller.running
            assert poller.value.value is None

            del link.failing["vol"]
            await eventually(lambda: poller.value.value == 5)
            assert poller.running
        finally:
            await poller.stop()

    async def test_one_round_trip_per_tick_for_all_subscribers(self, client, link):
        gate, poller = self.make(client, interval=10)
        streams = [poller.value.subscribe() for _ in range(3)]
        for s in streams:
            assert await s.__anext__() is None

        await poller.tick()
        assert link.count("vol") == 1
        for s in streams:
            assert await s.__anext__() == 5

        late = poller.value.subscribe()
        assert await late.__anext__() == 5
        assert link.count("vol") == 1
        for s in streams + [late]:
            await s.aclose()


class TestPictureSettings:
    async def test_fetches_triple(self, client):
        assert await fetch_picture_settings(client) == PictureSettings(brightness=50, contrast=50, sharpness=8)

    async def test_any_failure_clears_whole_triple(self, client, link):
        gate = SharedValue("on", initial=False, distinct=True)
        poller = ConditionalPoller("pictureSettings", lambda: fetch_picture_settings(client), gate, 10)
        await poller.tick()
        assert poller.value.value.contrast == 50
        link.failing["con"] = LinkTimeout(5000)
        await poller.tick()
        assert poller.value.value is None


class TestProjectorMonitor:
    async def test_gated_metrics_follow_power(self, client, link, power):
        monitor = ProjectorMonitor(client, power, interval=FAST)
        monitor.start()
        try:
            await eventually(lambda: all(v is not None for v in monitor.snapshot().values()))
            snap = monitor.snapshot()
            assert snap["power"]["state"] == "ON"
            assert snap["temperature"] == 41.5
            assert snap["fanSpeed"] == 1500
            assert snap["volume"] == 5
            assert snap["pictureMode"] == "cine"
            assert snap["pictureSettings"] == {"brightness": 50, "contrast": 50, "sharpness": 8}

            link.values["pow"] = "OFF"
            await eventually(lambda: monitor.snapshot()["power"]["state"] == "OFF")
            snap = monitor.snapshot()
            assert all(snap[name] is None for name in
                       ("temperature", "fanSpeed", "volume", "pictureMode", "pictureSettings"))
        finally:
            await monitor.stop()

    async def test_nothing_but_power_is_polled_while_off(self, client, link, power):
        link.values["pow"] = "OFF"
        monitor = ProjectorMonitor(client, power, interval=FAST)
        monitor.start()
        try:
            await eventually(lambda: link.count("pow") >= 3)
        finally:
            await monitor.stop()
        assert all(link.count(cmd) == 0 for cmd in GATED)

    async def test_power_request_publishes_and_gates_off(self, client, link, power):
        monitor = ProjectorMonitor(client, power, interval=10)
        monitor.start()
        try:
            await eventually(lambda: monitor.volume.value.value == 5)
            power.initiate_transition(False)
            monitor.publish_power()
            assert monitor.snapshot()["power"]["state"] == "COOLING_DOWN"
            assert monitor.snapshot()["power"]["remainingSeconds"] == 90
            assert monitor.volume.value.value is None
        finally:
            await monitor.stop()

    async def test_events_start_with_current_values(self, client, power):
        monitor = ProjectorMonitor(client, power, interval=10)
        monitor.publish_power()
        stream = monitor.events()
        first = {}
        for _ in range(6):
            name, value = await asyncio.wait_for(stream.__anext__(), 1)
            first[name] = value
        await stream.aclose()
        assert set(first) == {"power", "temperature", "fanSpeed", "volume", "pictureMode", "pictureSettings"}
        assert first["power"]["state"] == "UNKNOWN"
        assert first["volume"] is None
