"""
Server-side polling of the projector.

One power poller runs for the life of the process. Everything else is only
polled while the projector is confirmed ON, through one ConditionalPoller per
metric. Each poller writes a single SharedValue; readers never touch the
device.
"""
import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from tk700.services.broadcast import SharedValue
from tk700.services.power_state import PowerState, PowerStateInfo, PowerStateManager
from tk700.services.projector_client import ProjectorClient
from tk700.services.result import attempt

log = logging.getLogger("tk700.poller")

T = TypeVar("T")

POLL_INTERVAL = 2.0


@dataclass(frozen=True)
class PictureSettings:
    brightness: int
    contrast: int
    sharpness: int


async def fetch_picture_settings(client: ProjectorClient) -> PictureSettings:
    return PictureSettings(
        brightness=await client.get_brightness(),
        contrast=await client.get_contrast(),
        sharpness=await client.get_sharpness(),
    )


async def run_every(interval: float, tick: Callable[[], Awaitable[Any]]) -> None:
    """Call ``tick`` now and then once per ``interval``; a slow tick delays, never bunches, the next."""
    loop = asyncio.get_running_loop()
    next_at = loop.time()
    while True:
        await tick()
        next_at = max(next_at + interval, loop.time())
        await asyncio.sleep(next_at - loop.time())


async def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


class PowerPoller:
    """Reads power every interval, folds it into the state machine and publishes the result."""

    def __init__(self, client: ProjectorClient, manager: PowerStateManager, interval: float = POLL_INTERVAL):
        self.client = client
        self.manager = manager
        self.interval = interval
        self.power: SharedValue[PowerStateInfo] = SharedValue("power")
        # True only while the projector is confirmed ON; changes only
        self.is_on: SharedValue[bool] = SharedValue("power_on", initial=False, distinct=True)
        self._task: Optional[asyncio.Task] = None
        self._failing = False

    async def tick(self) -> Optional[PowerStateInfo]:
        result = await attempt(self.client.get_power_status())
        if result.ok:
            if self._failing:
                log.info("Power polling recovered")
            self._failing = False
            self.manager.update_from_projector(result.value)
            info = self.manager.get_state_info()
        else:
            if not self._failing:
                log.warning("Failed to fetch power state: %s", result.error.message)
            else:
                log.debug("Failed to fetch power state: %s", result.error.message)
            self._failing = True
            info = None
        self.publish(info)
        return info

    def publish(self, info: Optional[PowerStateInfo]) -> None:
        self.power.publish(info)
        self.is_on.publish(info is not None and info.power_on is True and info.state == PowerState.ON)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(run_every(self.interval, self.tick), name="poll-power")

    async def stop(self) -> None:
        await _cancel(self._task)
        self._task = None


class ConditionalPoller(Generic[T]):
    """
    Polls ``fetch`` only while ``gate`` is True.

    Turning on polls immediately and then every interval. Turning off cancels
    the loop and resets the cached value to None before returning. A failed
    tick caches None for that tick only.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        gate: SharedValue[bool],
        interval: float = POLL_INTERVAL,
        error_msg: str = "",
    ):
        self.name = name
        self.fetch = fetch
        self.gate = gate
        self.interval = interval
        self.error_msg = error_msg or f"Failed to fetch {name}"
        self.value: SharedValue[T] = SharedValue(name)
        self._task: Optional[asyncio.Task] = None
        self._unlisten: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unlisten is None:
            self._unlisten = self.gate.listen(self._on_gate)

    def _on_gate(self, on: Optional[bool]) -> None:
        if on:
            if self._task is None or self._task.done():
                log.debug("%s polling started", self.name)
                self._task = asyncio.create_task(run_every(self.interval, self.tick), name=f"poll-{self.name}")
            return
        if self._task is not None:
            log.debug("%s polling stopped", self.name)
            self._task.cancel()
            self._task = None
        self.value.publish(None)

    async def tick(self) -> Optional[T]:
        result = await attempt(self.fetch())
        if not result.ok:
            log.debug("%s: %s", self.error_msg, result.error.message)
        value = result.or_none()
        self.value.publish(value)
        return value

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        task, self._task = self._task, None
        await _cancel(task)


def _jsonable(value: Any) -> Any:
    if isinstance(value, PowerStateInfo):
        return value.to_dict()
    if isinstance(value, PictureSettings):
        return asdict(value)
    return value


class ProjectorMonitor:
    """Owns every poller and exposes their cached values."""

    def __init__(self, client: ProjectorClient, manager: PowerStateManager, interval: float = POLL_INTERVAL):
        self.client = client
        self.manager = manager
        self.power_poller = PowerPoller(client, manager, interval)
        gate = self.power_poller.is_on
        self.temperature = ConditionalPoller(
            "temperature", client.get_temperature, gate, interval, "Failed to fetch temperature")
        self.fan_speed = ConditionalPoller(
            "fanSpeed", client.get_fan_speed, gate, interval, "Failed to fetch fan speed")
        self.volume = ConditionalPoller(
            "volume", client.get_volume, gate, interval, "Failed to fetch volume")
        self.picture_mode = ConditionalPoller(
            "pictureMode", client.get_picture_mode, gate, interval, "Failed to fetch picture mode")
        self.picture_settings = ConditionalPoller(
            "pictureSettings", lambda: fetch_picture_settings(client), gate, interval,
            "Failed to fetch picture settings")
        self.pollers = [self.temperature, self.fan_speed, self.volume, self.picture_mode, self.picture_settings]

    def start(self) -> None:
        log.info("Starting projector polling (%d gated metrics)", len(self.pollers))
        for p in self.pollers:
            p.start()
        self.power_poller.start()

    async def stop(self) -> None:
        await self.power_poller.stop()
        await asyncio.gather(*(p.stop() for p in self.pollers))
        log.info("Projector polling stopped")

    def publish_power(self) -> None:
        """Push the current state machine snapshot without a device read."""
        self.power_poller.publish(self.manager.get_state_info())

    def channels(self) -> Dict[str, SharedValue]:
        return {"power": self.power_poller.power, **{p.name: p.value for p in self.pollers}}

    def snapshot(self) -> Dict[str, Any]:
        return {name: _jsonable(shared.value) for name, shared in self.channels().items()}

    async def events(self) -> AsyncIterator[Tuple[str, Any]]:
        """Merge every channel into one stream of (name, value), current values first."""
        out: asyncio.Queue = asyncio.Queue(maxsize=64)

        async def pump(name: str, shared: SharedValue) -> None:
            async for value in shared.subscribe():
                await out.put((name, _jsonable(value)))

        tasks = [asyncio.create_task(pump(n, s)) for n, s in self.channels().items()]
        try:
            while True:
                yield await out.get()
        finally:
            for t in tasks:
                t.cancel()
