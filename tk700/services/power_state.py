"""
Power state tracking for the projector.

The projector only reports on/off. Warm-up and cool-down are inferred from
when an operator asked for a transition: the device is held in WARMING_UP or
COOLING_DOWN for a fixed time regardless of what it reports, and resolves to
ON/OFF from the first reading after that window.
"""
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

WARMING_UP_TIME_SECONDS = 30
COOLING_DOWN_TIME_SECONDS = 90


class PowerState(str, Enum):
    OFF = "OFF"
    WARMING_UP = "WARMING_UP"
    ON = "ON"
    COOLING_DOWN = "COOLING_DOWN"
    UNKNOWN = "UNKNOWN"


TRANSITIONAL = (PowerState.WARMING_UP, PowerState.COOLING_DOWN)
STABLE = (PowerState.ON, PowerState.OFF)


@dataclass(frozen=True)
class PowerStateData:
    power_on: Optional[bool] = None
    state: PowerState = PowerState.UNKNOWN
    transition_start_time: Optional[float] = None  # epoch seconds


@dataclass(frozen=True)
class PowerStateInfo(PowerStateData):
    remaining_seconds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "powerOn": self.power_on,
            "state": self.state.value,
            "transitionStartTime": (
                int(self.transition_start_time * 1000) if self.transition_start_time is not None else None
            ),
            "remainingSeconds": self.remaining_seconds,
        }


def _elapsed(start: Optional[float], now: float) -> float:
    return now - start if start is not None else math.inf


def _phase_duration(state: PowerState) -> int:
    return WARMING_UP_TIME_SECONDS if state == PowerState.WARMING_UP else COOLING_DOWN_TIME_SECONDS


def observe_reading(current: PowerStateData, power_on: Optional[bool], now: float) -> PowerStateData:
    """Fold a raw on/off reading into the state; None carries no information."""
    if power_on is None:
        return current

    elapsed = _elapsed(current.transition_start_time, now)
    if current.state == PowerState.WARMING_UP and elapsed < WARMING_UP_TIME_SECONDS:
        state = PowerState.WARMING_UP
    elif current.state == PowerState.COOLING_DOWN and elapsed < COOLING_DOWN_TIME_SECONDS:
        state = PowerState.COOLING_DOWN
    else:
        state = PowerState.ON if power_on else PowerState.OFF

    start = current.transition_start_time
    if state != current.state and state in STABLE:
        start = None
    return PowerStateData(power_on=power_on, state=state, transition_start_time=start)


def request_transition(current: PowerStateData, target_on: bool, now: float) -> PowerStateData:
    """Start warm-up/cool-down, only from the opposite stable state; otherwise a no-op."""
    if target_on and current.state == PowerState.OFF:
        return PowerStateData(power_on=True, state=PowerState.WARMING_UP, transition_start_time=now)
    if not target_on and current.state == PowerState.ON:
        return PowerStateData(power_on=False, state=PowerState.COOLING_DOWN, transition_start_time=now)
    return current


def remaining_seconds(snapshot: PowerStateData, now: float) -> int:
    if snapshot.transition_start_time is None:
        return 0
    left = _phase_duration(snapshot.state) - _elapsed(snapshot.transition_start_time, now)
    return max(0, math.ceil(left))


def enrich(snapshot: PowerStateData, now: float) -> PowerStateInfo:
    return PowerStateInfo(
        power_on=snapshot.power_on,
        state=snapshot.state,
        transition_start_time=snapshot.transition_start_time,
        remaining_seconds=remaining_seconds(snapshot, now),
    )


class PowerStateManager:
    """Holds the one PowerStateData for the process; readers only ever get immutable snapshots."""

    def __init__(self, clock: Callable[[], float] = time.time, initial: Optional[PowerStateData] = None):
        self._clock = clock
        self._lock = threading.Lock()
        self._state = initial or PowerStateData()

    def get_state(self) -> PowerStateData:
        return self._state

    def get_state_info(self) -> PowerStateInfo:
        return enrich(self._state, self._clock())

    def _modify(self, f: Callable[[PowerStateData, float], PowerStateData]) -> PowerStateData:
        with self._lock:
            self._state = f(self._state, self._clock())
            return self._state

    def update_from_projector(self, power_on: Optional[bool]) -> PowerStateData:
        return self._modify(lambda current, now: observe_reading(current, power_on, now))

    def initiate_transition(self, target_on: bool) -> PowerStateData:
        return self._modify(lambda current, now: request_transition(current, target_on, now))
