"""Countdown clock with threshold state, per-second ticks and a pulse cue.

The timer is split in two layers:

- ``CountdownState`` plus pure transition functions (``start_state``,
  ``step_state`` ...) that can be exercised without any scheduler;
- ``CountdownTimer``, which owns the state, arms the fine-grained repeating
  update on the host scheduler and turns step effects into callbacks.

Remaining time is always derived from wall-clock elapsed time since the last
anchor, never from the number of updates that happened to fire.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from .clock import Clock, Scheduler, TimerHandle, now_ms

logger = logging.getLogger(__name__)


class ClockLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class CountdownConfig:
    duration_ms: float = 60_000.0
    update_interval_ms: float = 50.0
    warning_threshold: float = 0.5
    critical_threshold: float = 0.25
    pulse: bool = True
    pulse_threshold: float = 0.25
    time_format: str = "MM:SS"  # "MM:SS" | "M:SS"
    show_milliseconds: bool = False

    def __post_init__(self) -> None:
        if self.duration_ms <= 0:
            raise ValueError("duration_ms must be > 0")
        if self.update_interval_ms <= 0:
            raise ValueError("update_interval_ms must be > 0")
        for name in ("warning_threshold", "critical_threshold", "pulse_threshold"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0.0, 1.0]")
        if self.time_format not in ("MM:SS", "M:SS"):
            raise ValueError("time_format must be 'MM:SS' or 'M:SS'")


@dataclass(frozen=True, slots=True)
class CountdownState:
    total_ms: float
    remaining_ms: float
    last_second: int
    running: bool = False
    completed: bool = False
    anchor_ms: float | None = None  # wall time at which remaining_ms was captured


@dataclass(frozen=True, slots=True)
class Tick:
    second: int
    fraction: float


@dataclass(frozen=True, slots=True)
class Completed:
    pass


StepEffect = Tick | Completed


@dataclass(frozen=True, slots=True)
class CountdownSnapshot:
    """View model for the UI (pure data)."""

    text: str
    level: ClockLevel
    scale: float
    remaining_ms: float
    fraction: float
    running: bool
    completed: bool


def _ceil_seconds(ms: float) -> int:
    return int(math.ceil(ms / 1000.0))


def initial_state(duration_ms: float) -> CountdownState:
    total = max(0.0, float(duration_ms))
    return CountdownState(total_ms=total, remaining_ms=total, last_second=_ceil_seconds(total))


def remaining_at(state: CountdownState, now: float) -> float:
    if not state.running or state.anchor_ms is None:
        return state.remaining_ms
    return max(0.0, state.remaining_ms - (now - state.anchor_ms))


def start_state(duration_ms: float, now: float) -> CountdownState:
    return replace(initial_state(duration_ms), running=True, anchor_ms=now)


def pause_state(state: CountdownState, now: float) -> CountdownState:
    if not state.running:
        return state
    return replace(state, remaining_ms=remaining_at(state, now), running=False, anchor_ms=None)


def resume_state(state: CountdownState, now: float) -> CountdownState:
    if state.running or state.completed:
        return state
    return replace(state, running=True, anchor_ms=now)


def reset_state(state: CountdownState, new_duration_ms: float | None = None) -> CountdownState:
    total = state.total_ms if new_duration_ms is None else max(0.0, float(new_duration_ms))
    return initial_state(total)


def add_time_state(state: CountdownState, delta_ms: float, now: float) -> CountdownState:
    if state.completed:
        return state
    remaining = remaining_at(state, now) + float(delta_ms)
    remaining = min(state.total_ms, max(0.0, remaining))
    anchor = now if state.running else None
    return replace(state, remaining_ms=remaining, anchor_ms=anchor)


def fraction_of(state: CountdownState, remaining_ms: float) -> float:
    if state.total_ms <= 0.0:
        return 0.0
    return remaining_ms / state.total_ms


def step_state(state: CountdownState, now: float) -> tuple[CountdownState, tuple[StepEffect, ...]]:
    """Recompute remaining time and emit the ticks/completion it implies.

    Every integer second crossed since the previous step yields one ``Tick`` in
    strictly decreasing order; ``Completed`` always comes after the final tick.
    """

    if not state.running or state.completed:
        return state, ()

    remaining = remaining_at(state, now)
    second = _ceil_seconds(remaining)
    effects: list[StepEffect] = []

    last_second = state.last_second
    if second < last_second:
        for s in range(last_second - 1, second - 1, -1):
            effects.append(Tick(second=s, fraction=fraction_of(state, remaining)))
    last_second = second

    if remaining <= 0.0:
        effects.append(Completed())
        done = replace(
            state,
            remaining_ms=0.0,
            last_second=0,
            running=False,
            completed=True,
            anchor_ms=None,
        )
        return done, tuple(effects)

    return replace(state, remaining_ms=remaining, last_second=last_second, anchor_ms=now), tuple(effects)


def level_for(fraction: float, *, warning_threshold: float, critical_threshold: float) -> ClockLevel:
    if fraction <= critical_threshold:
        return ClockLevel.CRITICAL
    if fraction <= warning_threshold:
        return ClockLevel.WARNING
    return ClockLevel.NORMAL


def pulse_scale(wall_ms: float) -> float:
    # Driven by wall-clock time so the pulse rate does not quantize with remaining time.
    return 0.8 + math.sin(wall_ms / 100.0) * 0.2


def format_time(ms: float, fmt: str = "MM:SS", *, show_milliseconds: bool = False) -> str:
    total_seconds = _ceil_seconds(max(0.0, ms))
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    if show_milliseconds:
        whole = int(max(0.0, ms)) // 1000
        minutes, seconds = divmod(whole, 60)
        millis = int(max(0.0, ms)) % 1000
        head = f"{minutes:02d}" if fmt == "MM:SS" else f"{minutes}"
        return f"{head}:{seconds:02d}.{millis:03d}"
    if fmt == "MM:SS":
        return f"{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


class CountdownTimer:
    def __init__(
        self,
        *,
        clock: Clock,
        scheduler: Scheduler,
        config: CountdownConfig | None = None,
        on_tick: Callable[[int, float], None] | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._config = config or CountdownConfig()
        self._on_tick = on_tick
        self._on_complete = on_complete

        self._state = initial_state(self._config.duration_ms)
        self._update_handle: TimerHandle | None = None

    @property
    def config(self) -> CountdownConfig:
        return self._config

    @property
    def state(self) -> CountdownState:
        return self._state

    @property
    def total_ms(self) -> float:
        return self._state.total_ms

    @property
    def is_running(self) -> bool:
        return self._state.running

    @property
    def is_complete(self) -> bool:
        return self._state.completed

    def start(self, duration_ms: float | None = None) -> None:
        duration = self._config.duration_ms if duration_ms is None else float(duration_ms)
        if duration <= 0:
            return
        self._disarm()
        self._state = start_state(duration, now_ms(self._clock))
        self._arm()

    def pause(self) -> None:
        self._disarm()
        self._state = pause_state(self._state, now_ms(self._clock))

    def resume(self) -> None:
        if self._state.running or self._state.completed:
            return
        self._state = resume_state(self._state, now_ms(self._clock))
        self._arm()

    def reset(self, new_duration_ms: float | None = None) -> None:
        self._disarm()
        self._state = reset_state(self._state, new_duration_ms)

    def add_time(self, delta_ms: float) -> None:
        self._state = add_time_state(self._state, delta_ms, now_ms(self._clock))

    def cancel(self) -> None:
        """Stop without completing; no further callbacks are delivered."""

        self.pause()

    def remaining_ms(self) -> float:
        return remaining_at(self._state, now_ms(self._clock))

    def fraction_remaining(self) -> float:
        return fraction_of(self._state, self.remaining_ms())

    def level(self) -> ClockLevel:
        return level_for(
            self.fraction_remaining(),
            warning_threshold=self._config.warning_threshold,
            critical_threshold=self._config.critical_threshold,
        )

    def scale(self) -> float:
        if self._state.completed or not self._config.pulse:
            return 1.0
        fraction = self.fraction_remaining()
        if self.level() is ClockLevel.CRITICAL and fraction <= self._config.pulse_threshold:
            return pulse_scale(now_ms(self._clock))
        return 1.0

    def snapshot(self) -> CountdownSnapshot:
        remaining = self.remaining_ms()
        level = ClockLevel.CRITICAL if self._state.completed else self.level()
        return CountdownSnapshot(
            text=format_time(
                remaining,
                self._config.time_format,
                show_milliseconds=self._config.show_milliseconds,
            ),
            level=level,
            scale=self.scale(),
            remaining_ms=remaining,
            fraction=fraction_of(self._state, remaining),
            running=self._state.running,
            completed=self._state.completed,
        )

    def update(self) -> None:
        if not self._state.running:
            return
        self._state, effects = step_state(self._state, now_ms(self._clock))
        for effect in effects:
            if isinstance(effect, Tick):
                if self._on_tick is not None:
                    self._on_tick(effect.second, effect.fraction)
            else:
                self._disarm()
                logger.debug("countdown completed (total_ms=%.0f)", self._state.total_ms)
                if self._on_complete is not None:
                    self._on_complete()

    def _arm(self) -> None:
        self._update_handle = self._scheduler.call_every(self._config.update_interval_ms, self.update)

    def _disarm(self) -> None:
        self._scheduler.cancel(self._update_handle)
        self._update_handle = None
