from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .clock import Clock, Scheduler, TimerHandle, now_ms
from .core import RandomSource, clamp01, ease_out_cubic, lerp

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES: tuple[str, ...] = (
    "Time is running out!",
    "You won't make it!",
    "This is taking far too long...",
    "The others finished faster!",
    "You're out of time!",
    "Your mind is too slow!",
    "Pressure! Pressure! Pressure!",
    "Tick-tock... The clock never stops!",
    "Focus or you will fail!",
    "The system senses your hesitation!",
    "No hope... No time...",
    "Give up now and spare yourself the humiliation!",
    "Your performance is disappointing!",
    "Others are judging you right now!",
    "Failure is inevitable...",
    "Your chances shrink every second!",
    "Can you feel the panic rising?",
    "Your anxiety will only grow!",
    "You weren't made for this!",
    "Time does not forgive the slow!",
)


class _Stage(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    FADE_IN = "fade_in"
    HOLD = "hold"
    FADE_OUT = "fade_out"


@dataclass(frozen=True, slots=True)
class DistractionConfig:
    min_delay_ms: int = 5000
    max_delay_ms: int = 15000
    message_time_ms: int = 3000
    fade_time_ms: int = 1000
    font_size: float = 24.0
    glitch_effect: bool = True
    glitch_duration_ms: int = 500
    slow_delay_ms: tuple[int, int] = (10_000, 20_000)
    fast_delay_ms: tuple[int, int] = (2000, 5000)
    font_size_range: tuple[float, float] = (20.0, 32.0)
    messages: tuple[str, ...] = DEFAULT_MESSAGES

    def __post_init__(self) -> None:
        if self.min_delay_ms < 0:
            raise ValueError("min_delay_ms must be >= 0")
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must be <= max_delay_ms")
        for name in ("slow_delay_ms", "fast_delay_ms"):
            lo, hi = getattr(self, name)
            if lo < 0 or lo > hi:
                raise ValueError(f"{name} must be an ordered (min, max) pair of non-negative delays")
        if self.message_time_ms < 0 or self.fade_time_ms < 0 or self.glitch_duration_ms < 0:
            raise ValueError("message_time_ms, fade_time_ms and glitch_duration_ms must be >= 0")
        if self.font_size <= 0:
            raise ValueError("font_size must be > 0")
        if not self.messages:
            raise ValueError("messages must not be empty")


@dataclass(frozen=True, slots=True)
class DistractionSnapshot:
    text: str | None
    alpha: float
    font_size: float
    glitch: bool
    intensity: float


def delays_for_intensity(level: float, config: DistractionConfig) -> tuple[int, int, float]:
    """Interpolate (min_delay_ms, max_delay_ms, font_size) from slow/small to fast/large."""

    level = clamp01(level)
    slow_lo, slow_hi = config.slow_delay_ms
    fast_lo, fast_hi = config.fast_delay_ms
    lo = int(round(lerp(slow_lo, fast_lo, level)))
    hi = int(round(lerp(slow_hi, fast_hi, level)))
    if lo > hi:
        lo = hi
    small, large = config.font_size_range
    return lo, hi, lerp(small, large, level)


class DistractionGenerator:
    """Self-sustaining scheduler of pressure messages.

    Each emission runs fade-in -> hold -> fade-out on the host scheduler and
    schedules the next one when it is torn down. At most one timer is pending
    at any time, so ``stop()`` cancelling it is enough to silence the generator.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        scheduler: Scheduler,
        rng: RandomSource,
        config: DistractionConfig | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._rng = rng
        self._config = config or DistractionConfig()
        self._on_message = on_message

        self._messages: list[str] = list(self._config.messages)
        self._min_delay_ms = int(self._config.min_delay_ms)
        self._max_delay_ms = int(self._config.max_delay_ms)
        self._font_size = float(self._config.font_size)
        self._intensity = 0.0

        self._enabled = False
        self._stage = _Stage.IDLE
        self._stage_started_ms = 0.0
        self._pending: TimerHandle | None = None
        self._current: str | None = None
        self._glitch_until_ms: float | None = None
        self._emitted = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def min_delay_ms(self) -> int:
        return self._min_delay_ms

    @property
    def max_delay_ms(self) -> int:
        return self._max_delay_ms

    @property
    def font_size(self) -> float:
        return self._font_size

    @property
    def intensity(self) -> float:
        return self._intensity

    @property
    def current_message(self) -> str | None:
        return self._current

    @property
    def emitted_count(self) -> int:
        return self._emitted

    def messages(self) -> list[str]:
        return list(self._messages)

    def start(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        self._schedule_next()

    def stop(self) -> None:
        self._enabled = False
        self._scheduler.cancel(self._pending)
        self._pending = None
        self._current = None
        self._glitch_until_ms = None
        self._stage = _Stage.IDLE

    def set_intensity(self, level: float) -> "DistractionGenerator":
        level = clamp01(level)
        self._intensity = level
        self._min_delay_ms, self._max_delay_ms, self._font_size = delays_for_intensity(level, self._config)
        return self

    def add_custom_message(self, message: object) -> "DistractionGenerator":
        if isinstance(message, str) and message.strip() != "":
            self._messages.append(message)
        return self

    def next_delay_ms(self) -> int:
        return int(self._rng.randint(self._min_delay_ms, self._max_delay_ms))

    def snapshot(self) -> DistractionSnapshot:
        now = now_ms(self._clock)
        alpha = 0.0
        if self._current is not None:
            fade = float(self._config.fade_time_ms)
            progress = 1.0 if fade <= 0.0 else (now - self._stage_started_ms) / fade
            if self._stage is _Stage.FADE_IN:
                alpha = ease_out_cubic(progress)
            elif self._stage is _Stage.HOLD:
                alpha = 1.0
            elif self._stage is _Stage.FADE_OUT:
                alpha = 1.0 - ease_out_cubic(progress)
        glitch = self._glitch_until_ms is not None and now < self._glitch_until_ms
        return DistractionSnapshot(
            text=self._current,
            alpha=clamp01(alpha),
            font_size=self._font_size,
            glitch=glitch,
            intensity=self._intensity,
        )

    def _schedule_next(self) -> None:
        if not self._enabled:
            return
        self._scheduler.cancel(self._pending)
        self._stage = _Stage.WAITING
        self._pending = self._scheduler.call_later(self.next_delay_ms(), self._emit)

    def _enter(self, stage: _Stage, duration_ms: float, then: Callable[[], None]) -> None:
        self._stage = stage
        self._stage_started_ms = now_ms(self._clock)
        self._pending = self._scheduler.call_later(duration_ms, then)

    def _emit(self) -> None:
        if not self._enabled:
            return
        self._current = self._rng.choice(self._messages)
        self._emitted += 1
        logger.debug("distraction message: %s", self._current)
        if self._on_message is not None:
            self._on_message(self._current)
        self._enter(_Stage.FADE_IN, self._config.fade_time_ms, self._faded_in)

    def _faded_in(self) -> None:
        if not self._enabled:
            return
        if self._config.glitch_effect:
            self._glitch_until_ms = now_ms(self._clock) + self._config.glitch_duration_ms
        self._enter(_Stage.HOLD, self._config.message_time_ms, self._held)

    def _held(self) -> None:
        if not self._enabled:
            return
        self._enter(_Stage.FADE_OUT, self._config.fade_time_ms, self._faded_out)

    def _faded_out(self) -> None:
        if not self._enabled:
            return
        self._current = None
        self._glitch_until_ms = None
        self._pending = None
        self._schedule_next()
