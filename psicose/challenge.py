"""Timed challenges: a countdown plus an escalating distraction generator.

Two shapes share the same clock/distraction coupling:

- ``TimedChallenge``: the caller signals task completion with ``complete()``;
- ``TrialChallenge``: completion is a wrapped ``TrialSession`` reaching its end.

While running, the distraction intensity is pushed ``intensity_steps`` times at
equal sub-intervals of the duration, computed from the countdown's live
remaining time. Each challenge resolves exactly once and appends one record to
the outcome log.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .clock import Clock, Scheduler, TimerHandle
from .core import RandomSource
from .countdown import CountdownConfig, CountdownSnapshot, CountdownTimer
from .distraction import DistractionConfig, DistractionGenerator, DistractionSnapshot
from .ledger import GameContext, ScoreLedger
from .persistence import OutcomeRecord
from .trials import Archetype, Reveal, TrialResult, TrialSession

logger = logging.getLogger(__name__)


class OutcomeSink(Protocol):
    def append(self, record: OutcomeRecord) -> None: ...


class ChallengeStatus(str, Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def _challenge_distraction() -> DistractionConfig:
    return DistractionConfig(min_delay_ms=8000, max_delay_ms=15000)


@dataclass(frozen=True, slots=True)
class ChallengeConfig:
    duration_ms: float = 30_000.0
    intensity_steps: int = 10
    warning_threshold: float = 0.6
    critical_threshold: float = 0.3
    pulse: bool = True
    pulse_threshold: float = 0.3
    success_karma: float = 0.0
    failure_karma: float = 0.0
    distraction: DistractionConfig = field(default_factory=_challenge_distraction)

    def __post_init__(self) -> None:
        if self.duration_ms <= 0:
            raise ValueError("duration_ms must be > 0")
        if self.intensity_steps <= 0:
            raise ValueError("intensity_steps must be > 0")

    def countdown_config(self) -> CountdownConfig:
        return CountdownConfig(
            duration_ms=self.duration_ms,
            warning_threshold=self.warning_threshold,
            critical_threshold=self.critical_threshold,
            pulse=self.pulse,
            pulse_threshold=self.pulse_threshold,
        )


@dataclass(frozen=True, slots=True)
class ChallengeSnapshot:
    """View model for the UI (pure data)."""

    challenge_id: str
    status: ChallengeStatus
    countdown: CountdownSnapshot
    distraction: DistractionSnapshot


class _ChallengeRun:
    def __init__(
        self,
        *,
        clock: Clock,
        scheduler: Scheduler,
        rng: RandomSource,
        context: GameContext,
        outcome_log: OutcomeSink,
        config: ChallengeConfig | None = None,
        challenge_id: str | None = None,
        on_tick: Callable[[int, float], None] | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config or ChallengeConfig()
        self._scheduler = scheduler
        self._context = context
        self._outcome_log = outcome_log
        self._challenge_id = challenge_id or context.current_episode

        self._countdown = CountdownTimer(
            clock=clock,
            scheduler=scheduler,
            config=self._config.countdown_config(),
            on_tick=on_tick,
            on_complete=self._expired,
        )
        self._distraction = DistractionGenerator(
            clock=clock,
            scheduler=scheduler,
            rng=rng,
            config=self._config.distraction,
            on_message=on_message,
        )
        self._intensity_handle: TimerHandle | None = None
        self._status = ChallengeStatus.READY
        self._time_left_ms: float | None = None

    @property
    def challenge_id(self) -> str:
        return self._challenge_id

    @property
    def status(self) -> ChallengeStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is ChallengeStatus.RUNNING

    @property
    def countdown(self) -> CountdownTimer:
        return self._countdown

    @property
    def distraction(self) -> DistractionGenerator:
        return self._distraction

    @property
    def time_left_ms(self) -> float | None:
        """Time remaining when the challenge resolved (None while unresolved)."""
        return self._time_left_ms

    def start(self) -> None:
        if self._status is not ChallengeStatus.READY:
            return
        self._status = ChallengeStatus.RUNNING
        duration = self._config.duration_ms
        self._countdown.start(duration)
        self._distraction.start()
        self._intensity_handle = self._scheduler.call_every(
            duration / self._config.intensity_steps,
            self._push_intensity,
            count=self._config.intensity_steps,
        )
        logger.info("challenge %s started (%.0f ms)", self._challenge_id, duration)

    def cancel(self) -> bool:
        """Tear down without an outcome; no callback fires and nothing is recorded."""

        if self._status not in (ChallengeStatus.READY, ChallengeStatus.RUNNING):
            return False
        self._teardown()
        self._status = ChallengeStatus.CANCELLED
        return True

    def snapshot(self) -> ChallengeSnapshot:
        return ChallengeSnapshot(
            challenge_id=self._challenge_id,
            status=self._status,
            countdown=self._countdown.snapshot(),
            distraction=self._distraction.snapshot(),
        )

    def _push_intensity(self) -> None:
        if self._status is not ChallengeStatus.RUNNING:
            return
        remaining = self._countdown.remaining_ms()
        self._distraction.set_intensity(1.0 - remaining / self._config.duration_ms)

    def _teardown(self) -> None:
        self._scheduler.cancel(self._intensity_handle)
        self._intensity_handle = None
        self._countdown.cancel()
        self._distraction.stop()

    def _still_running(self) -> bool:
        # Let a countdown that already reached zero resolve before accepting completion.
        self._countdown.update()
        return self._status is ChallengeStatus.RUNNING

    def _resolve(self, status: ChallengeStatus, *, success: bool, time_left_ms: float) -> None:
        self._teardown()
        self._status = status
        self._time_left_ms = max(0.0, float(time_left_ms))
        karma = self._config.success_karma if success else self._config.failure_karma
        if karma:
            self._context.add_karma(karma)
        self._outcome_log.append(
            OutcomeRecord.now(
                challenge_id=self._challenge_id,
                success=success,
                time_left_ms=self._time_left_ms,
            )
        )
        logger.info(
            "challenge %s %s (success=%s, time_left_ms=%.0f)",
            self._challenge_id,
            status.value,
            success,
            self._time_left_ms,
        )

    def _expired(self) -> None:
        if self._status is not ChallengeStatus.RUNNING:
            return
        self._resolve(ChallengeStatus.EXPIRED, success=False, time_left_ms=0.0)
        self._after_expiry()

    def _after_expiry(self) -> None:
        raise NotImplementedError


class TimedChallenge(_ChallengeRun):
    """Pass/fail challenge completed by an explicit ``complete()`` call."""

    def __init__(
        self,
        *,
        clock: Clock,
        scheduler: Scheduler,
        rng: RandomSource,
        context: GameContext,
        outcome_log: OutcomeSink,
        config: ChallengeConfig | None = None,
        challenge_id: str | None = None,
        on_success: Callable[[float], None] | None = None,
        on_failure: Callable[[], None] | None = None,
        on_tick: Callable[[int, float], None] | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(
            clock=clock,
            scheduler=scheduler,
            rng=rng,
            context=context,
            outcome_log=outcome_log,
            config=config,
            challenge_id=challenge_id,
            on_tick=on_tick,
            on_message=on_message,
        )
        self._on_success = on_success
        self._on_failure = on_failure

    def complete(self) -> bool:
        if self._status is not ChallengeStatus.RUNNING or not self._still_running():
            return False
        time_left = self._countdown.remaining_ms()
        self._resolve(ChallengeStatus.COMPLETED, success=True, time_left_ms=time_left)
        if self._on_success is not None:
            self._on_success(time_left)
        return True

    def _after_expiry(self) -> None:
        if self._on_failure is not None:
            self._on_failure()


class TrialChallenge(_ChallengeRun):
    """Challenge whose task is a trial session; its result feeds the score ledger.

    The outcome record counts as a success when the subject beat chance. If the
    countdown expires first the trial is cancelled and the ledger is untouched.
    """

    def __init__(
        self,
        archetype: Archetype,
        *,
        clock: Clock,
        scheduler: Scheduler,
        rng: RandomSource,
        ledger: ScoreLedger,
        outcome_log: OutcomeSink,
        config: ChallengeConfig | None = None,
        challenge_id: str | None = None,
        present_ms: float = 0.0,
        reveal_ms: float = 1600.0,
        response_window_ms: float | None = None,
        session_id: str | None = None,
        on_complete: Callable[[TrialResult, float], None] | None = None,
        on_failure: Callable[[], None] | None = None,
        on_reveal: Callable[[Reveal], None] | None = None,
        on_tick: Callable[[int, float], None] | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(
            clock=clock,
            scheduler=scheduler,
            rng=rng,
            context=ledger.context,
            outcome_log=outcome_log,
            config=config,
            challenge_id=challenge_id,
            on_tick=on_tick,
            on_message=on_message,
        )
        self._ledger = ledger
        self._on_complete = on_complete
        self._on_failure = on_failure
        self._karma_delta: int | None = None
        self._session = TrialSession(
            archetype,
            rng=rng,
            scheduler=self._scheduler,
            present_ms=present_ms,
            reveal_ms=reveal_ms,
            response_window_ms=response_window_ms,
            session_id=session_id,
            on_reveal=on_reveal,
            on_complete=self._trial_completed,
        )

    @property
    def session(self) -> TrialSession:
        return self._session

    @property
    def karma_delta(self) -> int | None:
        return self._karma_delta

    def explain(self) -> bool:
        if self._status is not ChallengeStatus.READY:
            return False
        return self._session.show_explanation()

    def start(self) -> None:
        if self._status is not ChallengeStatus.READY:
            return
        super().start()
        self._session.begin()

    def submit_response(self, symbol: str) -> bool:
        if self._status is not ChallengeStatus.RUNNING or not self._still_running():
            return False
        return self._session.submit_response(symbol)

    def cancel(self) -> bool:
        cancelled = super().cancel()
        if cancelled:
            self._session.cancel()
        return cancelled

    def _trial_completed(self, result: TrialResult) -> None:
        if self._status is not ChallengeStatus.RUNNING or not self._still_running():
            return
        time_left = self._countdown.remaining_ms()
        self._karma_delta = self._ledger.record(result)
        success = result.correct_count > result.expected_correct
        self._resolve(ChallengeStatus.COMPLETED, success=success, time_left_ms=time_left)
        if self._on_complete is not None:
            self._on_complete(result, time_left)

    def _after_expiry(self) -> None:
        self._session.cancel()
        if self._on_failure is not None:
            self._on_failure()
