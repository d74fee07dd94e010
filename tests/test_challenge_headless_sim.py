from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from psicose.challenge import ChallengeConfig, ChallengeStatus, TimedChallenge, TrialChallenge
from psicose.clock import TimerQueue
from psicose.core import SeededRng
from psicose.distraction import delays_for_intensity
from psicose.ledger import GameContext, ScoreLedger
from psicose.persistence import MemoryOutcomeLog, record_trial_result
from psicose.trials import PRECOGNITION, TrialStage


@dataclass
class FakeClock:
    ms: int = 0

    def now(self) -> float:
        return self.ms / 1000.0

    def advance(self, dt_ms: int) -> None:
        self.ms += dt_ms


def _run_for(clock: FakeClock, timers: TimerQueue, total_ms: int, step_ms: int = 50) -> None:
    for _ in range(total_ms // step_ms):
        clock.advance(step_ms)
        timers.update()


@dataclass
class Calls:
    successes: list[float]
    failures: int = 0

    def success(self, time_left: float) -> None:
        self.successes.append(time_left)

    def failure(self) -> None:
        self.failures += 1


def _timed(
    config: ChallengeConfig,
    *,
    context: GameContext | None = None,
) -> tuple[FakeClock, TimerQueue, TimedChallenge, MemoryOutcomeLog, Calls]:
    clock = FakeClock()
    timers = TimerQueue(clock)
    log = MemoryOutcomeLog()
    calls = Calls(successes=[])
    challenge = TimedChallenge(
        clock=clock,
        scheduler=timers,
        rng=SeededRng(42),
        context=context or GameContext(),
        outcome_log=log,
        config=config,
        challenge_id="The Door",
        on_success=calls.success,
        on_failure=calls.failure,
    )
    return clock, timers, challenge, log, calls


def test_unfinished_challenge_expires_once() -> None:
    clock, timers, challenge, log, calls = _timed(ChallengeConfig(duration_ms=30_000))
    challenge.start()

    _run_for(clock, timers, 29_950)
    assert challenge.is_running
    assert calls.failures == 0

    _run_for(clock, timers, 50)
    assert challenge.status is ChallengeStatus.EXPIRED
    assert calls.failures == 1
    assert calls.successes == []

    _run_for(clock, timers, 10_000)
    assert calls.failures == 1

    records = log.records()
    assert len(records) == 1
    assert records[0].challenge_id == "The Door"
    assert records[0].success is False
    assert records[0].time_left_ms == 0.0
    assert records[0].to_dict()["timeLeft"] == 0.0
    assert timers.pending() == 0


def test_distraction_intensity_rises_with_elapsed_time() -> None:
    clock, timers, challenge, _, _ = _timed(ChallengeConfig(duration_ms=30_000))
    challenge.start()
    assert challenge.distraction.intensity == 0.0

    _run_for(clock, timers, 15_000)
    assert challenge.distraction.intensity == pytest.approx(0.5)
    lo, hi, _ = delays_for_intensity(0.5, ChallengeConfig().distraction)
    assert (lo, hi) == (6000, 12_500)
    assert (challenge.distraction.min_delay_ms, challenge.distraction.max_delay_ms) == (lo, hi)

    _run_for(clock, timers, 12_000)
    assert challenge.distraction.intensity == pytest.approx(0.9)


def test_completion_before_expiry_succeeds_once() -> None:
    context = GameContext(karma=0)
    clock, timers, challenge, log, calls = _timed(
        ChallengeConfig(duration_ms=30_000, success_karma=1.0, failure_karma=-2.0),
        context=context,
    )
    challenge.start()
    _run_for(clock, timers, 10_000)

    assert challenge.complete() is True
    assert challenge.complete() is False
    assert challenge.status is ChallengeStatus.COMPLETED
    assert calls.successes == [pytest.approx(20_000.0)]
    assert challenge.time_left_ms == pytest.approx(20_000.0)
    assert context.karma == 1.0

    _run_for(clock, timers, 30_000)
    assert calls.failures == 0
    assert [r.success for r in log.records()] == [True]
    assert log.records()[0].time_left_ms == pytest.approx(20_000.0)


def test_failure_karma_applies_on_expiry() -> None:
    context = GameContext(karma=3)
    clock, timers, challenge, _, _ = _timed(
        ChallengeConfig(duration_ms=1000, success_karma=2.0, failure_karma=-1.0),
        context=context,
    )
    challenge.start()
    _run_for(clock, timers, 1000)
    assert context.karma == 2


def test_complete_after_deadline_is_rejected_even_before_update() -> None:
    clock, timers, challenge, log, calls = _timed(ChallengeConfig(duration_ms=5000))
    challenge.start()

    clock.advance(6000)
    assert challenge.complete() is False
    assert calls.failures == 1
    assert calls.successes == []
    assert [r.success for r in log.records()] == [False]


def test_complete_before_start_is_rejected() -> None:
    _, _, challenge, log, _ = _timed(ChallengeConfig(duration_ms=5000))
    assert challenge.complete() is False
    assert log.records() == []


def test_cancel_records_nothing() -> None:
    clock, timers, challenge, log, calls = _timed(ChallengeConfig(duration_ms=5000))
    challenge.start()
    _run_for(clock, timers, 1000)

    assert challenge.cancel() is True
    assert challenge.cancel() is False
    _run_for(clock, timers, 10_000)
    assert challenge.status is ChallengeStatus.CANCELLED
    assert calls.failures == 0
    assert log.records() == []
    assert timers.pending() == 0


def test_snapshot_reflects_countdown_and_status() -> None:
    clock, timers, challenge, _, _ = _timed(ChallengeConfig(duration_ms=30_000))
    assert challenge.snapshot().status is ChallengeStatus.READY
    challenge.start()

    snap = challenge.snapshot()
    assert snap.status is ChallengeStatus.RUNNING
    assert snap.countdown.text == "00:30"
    assert snap.challenge_id == "The Door"

    _run_for(clock, timers, 21_000)
    assert challenge.snapshot().countdown.level.value == "critical"


def _trial_challenge(duration_ms: float) -> tuple[FakeClock, TimerQueue, TrialChallenge, ScoreLedger, MemoryOutcomeLog, list]:
    clock = FakeClock()
    timers = TimerQueue(clock)
    log = MemoryOutcomeLog()
    ledger = ScoreLedger(GameContext())
    events: list = []
    challenge = TrialChallenge(
        PRECOGNITION,
        clock=clock,
        scheduler=timers,
        rng=SeededRng(8),
        ledger=ledger,
        outcome_log=log,
        config=ChallengeConfig(duration_ms=duration_ms),
        challenge_id="Precognition",
        on_complete=lambda result, time_left: events.append(("complete", result, time_left)),
        on_failure=lambda: events.append(("failure",)),
    )
    return clock, timers, challenge, ledger, log, events


def test_trial_challenge_feeds_the_ledger() -> None:
    clock, timers, challenge, ledger, log, events = _trial_challenge(60_000)
    assert challenge.explain() is True
    challenge.start()
    session = challenge.session

    for target in session.targets:
        assert challenge.submit_response(target) is True
        _run_for(clock, timers, 1600)

    assert challenge.status is ChallengeStatus.COMPLETED
    kind, result, time_left = events[0]
    assert kind == "complete"
    assert result.correct_count == 10
    assert time_left == pytest.approx(60_000 - 16_000)
    assert challenge.karma_delta == 15
    assert ledger.context.karma == 15
    assert [r.success for r in log.records()] == [True]

    _run_for(clock, timers, 60_000)
    assert len(events) == 1


def test_trial_challenge_at_chance_is_not_a_success() -> None:
    clock, timers, challenge, ledger, log, _ = _trial_challenge(60_000)
    challenge.start()
    session = challenge.session
    hits = 0
    for target in session.targets:
        if hits < 2:
            answer = target
            hits += 1
        else:
            answer = next(s for s in PRECOGNITION.symbols if s != target)
        challenge.submit_response(answer)
        _run_for(clock, timers, 1600)

    assert challenge.status is ChallengeStatus.COMPLETED
    assert ledger.total_attempts == 10
    assert [r.success for r in log.records()] == [False]


def test_trial_challenge_timeout_cancels_trial_and_skips_ledger() -> None:
    clock, timers, challenge, ledger, log, events = _trial_challenge(5000)
    challenge.start()
    challenge.submit_response(challenge.session.targets[0])

    _run_for(clock, timers, 5000)

    assert events == [("failure",)]
    assert challenge.status is ChallengeStatus.EXPIRED
    assert challenge.session.stage is TrialStage.CANCELLED
    assert ledger.total_attempts == 0
    assert ledger.context.karma == 0
    assert [(r.success, r.time_left_ms) for r in log.records()] == [(False, 0.0)]
    assert challenge.submit_response(PRECOGNITION.symbols[0]) is False


def test_trial_challenge_completes_when_history_database_cannot_be_written(tmp_path: Path) -> None:
    db_path = tmp_path / "missing-dir" / "trials.sqlite3"
    clock = FakeClock()
    timers = TimerQueue(clock)
    log = MemoryOutcomeLog()
    ledger = ScoreLedger(
        GameContext(),
        on_record=lambda result: record_trial_result(db_path=db_path, result=result, app_version="test"),
    )
    events: list = []
    challenge = TrialChallenge(
        PRECOGNITION,
        clock=clock,
        scheduler=timers,
        rng=SeededRng(8),
        ledger=ledger,
        outcome_log=log,
        config=ChallengeConfig(duration_ms=60_000),
        challenge_id="Precognition",
        on_complete=lambda result, time_left: events.append(("complete", result.correct_count)),
        on_failure=lambda: events.append(("failure",)),
    )
    challenge.start()
    for target in challenge.session.targets:
        challenge.submit_response(target)
        _run_for(clock, timers, 1600)

    assert challenge.status is ChallengeStatus.COMPLETED
    assert events == [("complete", 10)]
    assert ledger.context.karma == 15
    assert [r.success for r in log.records()] == [True]
    assert not db_path.exists()

    _run_for(clock, timers, 60_000)
    assert events == [("complete", 10)]
    assert len(log.records()) == 1
