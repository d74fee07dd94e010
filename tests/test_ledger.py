from __future__ import annotations

from dataclasses import dataclass

import pytest

from psicose.clock import TimerQueue
from psicose.core import SeededRng
from psicose.feedback import TIER_ANALYSIS, CollectingFeedback, FeedbackTier, karma_message
from psicose.ledger import GameContext, ScoreLedger
from psicose.trials import ZENER, TrialResult, TrialSession


@dataclass
class FakeClock:
    ms: int = 0

    def now(self) -> float:
        return self.ms / 1000.0

    def advance(self, dt_ms: int) -> None:
        self.ms += dt_ms


def _result(
    session_id: str,
    *,
    correct: int,
    rounds: int,
    chance: float,
    archetype: str = "zener",
) -> TrialResult:
    expected = rounds * chance
    return TrialResult(
        session_id=session_id,
        archetype=archetype,
        round_count=rounds,
        correct_count=correct,
        score=max(0.0, correct - expected),
        expected_chance=chance,
        percent_above_chance=(correct / expected - 1.0) * 100.0,
        timestamp="2026-01-01T00:00:00Z",
    )


def test_zener_twelve_hits_end_to_end() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    context = GameContext(karma=0)
    sink = CollectingFeedback()
    ledger = ScoreLedger(context, feedback=sink, speech=sink)

    session = TrialSession(ZENER, rng=SeededRng(2024), scheduler=timers, on_complete=ledger.record)
    session.begin()
    for i, target in enumerate(session.targets):
        answer = target if i < 12 else next(s for s in ZENER.symbols if s != target)
        session.submit_response(answer)
        clock.advance(1600)
        timers.update()

    result = ledger.last_result()
    assert result is not None
    assert result.correct_count == 12
    assert result.score == pytest.approx(7.0)
    assert context.karma == 14
    assert ledger.total_attempts == 25
    assert ledger.successful_attempts == 12

    (text, style), (karma_text, karma_style) = sink.shown
    assert text.startswith("Results: Zener Card Test")
    assert "Score: 7.0 (12 of 25 hits)" in text
    assert style == "success"
    assert karma_text == karma_message(14)
    assert karma_text.startswith("Karma +14:")
    assert karma_style == "success"
    assert sink.spoken == [TIER_ANALYSIS[FeedbackTier.EXTRAORDINARY]]


def test_record_is_idempotent_per_session() -> None:
    context = GameContext()
    calls: list[TrialResult] = []
    ledger = ScoreLedger(context, on_record=calls.append)
    r = _result("s1", correct=12, rounds=25, chance=0.2)

    assert ledger.record(r) == 14
    assert ledger.record(r) is None
    assert context.karma == 14
    assert ledger.total_attempts == 25
    assert len(ledger.history()) == 1
    assert calls == [r]
    assert ledger.has_recorded("s1")


def test_below_chance_adds_no_karma_and_warns() -> None:
    context = GameContext(karma=5)
    sink = CollectingFeedback()
    ledger = ScoreLedger(context, feedback=sink)

    assert ledger.record(_result("s1", correct=3, rounds=25, chance=0.2)) == 0
    assert context.karma == 5
    assert len(sink.shown) == 1
    assert sink.shown[0][1] == "warning"
    assert sink.spoken == []


def test_karma_delta_is_floored() -> None:
    ledger = ScoreLedger(GameContext(), karma_multiplier=0.5)
    r = _result("s1", correct=10, rounds=10, chance=0.25)
    assert r.score == pytest.approx(7.5)
    assert ledger.karma_delta_for(r) == 3
    assert ledger.record(r) == 3
    assert ledger.context.karma == 3


def test_history_seeds_totals_without_karma() -> None:
    context = GameContext(karma=1)
    old = _result("old", correct=12, rounds=25, chance=0.2)
    ledger = ScoreLedger(context, history=[old])

    assert context.karma == 1
    assert ledger.total_attempts == 25
    assert ledger.record(old) is None


def test_aggregates() -> None:
    ledger = ScoreLedger(GameContext())
    assert ledger.hit_rate() == 0.0
    assert ledger.percent_vs_chance() == 0.0

    ledger.record(_result("a", correct=12, rounds=25, chance=0.2))
    ledger.record(_result("b", correct=4, rounds=10, chance=0.25, archetype="precognition"))

    assert ledger.total_attempts == 35
    assert ledger.successful_attempts == 16
    assert ledger.hit_rate() == pytest.approx(16 / 35)
    assert ledger.percent_vs_chance() == pytest.approx((16 / 7.5 - 1.0) * 100.0)
    assert ledger.last_result().session_id == "b"


def test_unknown_archetype_falls_back_to_code_in_report() -> None:
    sink = CollectingFeedback()
    ledger = ScoreLedger(GameContext(), feedback=sink)
    ledger.record(_result("x", correct=2, rounds=4, chance=0.25, archetype="dream_walk"))
    assert sink.shown[0][0].startswith("Results: dream_walk")


def test_negative_multiplier_rejected() -> None:
    with pytest.raises(ValueError):
        ScoreLedger(GameContext(), karma_multiplier=-1.0)
