from __future__ import annotations

from dataclasses import dataclass

import pytest

from psicose.clock import TimerQueue
from psicose.core import SeededRng
from psicose.feedback import FeedbackTier, feedback_tier
from psicose.trials import (
    ARCHETYPES,
    EMOTIONAL_READING,
    PRECOGNITION,
    REMOTE_VIEWING,
    ZENER,
    Archetype,
    Reveal,
    TrialSession,
    TrialStage,
    generate_targets,
    score_trial,
)


@dataclass
class FakeClock:
    ms: int = 0

    def now(self) -> float:
        return self.ms / 1000.0

    def advance(self, dt_ms: int) -> None:
        self.ms += dt_ms


def _wrong(symbols: tuple[str, ...], target: str) -> str:
    return next(s for s in symbols if s != target)


def test_archetype_catalogue() -> None:
    assert (ZENER.round_count, ZENER.expected_chance) == (25, 0.2)
    assert (PRECOGNITION.round_count, PRECOGNITION.expected_chance) == (10, 0.25)
    assert (REMOTE_VIEWING.round_count, REMOTE_VIEWING.expected_chance) == (5, 0.2)
    assert (EMOTIONAL_READING.round_count, EMOTIONAL_READING.expected_chance) == (8, 0.25)
    assert set(ARCHETYPES) == {"zener", "precognition", "remote_viewing", "emotional_reading"}
    assert ZENER.glyph("circle") == "○"
    assert REMOTE_VIEWING.glyph("forest") == "forest"
    assert ZENER.glyph(None) == "-"
    assert ZENER.option_label("circle") == "○ circle"
    assert REMOTE_VIEWING.option_label("forest") == "forest"


def test_archetype_rejects_duplicate_symbols() -> None:
    with pytest.raises(ValueError):
        Archetype(code="x", title="X", round_count=3, symbols=("a", "a"))


def test_scoring_ten_of_twenty_five_at_one_in_five() -> None:
    targets = ["circle"] * 25
    responses = ["circle"] * 10 + ["square"] * 15
    s = score_trial(targets, responses, 0.2)

    assert s.correct_count == 10
    assert s.expected_correct == pytest.approx(5.0)
    assert s.score == pytest.approx(5.0)
    assert s.percent_above_chance == pytest.approx(100.0)
    assert s.tier is FeedbackTier.EXTRAORDINARY
    assert s.above_chance is True


def test_scoring_never_goes_negative() -> None:
    s = score_trial(["a"] * 25, ["a"] * 3 + ["b"] * 22, 0.2)
    assert s.score == 0.0
    assert s.percent_above_chance == pytest.approx(-40.0)
    assert s.tier is FeedbackTier.WITHIN_CHANCE
    assert s.above_chance is False


def test_scoring_with_no_expected_hits_is_zero() -> None:
    empty = score_trial([], [], 0.2)
    assert (empty.score, empty.percent_above_chance) == (0.0, 0.0)

    no_chance = score_trial(["a", "b"], ["a", "b"], 0.0)
    assert (no_chance.score, no_chance.percent_above_chance) == (0.0, 0.0)


def test_missing_responses_count_as_misses() -> None:
    s = score_trial(["a", "b", "c"], ["a", None, "c"], 0.5)
    assert s.correct_count == 2


@pytest.mark.parametrize(
    ("pct", "tier"),
    [
        (50.1, FeedbackTier.EXTRAORDINARY),
        (50.0, FeedbackTier.IMPRESSIVE),
        (25.1, FeedbackTier.IMPRESSIVE),
        (25.0, FeedbackTier.SLIGHTLY_ABOVE_CHANCE),
        (0.1, FeedbackTier.SLIGHTLY_ABOVE_CHANCE),
        (0.0, FeedbackTier.WITHIN_CHANCE),
        (-80.0, FeedbackTier.WITHIN_CHANCE),
    ],
)
def test_feedback_tier_boundaries_are_exclusive(pct: float, tier: FeedbackTier) -> None:
    assert feedback_tier(pct) is tier


def test_generate_targets_is_deterministic_for_seed() -> None:
    a = generate_targets(25, ZENER.symbols, SeededRng(123))
    b = generate_targets(25, ZENER.symbols, SeededRng(123))
    assert a == b
    assert len(a) == 25
    assert set(a) <= set(ZENER.symbols)
    assert generate_targets(0, ZENER.symbols, SeededRng(1)) == ()


def test_targets_fixed_at_construction() -> None:
    timers = TimerQueue(FakeClock())
    session = TrialSession(PRECOGNITION, rng=SeededRng(5), scheduler=timers)
    assert session.targets == generate_targets(10, PRECOGNITION.symbols, SeededRng(5))
    assert session.stage is TrialStage.CREATED


def test_round_flow_reveal_then_next_round() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    reveals: list[tuple[Reveal, int]] = []
    session = TrialSession(
        REMOTE_VIEWING,
        rng=SeededRng(3),
        scheduler=timers,
        reveal_ms=1600,
        on_reveal=lambda r: reveals.append((r, len(session.responses))),
    )

    assert session.submit_response(session.targets[0]) is False
    assert session.show_explanation() is True
    assert session.stage is TrialStage.EXPLANATION
    assert session.begin() is True
    assert session.stage is TrialStage.AWAITING_RESPONSE

    assert session.submit_response("not-a-place") is False
    assert session.submit_response(session.targets[0]) is True
    assert session.stage is TrialStage.REVEALED
    assert session.submit_response(session.targets[0]) is False

    reveal, responses_seen = reveals[0]
    assert reveal == Reveal(0, session.targets[0], session.targets[0], True)
    assert responses_seen == 1

    clock.advance(1599)
    timers.update()
    assert session.stage is TrialStage.REVEALED
    clock.advance(1)
    timers.update()
    assert session.stage is TrialStage.AWAITING_RESPONSE
    assert session.current_round == 1


def test_full_session_produces_result_once() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    completed = []
    session = TrialSession(
        PRECOGNITION,
        rng=SeededRng(11),
        scheduler=timers,
        on_complete=completed.append,
    )
    session.begin()
    assert session.compute_result() is None

    for i, target in enumerate(session.targets):
        answer = target if i < 7 else _wrong(PRECOGNITION.symbols, target)
        assert session.submit_response(answer) is True
        clock.advance(1600)
        timers.update()

    assert session.is_complete
    assert len(completed) == 1
    result = completed[0]
    assert result is session.compute_result()
    assert result.correct_count == 7
    assert result.expected_correct == pytest.approx(2.5)
    assert result.score == pytest.approx(4.5)
    assert result.percent_above_chance == pytest.approx(180.0)
    assert result.archetype == "precognition"
    assert result.session_id == session.session_id
    assert len(result.responses) == 10

    assert session.submit_response(session.targets[0]) is False
    assert session.begin() is False


def test_presentation_delay_precedes_response_window() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    presented: list[int] = []
    session = TrialSession(
        EMOTIONAL_READING,
        rng=SeededRng(2),
        scheduler=timers,
        present_ms=500,
        on_present=presented.append,
    )
    session.begin()
    assert presented == [0]
    assert session.stage is TrialStage.PRESENTING
    assert session.submit_response(session.targets[0]) is False

    clock.advance(500)
    timers.update()
    assert session.stage is TrialStage.AWAITING_RESPONSE


def test_response_window_records_a_miss() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    reveals: list[Reveal] = []
    session = TrialSession(
        ZENER.with_rounds(2),
        rng=SeededRng(9),
        scheduler=timers,
        response_window_ms=1000,
        on_reveal=reveals.append,
    )
    session.begin()

    clock.advance(1000)
    timers.update()
    assert session.stage is TrialStage.REVEALED
    assert session.responses == (None,)
    assert reveals[0].is_correct is False

    clock.advance(1600)
    timers.update()
    assert session.submit_response(session.targets[1]) is True
    clock.advance(5000)
    timers.update()
    assert session.is_complete
    assert session.compute_result().correct_count == 1


def test_answer_cancels_the_response_window() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    session = TrialSession(ZENER.with_rounds(1), rng=SeededRng(9), scheduler=timers, response_window_ms=1000)
    session.begin()
    clock.advance(500)
    session.submit_response(session.targets[0])
    clock.advance(600)
    timers.update()
    assert session.responses == (session.targets[0],)


def test_cancel_mid_reveal_stops_the_session() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    completed = []
    session = TrialSession(ZENER.with_rounds(2), rng=SeededRng(1), scheduler=timers, on_complete=completed.append)
    session.begin()
    session.submit_response(session.targets[0])

    assert session.cancel() is True
    assert session.cancel() is False
    clock.advance(10_000)
    timers.update()
    assert session.stage is TrialStage.CANCELLED
    assert completed == []
    assert session.compute_result() is None


def test_zero_round_session_completes_immediately() -> None:
    timers = TimerQueue(FakeClock())
    completed = []
    session = TrialSession(ZENER.with_rounds(0), rng=SeededRng(1), scheduler=timers, on_complete=completed.append)
    assert session.begin() is True
    assert session.is_complete
    assert completed[0].score == 0.0
    assert completed[0].percent_above_chance == 0.0


def test_session_validates_timings() -> None:
    timers = TimerQueue(FakeClock())
    with pytest.raises(ValueError):
        TrialSession(ZENER, rng=SeededRng(1), scheduler=timers, reveal_ms=-1)
    with pytest.raises(ValueError):
        TrialSession(ZENER, rng=SeededRng(1), scheduler=timers, response_window_ms=0)
