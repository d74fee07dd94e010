"""Multi-round psi trials scored against the random-chance baseline.

A trial is fully described by an ``Archetype`` (round count, symbol set and
presentation text). Targets are drawn before the first round and never change;
the subject's responses are compared against them one round at a time.

The round flow is a small state machine over ``TrialState``:

    CREATED -> EXPLANATION -> PRESENTING -> AWAITING_RESPONSE -> REVEALED
                                  ^                                  |
                                  +----------- next round -----------+
                                                                     |
                                                                 COMPLETE

Transitions are pure functions returning ``(state, effects)``; ``TrialSession``
applies them and performs the effects on the host scheduler.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from .clock import Scheduler, TimerHandle
from .core import RandomSource
from .feedback import FeedbackTier, feedback_tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Archetype:
    code: str
    title: str
    round_count: int
    symbols: tuple[str, ...]
    glyphs: dict[str, str] = field(default_factory=dict)
    explanation: str = ""
    context: str = ""
    criteria: str = ""

    def __post_init__(self) -> None:
        if self.round_count < 0:
            raise ValueError("round_count must be >= 0")
        if len(set(self.symbols)) != len(self.symbols):
            raise ValueError("symbols must be unique")

    @property
    def expected_chance(self) -> float:
        return 0.0 if not self.symbols else 1.0 / len(self.symbols)

    def glyph(self, symbol: str | None) -> str:
        if symbol is None:
            return "-"
        return self.glyphs.get(symbol, symbol)

    def option_label(self, symbol: str) -> str:
        glyph = self.glyph(symbol)
        return symbol if glyph == symbol else f"{glyph} {symbol}"

    def with_rounds(self, round_count: int) -> "Archetype":
        return replace(self, round_count=int(round_count))


ZENER = Archetype(
    code="zener",
    title="Zener Card Test",
    round_count=25,
    symbols=("circle", "square", "triangle", "plus", "waves"),
    glyphs={"circle": "○", "square": "□", "triangle": "△", "plus": "+", "waves": "∿"},
    explanation=(
        "Guess which symbol is on the face-down card. There are five possible "
        "symbols: circle, square, triangle, plus and waves."
    ),
    context=(
        "Zener cards were designed by psychologist Karl Zener in the 1930s to test "
        "ESP in the laboratory, and were used in J.B. Rhine's experiments at Duke University."
    ),
    criteria=(
        "More than 7 hits in 25 guesses is above random chance (20%). Every hit raises "
        "your karma; extraordinary results (more than 10 hits) reveal new visions."
    ),
)

PRECOGNITION = Archetype(
    code="precognition",
    title="Precognition Test",
    round_count=10,
    symbols=("sun", "moon", "star", "eye"),
    glyphs={"sun": "☉", "moon": "☾", "star": "★", "eye": "◉"},
    explanation=(
        "Predict which image the machine will draw at random in the next few seconds. "
        "Concentrate and choose the image you feel will appear."
    ),
    context=(
        "Precognition tests measure the ability to anticipate future events, as explored "
        "with random number generators at Princeton's PEAR laboratory."
    ),
    criteria="More than 4 correct predictions in 10 attempts is above random chance (25%).",
)

REMOTE_VIEWING = Archetype(
    code="remote_viewing",
    title="Remote Viewing Test",
    round_count=5,
    symbols=("lighthouse", "forest", "cathedral", "desert", "harbor"),
    explanation=(
        "Try to 'see' a distant place using only your mind. Focus on the unknown target "
        "and choose the location that best matches your impression."
    ),
    context=(
        "Remote viewing was studied by government programs such as the Stargate Project, "
        "developed at Stanford in the 1970s."
    ),
    criteria="Each target has five candidate locations; chance is 20%.",
)

EMOTIONAL_READING = Archetype(
    code="emotional_reading",
    title="Emotional Reading Test",
    round_count=8,
    symbols=("joy", "sadness", "fear", "anger"),
    explanation=(
        "Sense the emotion of a person in a hidden photograph. Focus on the emotional "
        "energy and choose the emotion you perceive."
    ),
    context=(
        "Emotional reading, or psychic empathy, draws on the idea that emotions leave "
        "patterns that sensitive people can detect at a distance."
    ),
    criteria="More than 3 correct readings in 8 attempts is above random chance (25%).",
)

ARCHETYPES: dict[str, Archetype] = {
    a.code: a for a in (ZENER, PRECOGNITION, REMOTE_VIEWING, EMOTIONAL_READING)
}


class TrialStage(str, Enum):
    CREATED = "created"
    EXPLANATION = "explanation"
    PRESENTING = "presenting"
    AWAITING_RESPONSE = "awaiting_response"
    REVEALED = "revealed"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class TrialState:
    symbols: tuple[str, ...]
    targets: tuple[str, ...]
    responses: tuple[str | None, ...] = ()
    stage: TrialStage = TrialStage.CREATED

    @property
    def round_count(self) -> int:
        return len(self.targets)

    @property
    def current_round(self) -> int:
        return len(self.responses)


@dataclass(frozen=True, slots=True)
class Present:
    round_index: int


@dataclass(frozen=True, slots=True)
class AwaitResponse:
    round_index: int


@dataclass(frozen=True, slots=True)
class Reveal:
    round_index: int
    response: str | None
    target: str
    is_correct: bool


@dataclass(frozen=True, slots=True)
class Complete:
    pass


TrialEffect = Present | AwaitResponse | Reveal | Complete
Transition = tuple[TrialState, tuple[TrialEffect, ...]]


def generate_targets(round_count: int, symbols: Sequence[str], rng: RandomSource) -> tuple[str, ...]:
    """Independent uniform draws (with replacement) from ``symbols``."""

    if round_count <= 0 or not symbols:
        return ()
    pool = list(symbols)
    return tuple(pool[rng.randint(0, len(pool) - 1)] for _ in range(int(round_count)))


def show_explanation(state: TrialState) -> Transition:
    if state.stage is not TrialStage.CREATED:
        return state, ()
    return replace(state, stage=TrialStage.EXPLANATION), ()


def begin(state: TrialState) -> Transition:
    if state.stage not in (TrialStage.CREATED, TrialStage.EXPLANATION):
        return state, ()
    if state.round_count == 0:
        return replace(state, stage=TrialStage.COMPLETE), (Complete(),)
    return replace(state, stage=TrialStage.PRESENTING), (Present(state.current_round),)


def finish_presenting(state: TrialState) -> Transition:
    if state.stage is not TrialStage.PRESENTING:
        return state, ()
    return replace(state, stage=TrialStage.AWAITING_RESPONSE), (AwaitResponse(state.current_round),)


def _answer(state: TrialState, response: str | None) -> Transition:
    index = state.current_round
    target = state.targets[index]
    revealed = replace(state, responses=state.responses + (response,), stage=TrialStage.REVEALED)
    return revealed, (Reveal(index, response, target, response is not None and response == target),)


def respond(state: TrialState, symbol: str) -> Transition:
    if state.stage is not TrialStage.AWAITING_RESPONSE or symbol not in state.symbols:
        return state, ()
    return _answer(state, symbol)


def timeout_round(state: TrialState) -> Transition:
    if state.stage is not TrialStage.AWAITING_RESPONSE:
        return state, ()
    return _answer(state, None)


def finish_reveal(state: TrialState) -> Transition:
    if state.stage is not TrialStage.REVEALED:
        return state, ()
    if state.current_round >= state.round_count:
        return replace(state, stage=TrialStage.COMPLETE), (Complete(),)
    return replace(state, stage=TrialStage.PRESENTING), (Present(state.current_round),)


def cancel(state: TrialState) -> Transition:
    if state.stage in (TrialStage.COMPLETE, TrialStage.CANCELLED):
        return state, ()
    return replace(state, stage=TrialStage.CANCELLED), ()


@dataclass(frozen=True, slots=True)
class TrialScore:
    round_count: int
    correct_count: int
    expected_chance: float
    expected_correct: float
    score: float
    percent_above_chance: float

    @property
    def tier(self) -> FeedbackTier:
        return feedback_tier(self.percent_above_chance)

    @property
    def above_chance(self) -> bool:
        return self.correct_count > self.expected_correct


def score_trial(
    targets: Sequence[str],
    responses: Sequence[str | None],
    expected_chance: float,
) -> TrialScore:
    round_count = len(targets)
    correct = sum(1 for t, r in zip(targets, responses) if r is not None and r == t)
    expected_correct = round_count * float(expected_chance)
    if expected_correct <= 0.0:
        score = 0.0
        percent = 0.0
    else:
        score = max(0.0, correct - expected_correct)
        percent = (correct / expected_correct - 1.0) * 100.0
    return TrialScore(
        round_count=round_count,
        correct_count=correct,
        expected_chance=float(expected_chance),
        expected_correct=expected_correct,
        score=score,
        percent_above_chance=percent,
    )


@dataclass(frozen=True, slots=True)
class TrialResult:
    """Completed-session record kept by the score ledger."""

    session_id: str
    archetype: str
    round_count: int
    correct_count: int
    score: float
    expected_chance: float
    percent_above_chance: float
    timestamp: str
    targets: tuple[str, ...] = ()
    responses: tuple[str | None, ...] = ()

    @property
    def expected_correct(self) -> float:
        return self.round_count * self.expected_chance

    @property
    def tier(self) -> FeedbackTier:
        return feedback_tier(self.percent_above_chance)


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


class TrialSession:
    """Runs one archetype through its rounds on the host scheduler.

    - Targets are fixed at construction from the injected random source.
    - ``submit_response`` records the round before ``on_reveal`` fires, so a
      caller reading ``responses`` mid-reveal sees the answered round.
    - Calls made in the wrong stage return False and change nothing.
    """

    def __init__(
        self,
        archetype: Archetype,
        *,
        rng: RandomSource,
        scheduler: Scheduler,
        present_ms: float = 0.0,
        reveal_ms: float = 1600.0,
        response_window_ms: float | None = None,
        session_id: str | None = None,
        on_present: Callable[[int], None] | None = None,
        on_reveal: Callable[[Reveal], None] | None = None,
        on_complete: Callable[[TrialResult], None] | None = None,
    ) -> None:
        if present_ms < 0 or reveal_ms < 0:
            raise ValueError("present_ms and reveal_ms must be >= 0")
        if response_window_ms is not None and response_window_ms <= 0:
            raise ValueError("response_window_ms must be > 0")

        self._archetype = archetype
        self._scheduler = scheduler
        self._present_ms = float(present_ms)
        self._reveal_ms = float(reveal_ms)
        self._response_window_ms = response_window_ms
        self._session_id = session_id or uuid.uuid4().hex
        self._on_present = on_present
        self._on_reveal = on_reveal
        self._on_complete = on_complete

        targets = generate_targets(archetype.round_count, archetype.symbols, rng)
        self._state = TrialState(symbols=archetype.symbols, targets=targets)
        self._pending: TimerHandle | None = None
        self._last_reveal: Reveal | None = None
        self._result: TrialResult | None = None

    @property
    def archetype(self) -> Archetype:
        return self._archetype

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> TrialState:
        return self._state

    @property
    def stage(self) -> TrialStage:
        return self._state.stage

    @property
    def targets(self) -> tuple[str, ...]:
        return self._state.targets

    @property
    def responses(self) -> tuple[str | None, ...]:
        return self._state.responses

    @property
    def current_round(self) -> int:
        return self._state.current_round

    @property
    def round_count(self) -> int:
        return self._state.round_count

    @property
    def expected_chance(self) -> float:
        return self._archetype.expected_chance

    @property
    def last_reveal(self) -> Reveal | None:
        return self._last_reveal

    @property
    def is_complete(self) -> bool:
        return self._state.stage is TrialStage.COMPLETE

    def show_explanation(self) -> bool:
        return self._apply(show_explanation(self._state))

    def begin(self) -> bool:
        return self._apply(begin(self._state))

    def submit_response(self, symbol: str) -> bool:
        return self._apply(respond(self._state, symbol))

    def cancel(self) -> bool:
        self._scheduler.cancel(self._pending)
        self._pending = None
        return self._apply(cancel(self._state))

    def compute_result(self) -> TrialResult | None:
        if not self.is_complete:
            return None
        if self._result is None:
            s = score_trial(self._state.targets, self._state.responses, self.expected_chance)
            self._result = TrialResult(
                session_id=self._session_id,
                archetype=self._archetype.code,
                round_count=s.round_count,
                correct_count=s.correct_count,
                score=s.score,
                expected_chance=s.expected_chance,
                percent_above_chance=s.percent_above_chance,
                timestamp=_utc_now_iso(),
                targets=self._state.targets,
                responses=self._state.responses,
            )
        return self._result

    def _apply(self, transition: Transition) -> bool:
        new_state, effects = transition
        if new_state is self._state:
            return False
        self._state = new_state
        for effect in effects:
            self._perform(effect)
        return True

    def _perform(self, effect: TrialEffect) -> None:
        if isinstance(effect, Present):
            if self._on_present is not None:
                self._on_present(effect.round_index)
            self._after(self._present_ms, finish_presenting)
        elif isinstance(effect, AwaitResponse):
            if self._response_window_ms is not None:
                self._pending = self._scheduler.call_later(self._response_window_ms, self._round_timed_out)
        elif isinstance(effect, Reveal):
            self._scheduler.cancel(self._pending)
            self._pending = None
            self._last_reveal = effect
            if self._on_reveal is not None:
                self._on_reveal(effect)
            self._after(self._reveal_ms, finish_reveal)
        else:
            result = self.compute_result()
            assert result is not None
            logger.info(
                "trial %s complete: %d/%d hits, score %.2f",
                self._archetype.code,
                result.correct_count,
                result.round_count,
                result.score,
            )
            if self._on_complete is not None:
                self._on_complete(result)

    def _after(self, delay_ms: float, step: Callable[[TrialState], Transition]) -> None:
        if delay_ms <= 0.0:
            self._apply(step(self._state))
            return

        def fire() -> None:
            self._pending = None
            self._apply(step(self._state))

        self._pending = self._scheduler.call_later(delay_ms, fire)

    def _round_timed_out(self) -> None:
        self._pending = None
        self._apply(timeout_round(self._state))
