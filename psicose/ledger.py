from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .feedback import FeedbackSink, SpeechSink, TIER_STYLE, karma_message, results_lines
from .trials import ARCHETYPES, TrialResult

logger = logging.getLogger(__name__)

DEFAULT_KARMA_MULTIPLIER = 2.0


@dataclass(slots=True)
class GameContext:
    """Shared game state owned by the application; the core only adds karma deltas."""

    karma: float = 0
    current_episode: str = "Vision of Injustice"
    player_name: str = "Juliette"

    def add_karma(self, delta: float) -> float:
        self.karma += delta
        return self.karma


class ScoreLedger:
    """Running totals of completed trials plus their karma adjustment.

    Each session id is accepted once; repeats are ignored and return None.
    """

    def __init__(
        self,
        context: GameContext,
        *,
        karma_multiplier: float = DEFAULT_KARMA_MULTIPLIER,
        feedback: FeedbackSink | None = None,
        speech: SpeechSink | None = None,
        history: Iterable[TrialResult] = (),
        on_record: Callable[[TrialResult], None] | None = None,
    ) -> None:
        if karma_multiplier < 0:
            raise ValueError("karma_multiplier must be >= 0")
        self._context = context
        self._karma_multiplier = float(karma_multiplier)
        self._feedback = feedback
        self._speech = speech
        self._on_record = on_record

        self._history: list[TrialResult] = []
        self._recorded: set[str] = set()
        self._total_attempts = 0
        self._successful_attempts = 0
        for result in history:
            self._accumulate(result)

    @property
    def context(self) -> GameContext:
        return self._context

    @property
    def karma_multiplier(self) -> float:
        return self._karma_multiplier

    @property
    def total_attempts(self) -> int:
        return self._total_attempts

    @property
    def successful_attempts(self) -> int:
        return self._successful_attempts

    def history(self) -> list[TrialResult]:
        return list(self._history)

    def last_result(self) -> TrialResult | None:
        return self._history[-1] if self._history else None

    def has_recorded(self, session_id: str) -> bool:
        return session_id in self._recorded

    def hit_rate(self) -> float:
        if self._total_attempts == 0:
            return 0.0
        return self._successful_attempts / self._total_attempts

    def percent_vs_chance(self) -> float:
        """Aggregate hits relative to the hits chance predicts across all history."""

        expected = sum(r.expected_correct for r in self._history)
        if expected <= 0.0:
            return 0.0
        return (self._successful_attempts / expected - 1.0) * 100.0

    def karma_delta_for(self, result: TrialResult) -> int:
        return int(math.floor(result.score * self._karma_multiplier))

    def record(self, result: TrialResult) -> int | None:
        """Accumulate a completed trial and apply its karma delta. Returns the delta applied."""

        if result.session_id in self._recorded:
            return None
        self._accumulate(result)

        delta = self.karma_delta_for(result)
        self._context.add_karma(delta)
        logger.info(
            "ledger recorded %s (%d/%d), karma %+d -> %s",
            result.archetype,
            result.correct_count,
            result.round_count,
            delta,
            self._context.karma,
        )

        if self._on_record is not None:
            self._on_record(result)
        self._report(result, delta)
        return delta

    def _accumulate(self, result: TrialResult) -> None:
        self._recorded.add(result.session_id)
        self._total_attempts += int(result.round_count)
        self._successful_attempts += int(result.correct_count)
        self._history.append(result)

    def _report(self, result: TrialResult, delta: int) -> None:
        if self._feedback is None and self._speech is None:
            return
        archetype = ARCHETYPES.get(result.archetype)
        lines = results_lines(
            title=archetype.title if archetype is not None else result.archetype,
            correct_count=result.correct_count,
            round_count=result.round_count,
            score=result.score,
            expected_chance=result.expected_chance,
            percent_above_chance=result.percent_above_chance,
        )
        analysis = lines[-1]
        if self._feedback is not None:
            self._feedback.show("\n".join(lines), TIER_STYLE[result.tier])
            if delta > 0:
                self._feedback.show(karma_message(delta), "success")
        if self._speech is not None:
            self._speech.speak(analysis)
