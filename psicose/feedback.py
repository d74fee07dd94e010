from __future__ import annotations

from enum import Enum
from typing import Protocol


class FeedbackSink(Protocol):
    """Narrative surface: shows a message with a style tag ("default", "success", "warning", "danger")."""

    def show(self, text: str, style: str) -> None: ...


class SpeechSink(Protocol):
    def speak(self, text: str) -> None: ...


class FeedbackTier(str, Enum):
    EXTRAORDINARY = "extraordinary"
    IMPRESSIVE = "impressive"
    SLIGHTLY_ABOVE_CHANCE = "slightly above chance"
    WITHIN_CHANCE = "within chance"


# Lower bounds are exclusive; other components gate on these numbers.
EXTRAORDINARY_ABOVE_PCT = 50.0
IMPRESSIVE_ABOVE_PCT = 25.0
ABOVE_CHANCE_PCT = 0.0

TIER_ANALYSIS: dict[FeedbackTier, str] = {
    FeedbackTier.EXTRAORDINARY: (
        "Extraordinary! Your extrasensory perception is remarkable. "
        "You showed an exceptional connection with the unseen."
    ),
    FeedbackTier.IMPRESSIVE: (
        "Impressive! Your performance was well above what chance predicts. "
        "You have latent abilities worth exploring."
    ),
    FeedbackTier.SLIGHTLY_ABOVE_CHANCE: (
        "Interesting. Your performance was slightly above chance. "
        "There are signs of a sensitivity that can be developed."
    ),
    FeedbackTier.WITHIN_CHANCE: (
        "Your performance was within what chance predicts. That does not mean "
        "the ability is absent, only that it may be dormant for now."
    ),
}

TIER_STYLE: dict[FeedbackTier, str] = {
    FeedbackTier.EXTRAORDINARY: "success",
    FeedbackTier.IMPRESSIVE: "success",
    FeedbackTier.SLIGHTLY_ABOVE_CHANCE: "default",
    FeedbackTier.WITHIN_CHANCE: "warning",
}


def feedback_tier(percent_above_chance: float) -> FeedbackTier:
    if percent_above_chance > EXTRAORDINARY_ABOVE_PCT:
        return FeedbackTier.EXTRAORDINARY
    if percent_above_chance > IMPRESSIVE_ABOVE_PCT:
        return FeedbackTier.IMPRESSIVE
    if percent_above_chance > ABOVE_CHANCE_PCT:
        return FeedbackTier.SLIGHTLY_ABOVE_CHANCE
    return FeedbackTier.WITHIN_CHANCE


def results_lines(
    *,
    title: str,
    correct_count: int,
    round_count: int,
    score: float,
    expected_chance: float,
    percent_above_chance: float,
) -> list[str]:
    expected_correct = round_count * expected_chance
    hit_pct = 0.0 if round_count == 0 else correct_count / round_count * 100.0
    sign = "+" if percent_above_chance > 0 else ""
    tier = feedback_tier(percent_above_chance)
    return [
        f"Results: {title}",
        f"Score: {score:.1f} ({correct_count} of {round_count} hits)",
        f"Hits: {correct_count} of {round_count} ({hit_pct:.1f}%)",
        f"Expected by chance: {expected_correct:.1f} ({expected_chance * 100:.0f}%)",
        f"Performance: {sign}{percent_above_chance:.1f}% relative to chance",
        TIER_ANALYSIS[tier],
    ]


def karma_message(delta: int) -> str:
    return f"Karma +{delta}: Your extrasensory perception has strengthened your destiny."


class CollectingFeedback:
    """Feedback + speech sink that keeps everything it receives (headless runs, tests)."""

    def __init__(self) -> None:
        self.shown: list[tuple[str, str]] = []
        self.spoken: list[str] = []

    def show(self, text: str, style: str) -> None:
        self.shown.append((text, style))

    def speak(self, text: str) -> None:
        self.spoken.append(text)
