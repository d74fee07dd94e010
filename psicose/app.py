"""Pygame shell for the timed challenges and psi trials.

The shell owns the frame loop, pumps the timer queue once per frame, renders
snapshots of the core objects and forwards key presses. Timing, scoring, RNG
and state live in psicose/* core modules.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .challenge import ChallengeConfig, ChallengeStatus, TimedChallenge, TrialChallenge
from .clock import Clock, RealClock, TimerQueue
from .config import Settings
from .core import SeededRng, new_seed
from .countdown import ClockLevel, CountdownSnapshot
from .distraction import DistractionSnapshot
from .feedback import results_lines
from .ledger import GameContext, ScoreLedger
from .persistence import OutcomeLog, load_trial_history, record_trial_result
from .trials import ARCHETYPES, Archetype, TrialResult, TrialSession, TrialStage

APP_VERSION = "0.1.0"
WINDOW_SIZE = (960, 640)
TARGET_FPS = 60

BG = (12, 10, 16)
PANEL_BG = (26, 26, 26)
ACCENT = (158, 30, 99)
TEXT_MAIN = (240, 240, 240)
TEXT_MUTED = (170, 170, 180)

LEVEL_COLORS: dict[ClockLevel, tuple[int, int, int]] = {
    ClockLevel.NORMAL: (255, 255, 255),
    ClockLevel.WARNING: (255, 255, 0),
    ClockLevel.CRITICAL: (255, 0, 0),
}

STYLE_COLORS: dict[str, tuple[int, int, int]] = {
    "default": (40, 40, 60),
    "success": (36, 92, 48),
    "warning": (110, 90, 20),
    "danger": (120, 28, 28),
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    """Screen stack for the shell.

    The app owns the timer queue that drives every challenge, so it is pumped
    once per frame here. Popping a screen calls its optional ``leave()`` hook,
    which is where challenge screens cancel whatever is still in flight;
    quitting unwinds the whole stack the same way before the loop stops.
    """

    def __init__(self, surface: pygame.Surface, font: pygame.font.Font, *, timers: TimerQueue) -> None:
        self._surface = surface
        self._font = font
        self._timers = timers
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def depth(self) -> int:
        return len(self._screens)

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # The root menu stays; it owns quit.
        if len(self._screens) <= 1:
            return
        screen = self._screens.pop()
        leave = getattr(screen, "leave", None)
        if leave is not None:
            leave()

    def pop_to_root(self) -> None:
        while len(self._screens) > 1:
            self.pop()

    def quit(self) -> None:
        self.pop_to_root()
        self._timers.clear()
        self._running = False

    def update(self) -> None:
        self._timers.update()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class BannerFeedback:
    """Narrative feedback surface: stacked message cards that expire after a while."""

    def __init__(self, clock: Clock, *, duration_s: float = 4.0, max_items: int = 3) -> None:
        self._clock = clock
        self._duration_s = float(duration_s)
        self._max_items = int(max_items)
        self._items: list[tuple[str, str, float]] = []

    def show(self, text: str, style: str) -> None:
        self._items.append((text, style, self._clock.now() + self._duration_s))
        self._items = self._items[-self._max_items :]

    def clear(self) -> None:
        self._items.clear()

    def render(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        now = self._clock.now()
        self._items = [item for item in self._items if item[2] > now]
        w, h = surface.get_size()
        y = h - 16
        for text, style, _ in reversed(self._items):
            lines = text.split("\n")
            line_h = font.get_linesize()
            box = pygame.Rect(24, 0, w - 48, line_h * len(lines) + 16)
            box.bottom = y
            pygame.draw.rect(surface, STYLE_COLORS.get(style, STYLE_COLORS["default"]), box)
            pygame.draw.rect(surface, TEXT_MUTED, box, 1)
            for i, line in enumerate(lines):
                surface.blit(font.render(line, True, TEXT_MAIN), (box.x + 10, box.y + 8 + i * line_h))
            y = box.y - 8


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        title = self._title_font.render(self._title, True, ACCENT)
        surface.blit(title, title.get_rect(center=(w // 2, 60)))

        y = 130
        for idx, item in enumerate(self._items):
            row = pygame.Rect(w // 2 - 220, y, 440, 40)
            selected = idx == self._selected
            pygame.draw.rect(surface, ACCENT if selected else PANEL_BG, row)
            pygame.draw.rect(surface, TEXT_MUTED, row, 1)
            text = self._item_font.render(item.label, True, TEXT_MAIN)
            surface.blit(text, text.get_rect(center=row.center))
            y += 48

        footer = "Up/Down: Move  |  Enter: Select  |  Esc: Back"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 12)))


def _font(cache: dict[int, pygame.font.Font], size: int) -> pygame.font.Font:
    font = cache.get(size)
    if font is None:
        font = pygame.font.Font(None, size)
        cache[size] = font
    return font


def _draw_countdown(surface: pygame.Surface, snap: CountdownSnapshot, font_cache: dict[int, pygame.font.Font]) -> None:
    font = _font(font_cache, 48)
    text = font.render(snap.text, True, LEVEL_COLORS[snap.level])
    if abs(snap.scale - 1.0) > 1e-3:
        text = pygame.transform.rotozoom(text, 0.0, snap.scale)
    surface.blit(text, text.get_rect(center=(surface.get_width() // 2, 50)))


def _draw_distraction(
    surface: pygame.Surface,
    snap: DistractionSnapshot,
    font_cache: dict[int, pygame.font.Font],
    jitter: random.Random,
) -> None:
    if snap.text is None or snap.alpha <= 0.0:
        return
    size = max(8, int(round(snap.font_size * 1.4)))
    font = _font(font_cache, size)
    cx, cy = surface.get_width() // 2, 130
    alpha = int(snap.alpha * 255)
    if snap.glitch:
        for color, dx in (((0, 255, 255), -3), ((255, 0, 255), 3)):
            ghost = font.render(snap.text, True, color)
            ghost.set_alpha(alpha // 2)
            surface.blit(ghost, ghost.get_rect(center=(cx + dx + jitter.randint(-4, 4), cy)))
    text = font.render(snap.text, True, (255, 0, 0))
    text.set_alpha(alpha)
    surface.blit(text, text.get_rect(center=(cx, cy)))


class TimedChallengeScreen:
    """Pass/fail challenge: type the word before time runs out."""

    def __init__(
        self,
        app: App,
        *,
        challenge_factory: Callable[[Callable[[float], None], Callable[[], None]], TimedChallenge],
        title: str,
        word: str,
        banner: BannerFeedback,
    ) -> None:
        self._app = app
        self._title = title
        self._word = word.upper()
        self._banner = banner
        self._typed = ""
        self._result_text: str | None = None
        self._fonts: dict[int, pygame.font.Font] = {}
        self._jitter = random.Random(0)
        self._challenge = challenge_factory(self._succeeded, self._failed)
        self._challenge.start()

    def _succeeded(self, time_left_ms: float) -> None:
        self._result_text = f"Done with {time_left_ms / 1000.0:.1f}s to spare."
        self._banner.show(self._result_text, "success")

    def _failed(self) -> None:
        self._result_text = "You took too long to react."
        self._banner.show(self._result_text, "danger")

    def leave(self) -> None:
        self._challenge.cancel()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._app.pop()
            return
        if not self._challenge.is_running:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._app.pop()
            return
        if event.key == pygame.K_BACKSPACE:
            self._typed = self._typed[:-1]
            return
        ch = (getattr(event, "unicode", "") or "").upper()
        if ch.isalpha():
            self._typed = (self._typed + ch)[-len(self._word) :]
            if self._typed == self._word:
                self._challenge.complete()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        snap = self._challenge.snapshot()
        _draw_countdown(surface, snap.countdown, self._fonts)
        _draw_distraction(surface, snap.distraction, self._fonts, self._jitter)

        font = self._app.font
        title = font.render(self._title, True, ACCENT)
        surface.blit(title, title.get_rect(center=(w // 2, 220)))
        if snap.status is ChallengeStatus.RUNNING:
            prompt = font.render(f"Type: {self._word}", True, TEXT_MAIN)
            typed = font.render(self._typed or "_", True, TEXT_MUTED)
            surface.blit(prompt, prompt.get_rect(center=(w // 2, 300)))
            surface.blit(typed, typed.get_rect(center=(w // 2, 350)))
        elif self._result_text is not None:
            msg = font.render(self._result_text, True, TEXT_MAIN)
            hint = font.render("Press Enter to continue", True, TEXT_MUTED)
            surface.blit(msg, msg.get_rect(center=(w // 2, 300)))
            surface.blit(hint, hint.get_rect(center=(w // 2, 350)))
        self._banner.render(surface, _font(self._fonts, 24))


class TrialScreen:
    """Psi trial, either stand-alone or wrapped in a timed challenge."""

    def __init__(
        self,
        app: App,
        *,
        archetype: Archetype,
        session: TrialSession,
        challenge: TrialChallenge | None,
        ledger: ScoreLedger,
        banner: BannerFeedback,
    ) -> None:
        self._app = app
        self._archetype = archetype
        self._session = session
        self._challenge = challenge
        self._ledger = ledger
        self._banner = banner
        self._fonts: dict[int, pygame.font.Font] = {}
        self._jitter = random.Random(0)
        self._timed_out = False
        if challenge is not None:
            challenge.explain()
        else:
            session.show_explanation()

    def mark_timed_out(self) -> None:
        self._timed_out = True
        self._banner.show("The cards fade away... time is up.", "danger")

    def _begin(self) -> None:
        if self._challenge is not None:
            self._challenge.start()
        else:
            self._session.begin()

    def _answer(self, symbol: str) -> None:
        if self._challenge is not None:
            self._challenge.submit_response(symbol)
        else:
            self._session.submit_response(symbol)

    def _finished(self) -> bool:
        return self._timed_out or self._session.stage in (TrialStage.COMPLETE, TrialStage.CANCELLED)

    def leave(self) -> None:
        if self._challenge is not None:
            self._challenge.cancel()
        else:
            self._session.cancel()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._app.pop()
            return
        stage = self._session.stage
        if stage in (TrialStage.CREATED, TrialStage.EXPLANATION):
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._begin()
            return
        if self._finished():
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._app.pop()
            return
        if pygame.K_1 <= event.key <= pygame.K_9:
            idx = event.key - pygame.K_1
            if idx < len(self._archetype.symbols):
                self._answer(self._archetype.symbols[idx])

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        font = self._app.font
        small = _font(self._fonts, 24)

        if self._challenge is not None:
            snap = self._challenge.snapshot()
            if snap.status is ChallengeStatus.RUNNING:
                _draw_countdown(surface, snap.countdown, self._fonts)
                _draw_distraction(surface, snap.distraction, self._fonts, self._jitter)

        stage = self._session.stage
        if stage in (TrialStage.CREATED, TrialStage.EXPLANATION):
            self._render_explanation(surface, font, small)
        elif self._finished():
            self._render_results(surface, font, small)
        else:
            self._render_round(surface, font, small)

        karma = small.render(f"Karma: {self._ledger.context.karma:g}", True, TEXT_MUTED)
        surface.blit(karma, (w - karma.get_width() - 16, h - karma.get_height() - 8))
        self._banner.render(surface, small)

    def _render_explanation(self, surface: pygame.Surface, font: pygame.font.Font, small: pygame.font.Font) -> None:
        w, _ = surface.get_size()
        title = font.render(self._archetype.title, True, ACCENT)
        surface.blit(title, title.get_rect(center=(w // 2, 180)))
        y = 230
        for block in (self._archetype.explanation, self._archetype.context, self._archetype.criteria):
            for line in _wrap(block, small, w - 160):
                surface.blit(small.render(line, True, TEXT_MAIN), (80, y))
                y += small.get_linesize()
            y += 12
        hint = small.render("Press Enter to begin", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(center=(w // 2, y + 20)))

    def _render_round(self, surface: pygame.Surface, font: pygame.font.Font, small: pygame.font.Font) -> None:
        w, _ = surface.get_size()
        shown = min(self._session.current_round + 1, self._session.round_count)
        if self._session.stage is TrialStage.REVEALED:
            shown = self._session.current_round
        header = font.render(f"{self._archetype.title}: Round {shown}/{self._session.round_count}", True, ACCENT)
        surface.blit(header, header.get_rect(center=(w // 2, 190)))

        card = pygame.Rect(0, 0, 140, 190)
        card.center = (w // 2, 330)
        reveal = self._session.last_reveal
        if self._session.stage is TrialStage.REVEALED and reveal is not None:
            color = (74, 158, 74) if reveal.is_correct else (158, 74, 74)
            label = self._archetype.glyph(reveal.target)
            caption = reveal.target.upper()
        else:
            color = (51, 51, 51)
            label = "?"
            caption = ""
        pygame.draw.rect(surface, color, card)
        pygame.draw.rect(surface, ACCENT, card, 2)
        face = font.render(label, True, TEXT_MAIN)
        surface.blit(face, face.get_rect(center=card.center))
        if caption:
            name = small.render(caption, True, TEXT_MAIN)
            surface.blit(name, name.get_rect(center=(card.centerx, card.bottom - 24)))

        x = 80
        for idx, symbol in enumerate(self._archetype.symbols):
            opt = small.render(f"{idx + 1}: {self._archetype.option_label(symbol)}", True, TEXT_MAIN)
            surface.blit(opt, (x, 460))
            x += opt.get_width() + 28

    def _render_results(self, surface: pygame.Surface, font: pygame.font.Font, small: pygame.font.Font) -> None:
        w, _ = surface.get_size()
        result = self._session.compute_result()
        if result is None:
            msg = font.render("Challenge failed.", True, TEXT_MAIN)
            surface.blit(msg, msg.get_rect(center=(w // 2, 260)))
        else:
            lines = results_lines(
                title=self._archetype.title,
                correct_count=result.correct_count,
                round_count=result.round_count,
                score=result.score,
                expected_chance=result.expected_chance,
                percent_above_chance=result.percent_above_chance,
            )
            y = 170
            for i, line in enumerate(lines):
                use = font if i == 0 else small
                for part in _wrap(line, use, w - 160):
                    surface.blit(use.render(part, True, ACCENT if i == 0 else TEXT_MAIN), (80, y))
                    y += use.get_linesize()
                y += 6
        hint = small.render("Press Enter to close", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(center=(w // 2, 520)))


def _wrap(text: str, font: pygame.font.Font, max_width: int) -> list[str]:
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = word if current == "" else f"{current} {word}"
        if font.size(candidate)[0] <= max_width or current == "":
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    settings: Settings | None = None,
) -> int:
    settings = settings or Settings.from_env()

    pygame.init()
    pygame.display.set_caption("Juliette Psicose")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    frame_clock = pygame.time.Clock()

    real_clock = RealClock()
    timers = TimerQueue(real_clock)
    app = App(surface=surface, font=font, timers=timers)

    context = GameContext()
    banner = BannerFeedback(real_clock)
    outcome_log = OutcomeLog(settings.outcome_log_path)

    def persist(result: TrialResult) -> None:
        record_trial_result(db_path=settings.db_path, result=result, app_version=APP_VERSION)

    ledger = ScoreLedger(
        context,
        karma_multiplier=settings.karma_multiplier,
        feedback=banner,
        history=load_trial_history(settings.db_path),
        on_record=persist,
    )

    def rng() -> SeededRng:
        return SeededRng(settings.seed if settings.seed is not None else new_seed())

    def open_timed(title: str, word: str, duration_ms: float, success_karma: float, failure_karma: float) -> None:
        def factory(on_success: Callable[[float], None], on_failure: Callable[[], None]) -> TimedChallenge:
            return TimedChallenge(
                clock=real_clock,
                scheduler=timers,
                rng=rng(),
                context=context,
                outcome_log=outcome_log,
                config=ChallengeConfig(
                    duration_ms=duration_ms,
                    success_karma=success_karma,
                    failure_karma=failure_karma,
                ),
                challenge_id=f"{context.current_episode}: {title}",
                on_success=on_success,
                on_failure=on_failure,
            )

        app.push(TimedChallengeScreen(app, challenge_factory=factory, title=title, word=word, banner=banner))

    def open_trial(code: str) -> None:
        archetype = ARCHETYPES[code]
        session = TrialSession(
            archetype,
            rng=rng(),
            scheduler=timers,
            on_complete=lambda result: ledger.record(result),
        )
        app.push(TrialScreen(app, archetype=archetype, session=session, challenge=None, ledger=ledger, banner=banner))

    def open_timed_trial(code: str, duration_ms: float) -> None:
        archetype = ARCHETYPES[code]
        screen: list[TrialScreen] = []
        challenge = TrialChallenge(
            archetype,
            clock=real_clock,
            scheduler=timers,
            rng=rng(),
            ledger=ledger,
            outcome_log=outcome_log,
            config=ChallengeConfig(duration_ms=duration_ms),
            challenge_id=f"{context.current_episode}: {archetype.title}",
            on_failure=lambda: screen[0].mark_timed_out() if screen else None,
        )
        screen.append(
            TrialScreen(
                app,
                archetype=archetype,
                session=challenge.session,
                challenge=challenge,
                ledger=ledger,
                banner=banner,
            )
        )
        app.push(screen[0])

    trials_menu = MenuScreen(
        app,
        "Psi Trials",
        [
            MenuItem("Zener Cards", lambda: open_trial("zener")),
            MenuItem("Zener Cards (against the clock)", lambda: open_timed_trial("zener", 90_000.0)),
            MenuItem("Precognition", lambda: open_trial("precognition")),
            MenuItem("Remote Viewing", lambda: open_trial("remote_viewing")),
            MenuItem("Emotional Reading", lambda: open_trial("emotional_reading")),
            MenuItem("Back", app.pop),
        ],
    )

    main_items = [
        MenuItem("The Mirror (45s)", lambda: open_timed("The Mirror", "REFLECT", 45_000.0, 2.0, -1.0)),
        MenuItem("The Door (30s)", lambda: open_timed("The Door", "ESCAPE", 30_000.0, 1.0, -2.0)),
        MenuItem("Psi Trials", lambda: app.push(trials_menu)),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "No Espelho da Mente", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            app.update()

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        app.quit()
        pygame.quit()

    return 0
