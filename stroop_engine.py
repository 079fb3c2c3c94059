"""
Stroop Trainer — Core Engine
Challenge generation, difficulty scaling and reaction judging for the
adaptive Stroop training session.
Used by the session state machine; owns no I/O.
"""
# Module docstring: the leaf components of the training engine. Everything here is a pure function of its inputs plus an injected random source / clock

import random
# Imports random for the injectable random source (random.Random instances can be seeded for replay)

import time
# Imports time for the default wall clock used to stamp challenges

import uuid
# Imports uuid to build unique challenge ids from the random source

from dataclasses import dataclass, asdict
# Imports dataclass utilities: frozen records for challenges and round results, asdict() for serialization

from enum import Enum
# Imports Enum for the symbolic color names and answer outcomes

from typing import Callable, Dict, List, Optional, Sequence, Tuple
# Imports type hints for better code documentation and IDE support


# ── Color Palette ─────────────────────────────────────────────

class ColorName(str, Enum):
    """The nine symbolic colors a challenge can use."""

    RED = 'RED'
    BLUE = 'BLUE'
    GREEN = 'GREEN'
    YELLOW = 'YELLOW'
    BLACK = 'BLACK'
    PURPLE = 'PURPLE'
    ORANGE = 'ORANGE'
    PINK = 'PINK'
    CYAN = 'CYAN'

    @classmethod
    def parse(cls, value) -> Optional['ColorName']:
        """Return the matching color for a name (case-insensitive), or None."""
        if isinstance(value, cls):
            return value
            # Already a ColorName, nothing to convert

        if not isinstance(value, str):
            return None
            # Anything that isn't a string can't name a color

        try:
            return cls(value.strip().upper())
            # Accepts 'red', ' Red ' and 'RED' alike
        except ValueError:
            return None
            # Unknown names are reported as None so callers can reject the selection


COLORS: Dict[ColorName, Dict[str, str]] = {
    ColorName.RED:    {'display_name': 'Red',    'hex': '#EF4444'},
    ColorName.BLUE:   {'display_name': 'Blue',   'hex': '#3B82F6'},
    ColorName.GREEN:  {'display_name': 'Green',  'hex': '#22C55E'},
    ColorName.YELLOW: {'display_name': 'Yellow', 'hex': '#EAB308'},
    ColorName.BLACK:  {'display_name': 'White',  'hex': '#F3F4F6'},
    ColorName.PURPLE: {'display_name': 'Purple', 'hex': '#A855F7'},
    ColorName.ORANGE: {'display_name': 'Orange', 'hex': '#F97316'},
    ColorName.PINK:   {'display_name': 'Pink',   'hex': '#EC4899'},
    ColorName.CYAN:   {'display_name': 'Cyan',   'hex': '#06B6D4'},
}
# Palette mapping each symbolic color to its display name and hex code; BLACK renders as a light gray so it stays visible on the dark UI

BASE_COLORS: Tuple[ColorName, ...] = (
    ColorName.RED, ColorName.BLUE, ColorName.GREEN, ColorName.YELLOW, ColorName.BLACK,
)
# The five colors available from the first round of every session

EXTRA_COLORS: Tuple[ColorName, ...] = (
    ColorName.PURPLE, ColorName.ORANGE, ColorName.PINK, ColorName.CYAN,
)
# The four colors unlocked one at a time, in this order, as the streak grows

UNLOCK_MILESTONES: Tuple[int, ...] = (3, 6, 9, 12)
# Streak values at which EXTRA_COLORS[i] is unlocked


class AnswerOutcome(str, Enum):
    """How a round was resolved."""

    SUCCESS = 'success'
    # The ink color was picked

    IMPULSE_ERROR = 'impulse_error'
    # The written word was picked instead of the ink color (Stroop interference)

    WRONG_CHOICE = 'wrong_choice'
    # Neither the ink nor the word was picked, or the round timed out


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Records ───────────────────────────────────────────────────

@dataclass(frozen=True)
class StroopChallenge:
    """A single Stroop trial: a color word printed in an ink color."""

    id: str
    # Unique per challenge

    word: ColorName
    # The word displayed (e.g., "RED"), the distractor

    ink_color: ColorName
    # The ink the word is rendered in, the correct answer

    created_at: int
    # Epoch milliseconds when the challenge was generated

    @property
    def is_congruent(self) -> bool:
        return self.word == self.ink_color

    def to_dict(self) -> dict:
        data = asdict(self)
        data['word'] = self.word.value
        data['ink_color'] = self.ink_color.value
        data['ink_hex'] = COLORS[self.ink_color]['hex']
        # The hex code lets a frontend render the word in the right ink
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'StroopChallenge':
        return cls(
            id=str(data['id']),
            word=ColorName(data['word']),
            ink_color=ColorName(data['ink_color']),
            created_at=int(data.get('created_at', 0)),
        )


@dataclass(frozen=True)
class RoundResult:
    """Immutable record of one resolved round."""

    challenge: StroopChallenge
    selected_color: Optional[ColorName]
    # None when the round timed out without an answer

    outcome: AnswerOutcome
    reaction_time_ms: float
    timestamp: int

    def to_dict(self) -> dict:
        return {
            'challenge': self.challenge.to_dict(),
            'selected_color': self.selected_color.value if self.selected_color else None,
            'outcome': self.outcome.value,
            'reaction_time_ms': self.reaction_time_ms,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RoundResult':
        selected = data.get('selected_color')
        return cls(
            challenge=StroopChallenge.from_dict(data['challenge']),
            selected_color=ColorName(selected) if selected else None,
            outcome=AnswerOutcome(data['outcome']),
            reaction_time_ms=float(data['reaction_time_ms']),
            timestamp=int(data.get('timestamp', 0)),
        )


# ── Challenge Generator ───────────────────────────────────────

class ChallengeGenerator:
    """
    Produces Stroop trials from the currently active colors.

    Word and ink are drawn independently so congruent trials show up
    naturally; the only constraint is that the exact previous pair is
    not repeated back to back.
    """
    # The generator holds nothing but its random source and clock

    MAX_REROLLS = 10
    # Upper bound on re-rolls when the previous pair comes up again

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.rng = rng or random.Random()
        # Injectable random source; pass random.Random(seed) for deterministic replay

        self.clock = clock
        # Wall clock returning epoch milliseconds for created_at

    def generate(
        self,
        active_colors: Sequence[ColorName],
        previous: Optional[StroopChallenge] = None,
    ) -> StroopChallenge:
        """Generate the next challenge, avoiding an exact repeat of `previous`."""
        pool = list(active_colors)
        if not pool:
            raise ValueError('active_colors must not be empty')
            # A challenge needs at least one color to draw from

        word = self.rng.choice(pool)
        ink_color = self.rng.choice(pool)
        # Word and ink are picked independently and uniformly

        if previous is not None:
            for _ in range(self.MAX_REROLLS):
                if (word, ink_color) != (previous.word, previous.ink_color):
                    break
                    # The pair differs from the last trial, keep it
                word = self.rng.choice(pool)
                ink_color = self.rng.choice(pool)
                # Re-rolls both halves; after MAX_REROLLS the repeat is accepted

        return StroopChallenge(
            id=str(uuid.UUID(int=self.rng.getrandbits(128), version=4)),
            # The id comes from the same random source so seeded runs are reproducible

            word=word,
            ink_color=ink_color,
            created_at=self.clock(),
        )

    def shuffle(self, colors: Sequence[ColorName]) -> List[ColorName]:
        """Return a freshly shuffled copy of `colors` (the button order)."""
        order = list(colors)
        self.rng.shuffle(order)
        return order


# ── Difficulty Controller ─────────────────────────────────────

@dataclass(frozen=True)
class TimeoutConfig:
    timeout_ms: int
    speed_level: str


TIMEOUT_TIERS: Tuple[Tuple[int, TimeoutConfig], ...] = (
    (30, TimeoutConfig(1000, '5x')),
    # 30+ streak: one second per answer

    (20, TimeoutConfig(1500, '3.3x')),
    (15, TimeoutConfig(2000, '2.5x')),
    (10, TimeoutConfig(3000, '1.67x')),
    (5,  TimeoutConfig(4000, '1.25x')),

    (0,  TimeoutConfig(5000, '1x')),
    # Base tier: five seconds, always matches
)
# Ordered by descending streak threshold; the first tier whose threshold is reached wins


class TimerZone(str, Enum):
    SAFE = 'safe'
    WARNING = 'warning'
    DANGER = 'danger'


class DifficultyController:
    """Derives the round timeout and unlocked colors from streak history."""

    def timeout_config(self, streak: int) -> TimeoutConfig:
        """Return the timeout tier for the current streak."""
        for min_streak, config in TIMEOUT_TIERS:
            if streak >= min_streak:
                return config
                # First tier whose threshold is reached

        return TIMEOUT_TIERS[-1][1]
        # Negative streaks fall through to the base tier

    def active_colors(self, best_streak: int) -> List[ColorName]:
        """Return the base colors plus every extra color unlocked by `best_streak`."""
        colors = list(BASE_COLORS)
        for milestone, color in zip(UNLOCK_MILESTONES, EXTRA_COLORS):
            if best_streak >= milestone:
                colors.append(color)
                # Unlocks are driven by the best streak, so they never disappear mid-session
        return colors

    def next_unlock(self, best_streak: int) -> Optional[Tuple[int, ColorName]]:
        """Return the next (milestone, color) still locked, or None once all are open."""
        for milestone, color in zip(UNLOCK_MILESTONES, EXTRA_COLORS):
            if best_streak < milestone:
                return milestone, color
        return None

    def timer_zone(self, time_remaining_ms: float, timeout_ms: float) -> TimerZone:
        """Classify the remaining time for the countdown bar."""
        if timeout_ms <= 0:
            return TimerZone.DANGER

        percent_remaining = time_remaining_ms / timeout_ms * 100
        # Remaining share of the round's budget

        if percent_remaining <= 20:
            return TimerZone.DANGER
        if percent_remaining <= 50:
            return TimerZone.WARNING
        return TimerZone.SAFE


# ── Reaction Judge ────────────────────────────────────────────

class ReactionJudge:
    """
    Classifies an answer.

    Decision order (first match wins):
    - no answer, or answered after the timeout: wrong_choice
    - ink color picked: success (also covers congruent trials)
    - the written word picked: impulse_error
    - anything else: wrong_choice
    """

    def judge(
        self,
        challenge: StroopChallenge,
        selected_color: Optional[ColorName],
        elapsed_ms: float,
        timeout_ms: float,
    ) -> AnswerOutcome:
        if selected_color is None or elapsed_ms > timeout_ms:
            return AnswerOutcome.WRONG_CHOICE
            # Timeout: treated as a non-answer

        if selected_color == challenge.ink_color:
            return AnswerOutcome.SUCCESS
            # The player resisted the word and named the ink

        if selected_color == challenge.word:
            return AnswerOutcome.IMPULSE_ERROR
            # The player read the word: the classic Stroop mistake

        return AnswerOutcome.WRONG_CHOICE
        # Neither the ink nor the distractor word

    def reaction_time(
        self,
        elapsed_ms: float,
        timeout_ms: float,
        timed_out: bool = False,
    ) -> float:
        """Reaction time to record; timeouts are pinned to the round's budget."""
        if timed_out or elapsed_ms > timeout_ms:
            return float(timeout_ms)
        return float(max(0.0, elapsed_ms))
