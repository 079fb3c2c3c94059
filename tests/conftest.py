"""
Pytest Configuration and Fixtures.

Shared fixtures for the engine, session, statistics, store and API tests.
"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from stroop_engine import (  # noqa: E402
    AnswerOutcome,
    ColorName,
    RoundResult,
    StroopChallenge,
)
from stroop_session import SessionStateMachine  # noqa: E402
from stroop_timing import VirtualTimerService  # noqa: E402

COUNTDOWN_MS = 3000


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def timer():
    return VirtualTimerService()


@pytest.fixture
def machine(timer, rng):
    """A state machine on a virtual clock with a fixed wall clock."""
    return SessionStateMachine(timer=timer, rng=rng, wall_clock=lambda: 1_700_000_000_000,
                               countdown_ms=COUNTDOWN_MS)


@pytest.fixture
def playing(machine, timer):
    """Start a session and run the countdown; returns a function taking total_rounds."""
    def _start(total_rounds=30):
        assert machine.start(total_rounds).ok
        timer.advance(COUNTDOWN_MS)
        return machine
    return _start


def wrong_color(state):
    """A button that is neither the ink nor the word of the current challenge."""
    challenge = state.current_challenge
    return next(c for c in state.button_order if c not in (challenge.ink_color, challenge.word))


def make_round(outcome, reaction_time_ms, word=ColorName.RED, ink=ColorName.BLUE,
               selected=ColorName.BLUE, timestamp=0, challenge_id=None):
    return RoundResult(
        challenge=StroopChallenge(
            id=challenge_id or f'{word.value}-{ink.value}-{reaction_time_ms}-{timestamp}',
            word=word,
            ink_color=ink,
            created_at=timestamp,
        ),
        selected_color=selected,
        outcome=AnswerOutcome(outcome),
        reaction_time_ms=reaction_time_ms,
        timestamp=timestamp,
    )
