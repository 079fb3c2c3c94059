"""
Stroop Trainer — Session State Machine
Owns the GameState of one training session and sequences its rounds.

States: idle -> countdown -> playing <-> paused -> finished, reset() -> idle.
Commands report failures as CommandResult values instead of raising.
"""
# Module docstring: the only place GameState is mutated; every transition runs under one re-entrant lock

import copy
# Imports copy so read-side accessors can hand out deep copies of the live state

import random
# Imports random for the optional seeded random source passed through to the generator

import threading
# Imports threading for the re-entrant lock that serializes every transition

from dataclasses import dataclass, field
# Imports dataclass utilities for the GameState and CommandResult records

from enum import Enum
# Imports Enum for session statuses and command error codes

from typing import Callable, List, Optional, Set, Tuple
# Imports type hints for better code documentation and IDE support

from loguru import logger
# Imports the loguru logger used for transition and lifecycle messages

from stroop_engine import (
    BASE_COLORS,
    AnswerOutcome,
    ChallengeGenerator,
    ColorName,
    DifficultyController,
    ReactionJudge,
    RoundResult,
    StroopChallenge,
    now_ms,
)
from stroop_stats import SessionStatistics, compute
from stroop_timing import ThreadingTimerService, TimerHandle, TimerService

DEFAULT_TOTAL_ROUNDS = 30
# Rounds per session unless start() is told otherwise

DEFAULT_COUNTDOWN_MS = 3000
# Length of the "3, 2, 1" countdown shown before the first round


class GameStatus(str, Enum):
    IDLE = 'idle'
    # Nothing started yet, or the session was reset

    COUNTDOWN = 'countdown'
    PLAYING = 'playing'
    PAUSED = 'paused'
    # Round timer frozen; answers are rejected

    FINISHED = 'finished'
    # Every round recorded; start() may begin a new session


class CommandError(str, Enum):
    INVALID_SELECTION = 'invalid_selection'
    # submit_answer() with a color that is not on the current buttons

    INVALID_STATE = 'invalid_state'
    # A command the current status does not allow

    ROUND_ALREADY_RESOLVED = 'round_already_resolved'
    # A late answer for a round that has already been recorded


@dataclass
class CommandResult:
    """Outcome of a state machine command."""

    ok: bool
    error: Optional[CommandError] = None
    message: str = ''
    round: Optional[RoundResult] = None
    # The recorded round for a successful submit_answer()

    def to_dict(self) -> dict:
        data = {'ok': self.ok}
        if self.error is not None:
            data['error'] = self.error.value
            data['message'] = self.message
        if self.round is not None:
            data['round'] = self.round.to_dict()
        return data


def _ok(round_result: Optional[RoundResult] = None) -> CommandResult:
    return CommandResult(ok=True, round=round_result)


def _fail(error: CommandError, message: str) -> CommandResult:
    return CommandResult(ok=False, error=error, message=message)


@dataclass
class GameState:
    status: GameStatus = GameStatus.IDLE
    current_challenge: Optional[StroopChallenge] = None
    round_start_time: Optional[float] = None
    # Timer-service milliseconds when the current round started, shifted forward by paused time

    rounds: List[RoundResult] = field(default_factory=list)
    # Resolved rounds in order, never rewritten

    current_streak: int = 0
    best_streak: int = 0
    # Highest streak this session; drives the color unlocks

    total_rounds: int = DEFAULT_TOTAL_ROUNDS
    current_round_number: int = 0
    active_colors: List[ColorName] = field(default_factory=lambda: list(BASE_COLORS))
    button_order: List[ColorName] = field(default_factory=lambda: list(BASE_COLORS))

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'current_challenge': self.current_challenge.to_dict() if self.current_challenge else None,
            'round_start_time': self.round_start_time,
            'rounds': [r.to_dict() for r in self.rounds],
            'current_streak': self.current_streak,
            'best_streak': self.best_streak,
            'total_rounds': self.total_rounds,
            'current_round_number': self.current_round_number,
            'active_colors': [c.value for c in self.active_colors],
            'button_order': [c.value for c in self.button_order],
        }


class SessionStateMachine:
    """
    Drives one adaptive Stroop training session.

    A round resolves exactly once, either through submit_answer() or through
    the scheduled timeout. Both paths take the same lock, and every armed
    callback carries an epoch number so a callback that lost the race finds
    itself stale and does nothing.
    """

    def __init__(
        self,
        timer: Optional[TimerService] = None,
        rng: Optional[random.Random] = None,
        wall_clock: Callable[[], int] = now_ms,
        countdown_ms: int = DEFAULT_COUNTDOWN_MS,
        generator: Optional[ChallengeGenerator] = None,
        controller: Optional[DifficultyController] = None,
        judge: Optional[ReactionJudge] = None,
        on_finished: Optional[Callable[[GameState], None]] = None,
    ):
        self.timer = timer or ThreadingTimerService()
        self.wall_clock = wall_clock
        self.countdown_ms = countdown_ms
        self.generator = generator or ChallengeGenerator(rng=rng, clock=wall_clock)
        self.controller = controller or DifficultyController()
        self.judge = judge or ReactionJudge()
        self.on_finished = on_finished

        self._state = GameState()
        self._lock = threading.RLock()
        # Re-entrant so snapshot() can call the other read helpers while holding it

        self._pending: Optional[TimerHandle] = None
        # The one armed callback (countdown or round timeout), if any

        self._epoch = 0
        self._timeout_ms = self.controller.timeout_config(0).timeout_ms
        # Budget of the round in progress, fixed when the round starts

        self._paused_elapsed_ms = 0.0
        self._paused_remaining_ms = 0.0
        self._resolved_ids: Set[str] = set()
        # Challenge ids already recorded, used to spot late clicks

    # ── Read side ─────────────────────────────────────────────

    @property
    def status(self) -> GameStatus:
        return self._state.status

    @property
    def state(self) -> GameState:
        """Deep copy of the current GameState."""
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def rounds(self) -> Tuple[RoundResult, ...]:
        with self._lock:
            return tuple(self._state.rounds)

    @property
    def timeout_ms(self) -> int:
        with self._lock:
            if self._state.status in (GameStatus.PLAYING, GameStatus.PAUSED):
                return self._timeout_ms
            return self.controller.timeout_config(self._state.current_streak).timeout_ms

    def time_remaining_ms(self) -> float:
        with self._lock:
            st = self._state
            if st.status == GameStatus.PLAYING:
                elapsed = self.timer.now() - st.round_start_time
                return max(0.0, self._timeout_ms - elapsed)
            if st.status == GameStatus.PAUSED:
                return self._paused_remaining_ms
            if st.status == GameStatus.FINISHED:
                return 0.0
            return float(self.timeout_ms)

    def statistics(self) -> SessionStatistics:
        with self._lock:
            return compute(self._state.rounds, best_streak=self._state.best_streak)

    def snapshot(self) -> dict:
        """Observable state for UI / driving code."""
        with self._lock:
            st = self._state
            remaining = self.time_remaining_ms()
            timeout_ms = self.timeout_ms
            config = self.controller.timeout_config(st.current_streak)
            next_unlock = self.controller.next_unlock(st.best_streak)
            return {
                'status': st.status.value,
                'current_challenge': st.current_challenge.to_dict() if st.current_challenge else None,
                'button_order': [c.value for c in st.button_order],
                'active_colors': [c.value for c in st.active_colors],
                'time_remaining_ms': round(remaining, 1),
                'timeout_ms': timeout_ms,
                'speed_level': config.speed_level,
                'timer_zone': self.controller.timer_zone(remaining, timeout_ms).value,
                'current_streak': st.current_streak,
                'best_streak': st.best_streak,
                'current_round_number': st.current_round_number,
                'total_rounds': st.total_rounds,
                'rounds_played': len(st.rounds),
                'next_unlock': (
                    {'milestone': next_unlock[0], 'color': next_unlock[1].value}
                    if next_unlock else None
                ),
            }

    # ── Commands ──────────────────────────────────────────────

    def start(self, total_rounds: int = DEFAULT_TOTAL_ROUNDS) -> CommandResult:
        """idle/finished -> countdown; playing begins once the countdown elapses."""
        if total_rounds < 1:
            raise ValueError('total_rounds must be at least 1')

        with self._lock:
            if self._state.status not in (GameStatus.IDLE, GameStatus.FINISHED):
                return _fail(CommandError.INVALID_STATE,
                             f'cannot start while {self._state.status.value}')

            self._disarm()
            self._resolved_ids = set()
            self._state = GameState(
                status=GameStatus.COUNTDOWN,
                total_rounds=total_rounds,
                current_round_number=1,
            )
            self._timeout_ms = self.controller.timeout_config(0).timeout_ms
            logger.info('session started: {} rounds, countdown {}ms', total_rounds, self.countdown_ms)

            if self.countdown_ms <= 0:
                self._begin_playing()
            else:
                self._arm(self.countdown_ms, self._on_countdown_done)
            return _ok()

    def submit_answer(self, color, challenge_id: Optional[str] = None) -> CommandResult:
        """Answer the current round. `challenge_id`, when given, must name the current challenge."""
        with self._lock:
            st = self._state
            if challenge_id is not None and challenge_id in self._resolved_ids:
                return _fail(CommandError.ROUND_ALREADY_RESOLVED,
                             f'challenge {challenge_id} was already resolved')

            if st.status != GameStatus.PLAYING or st.current_challenge is None:
                return _fail(CommandError.INVALID_STATE,
                             f'cannot answer while {st.status.value}')

            if challenge_id is not None and challenge_id != st.current_challenge.id:
                return _fail(CommandError.INVALID_SELECTION,
                             f'challenge {challenge_id} is not the current challenge')

            selected = ColorName.parse(color)
            if selected is None or selected not in st.button_order:
                return _fail(CommandError.INVALID_SELECTION,
                             f'{color!r} is not one of the current buttons')

            elapsed = self.timer.now() - st.round_start_time
            self._disarm()
            # Cancelling and recording happen under the same lock as the timeout callback

            result, finished = self._resolve(selected, elapsed, timed_out=False)

        self._notify_finished(finished)
        # Runs outside the lock so a slow persistence hook never blocks the next round
        return _ok(result)

    def pause(self) -> CommandResult:
        """playing -> paused, freezing the remaining time budget."""
        with self._lock:
            st = self._state
            if st.status != GameStatus.PLAYING:
                return _fail(CommandError.INVALID_STATE, f'cannot pause while {st.status.value}')

            elapsed = self.timer.now() - st.round_start_time
            self._disarm()
            self._paused_elapsed_ms = elapsed
            self._paused_remaining_ms = max(0.0, self._timeout_ms - elapsed)
            # Both are frozen until resume(), however long the pause lasts
            st.status = GameStatus.PAUSED
            logger.debug('paused round {} with {:.0f}ms left',
                         st.current_round_number, self._paused_remaining_ms)
            return _ok()

    def resume(self) -> CommandResult:
        """paused -> playing, re-arming exactly the remembered remainder."""
        with self._lock:
            st = self._state
            if st.status != GameStatus.PAUSED:
                return _fail(CommandError.INVALID_STATE, f'cannot resume while {st.status.value}')

            st.round_start_time = self.timer.now() - self._paused_elapsed_ms
            # Shifting the start keeps paused time out of the reaction time

            st.status = GameStatus.PLAYING
            self._arm(self._paused_remaining_ms, self._on_round_timeout)
            logger.debug('resumed round {}', st.current_round_number)
            return _ok()

    def reset(self) -> CommandResult:
        """Any state -> idle, discarding the session."""
        with self._lock:
            self._disarm()
            self._state = GameState()
            self._resolved_ids = set()
            self._timeout_ms = self.controller.timeout_config(0).timeout_ms
            self._paused_elapsed_ms = 0.0
            self._paused_remaining_ms = 0.0
            logger.debug('session reset')
            return _ok()

    # ── Transitions ───────────────────────────────────────────

    def _arm(self, delay_ms: float, callback: Callable[[int], None]) -> None:
        self._epoch += 1
        epoch = self._epoch
        self._pending = self.timer.schedule(delay_ms, lambda: callback(epoch))

    def _disarm(self) -> None:
        self._epoch += 1
        # Any callback already in flight now sees a stale epoch
        self.timer.cancel(self._pending)
        self._pending = None

    def _on_countdown_done(self, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch or self._state.status != GameStatus.COUNTDOWN:
                return
            self._pending = None
            self._begin_playing()

    def _begin_playing(self) -> None:
        self._state.status = GameStatus.PLAYING
        logger.debug('countdown finished, round 1 of {}', self._state.total_rounds)
        self._start_round(previous=None)

    def _start_round(self, previous: Optional[StroopChallenge]) -> None:
        st = self._state
        st.current_challenge = self.generator.generate(st.active_colors, previous)
        st.button_order = self.generator.shuffle(st.active_colors)
        st.round_start_time = self.timer.now()
        self._timeout_ms = self.controller.timeout_config(st.current_streak).timeout_ms
        self._arm(self._timeout_ms, self._on_round_timeout)

    def _on_round_timeout(self, epoch: int) -> None:
        with self._lock:
            st = self._state
            if epoch != self._epoch or st.status != GameStatus.PLAYING:
                return
                # The round was answered, paused or reset before this fired
            self._pending = None
            elapsed = self.timer.now() - st.round_start_time
            _, finished = self._resolve(None, elapsed, timed_out=True)
        self._notify_finished(finished)

    def _resolve(
        self,
        selected: Optional[ColorName],
        elapsed_ms: float,
        timed_out: bool,
    ) -> Tuple[RoundResult, Optional[GameState]]:
        """Record the current round and move on. Caller holds the lock and has disarmed the timer."""
        st = self._state
        challenge = st.current_challenge
        outcome = self.judge.judge(challenge, selected, elapsed_ms, self._timeout_ms)
        result = RoundResult(
            challenge=challenge,
            selected_color=selected,
            outcome=outcome,
            reaction_time_ms=self.judge.reaction_time(elapsed_ms, self._timeout_ms, timed_out),
            timestamp=self.wall_clock(),
        )
        st.rounds.append(result)
        self._resolved_ids.add(challenge.id)

        st.current_streak = st.current_streak + 1 if outcome == AnswerOutcome.SUCCESS else 0
        # Any non-success breaks the streak

        st.best_streak = max(st.best_streak, st.current_streak)

        unlocked = self.controller.active_colors(st.best_streak)
        if len(unlocked) > len(st.active_colors):
            logger.info('streak {} unlocked {}', st.best_streak,
                        ', '.join(c.value for c in unlocked[len(st.active_colors):]))
        st.active_colors = unlocked
        # Keyed on best_streak, so a broken streak never locks a color again

        logger.debug('round {}/{}: {} in {:.0f}ms{}', st.current_round_number, st.total_rounds,
                     outcome.value, result.reaction_time_ms, ' (timeout)' if timed_out else '')

        if len(st.rounds) >= st.total_rounds:
            st.status = GameStatus.FINISHED
            st.current_challenge = None
            st.round_start_time = None
            logger.info('session finished: {} rounds, best streak {}', len(st.rounds), st.best_streak)
            return result, copy.deepcopy(st)
            # The round number stays at total_rounds; no timer is re-armed

        st.current_round_number += 1
        self._start_round(previous=challenge)
        # The next challenge uses the possibly larger color set and the new streak's timeout
        return result, None

    def _notify_finished(self, finished: Optional[GameState]) -> None:
        if finished is None or self.on_finished is None:
            return
        try:
            self.on_finished(finished)
        except Exception:
            logger.exception('on_finished callback failed; session state is unaffected')
