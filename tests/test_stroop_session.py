import random
import threading
import time

import pytest

from conftest import COUNTDOWN_MS, wrong_color
from stroop_engine import BASE_COLORS, AnswerOutcome, ColorName
from stroop_session import CommandError, GameStatus, SessionStateMachine
from stroop_timing import ThreadingTimerService, TimerHandle, TimerService, VirtualTimerService


def answer_correctly(machine, timer, after_ms=500):
    timer.advance(after_ms)
    return machine.submit_answer(machine.state.current_challenge.ink_color)


class TestLifecycle:
    def test_countdown_then_first_round(self, machine, timer):
        assert machine.status == GameStatus.IDLE
        assert machine.start(10).ok
        assert machine.status == GameStatus.COUNTDOWN

        timer.advance(COUNTDOWN_MS - 1)
        assert machine.status == GameStatus.COUNTDOWN

        timer.advance(1)
        state = machine.state
        assert state.status == GameStatus.PLAYING
        assert state.current_round_number == 1
        assert state.current_challenge is not None
        assert sorted(state.button_order) == sorted(state.active_colors)
        assert state.active_colors == list(BASE_COLORS)
        assert machine.time_remaining_ms() == 5000

    def test_zero_countdown_starts_playing_immediately(self, timer, rng):
        machine = SessionStateMachine(timer=timer, rng=rng, countdown_ms=0)
        machine.start(3)
        assert machine.status == GameStatus.PLAYING

    def test_full_session_visits_each_round_number_once(self, playing, timer):
        machine = playing(5)
        seen = []
        while machine.status == GameStatus.PLAYING:
            state = machine.state
            assert state.current_round_number == len(state.rounds) + 1
            seen.append(state.current_round_number)
            answer_correctly(machine, timer)

        state = machine.state
        assert seen == [1, 2, 3, 4, 5]
        assert state.status == GameStatus.FINISHED
        assert len(state.rounds) == state.total_rounds == 5
        assert state.current_round_number == 5
        assert state.current_challenge is None
        assert timer.pending == 0

    def test_finished_rejects_answers_and_can_start_again(self, playing, timer):
        machine = playing(1)
        answer_correctly(machine, timer)
        assert machine.status == GameStatus.FINISHED

        result = machine.submit_answer('RED')
        assert result.error == CommandError.INVALID_STATE

        assert machine.start(2).ok
        state = machine.state
        assert state.status == GameStatus.COUNTDOWN
        assert state.rounds == []
        assert state.best_streak == 0

    def test_start_while_playing_is_rejected(self, playing):
        machine = playing(5)
        result = machine.start(5)
        assert not result.ok
        assert result.error == CommandError.INVALID_STATE

    def test_start_requires_positive_round_count(self, machine):
        with pytest.raises(ValueError):
            machine.start(0)

    def test_on_finished_receives_final_state_once(self, timer, rng):
        finished = []
        machine = SessionStateMachine(timer=timer, rng=rng, countdown_ms=0, on_finished=finished.append)
        machine.start(3)
        for _ in range(3):
            timer.advance(5000)

        assert len(finished) == 1
        assert finished[0].status == GameStatus.FINISHED
        assert len(finished[0].rounds) == 3

    def test_failing_on_finished_leaves_session_intact(self, timer, rng):
        def boom(state):
            raise RuntimeError('store down')

        machine = SessionStateMachine(timer=timer, rng=rng, countdown_ms=0, on_finished=boom)
        machine.start(1)
        assert answer_correctly(machine, timer).ok
        assert machine.status == GameStatus.FINISHED
        assert len(machine.rounds) == 1


class TestAnswers:
    def test_correct_answer_records_success(self, playing, timer):
        machine = playing()
        challenge = machine.state.current_challenge
        timer.advance(750)
        result = machine.submit_answer(challenge.ink_color.value.lower())

        assert result.ok
        assert result.round.outcome == AnswerOutcome.SUCCESS
        assert result.round.reaction_time_ms == 750
        assert result.round.challenge == challenge
        state = machine.state
        assert state.current_streak == 1
        assert state.current_round_number == 2

    def test_impulse_error_when_word_is_chosen(self, playing, timer):
        machine = playing()
        # Skip congruent trials so the word is a distinct wrong answer
        while machine.state.current_challenge.is_congruent:
            answer_correctly(machine, timer)
        challenge = machine.state.current_challenge
        result = machine.submit_answer(challenge.word)
        assert result.round.outcome == AnswerOutcome.IMPULSE_ERROR

    def test_color_outside_buttons_is_rejected_without_mutation(self, playing):
        machine = playing()
        before = machine.state

        for bad in ('PURPLE', 'MAGENTA', None):
            result = machine.submit_answer(bad)
            assert not result.ok
            assert result.error == CommandError.INVALID_SELECTION

        after = machine.state
        assert after.rounds == []
        assert after.current_challenge == before.current_challenge
        assert after.current_round_number == 1

    def test_answer_while_idle_is_invalid_state(self, machine):
        result = machine.submit_answer('RED')
        assert result.error == CommandError.INVALID_STATE
        assert result.to_dict() == {'ok': False, 'error': 'invalid_state', 'message': 'cannot answer while idle'}

    def test_answer_during_countdown_is_invalid_state(self, machine):
        machine.start(3)
        assert machine.submit_answer('RED').error == CommandError.INVALID_STATE

    def test_answer_cancels_the_round_timeout(self, playing, timer):
        machine = playing()
        answer_correctly(machine, timer, after_ms=1000)
        timer.advance(4500)
        assert len(machine.rounds) == 1
        assert timer.pending == 1

    def test_wrong_choice_resets_streak_but_not_best(self, playing, timer):
        machine = playing()
        for _ in range(4):
            answer_correctly(machine, timer)
        assert machine.state.current_streak == 4

        result = machine.submit_answer(wrong_color(machine.state))
        assert result.round.outcome == AnswerOutcome.WRONG_CHOICE
        state = machine.state
        assert state.current_streak == 0
        assert state.best_streak == 4

        answer_correctly(machine, timer)
        state = machine.state
        assert state.current_streak == 1
        assert state.best_streak == 4


class TestTimeouts:
    def test_timeout_records_wrong_choice_at_budget(self, playing, timer):
        machine = playing()
        challenge = machine.state.current_challenge
        timer.advance(5000)

        rounds = machine.rounds
        assert len(rounds) == 1
        assert rounds[0].challenge == challenge
        assert rounds[0].selected_color is None
        assert rounds[0].outcome == AnswerOutcome.WRONG_CHOICE
        assert rounds[0].reaction_time_ms == 5000
        assert machine.state.current_round_number == 2

    def test_late_click_after_timeout_is_already_resolved(self, playing, timer):
        machine = playing()
        stale = machine.state.current_challenge
        timer.advance(5000)

        result = machine.submit_answer(stale.ink_color, challenge_id=stale.id)
        assert result.error == CommandError.ROUND_ALREADY_RESOLVED
        assert len(machine.rounds) == 1

    def test_duplicate_click_is_already_resolved(self, playing, timer):
        machine = playing()
        challenge = machine.state.current_challenge
        timer.advance(300)
        assert machine.submit_answer(challenge.ink_color, challenge_id=challenge.id).ok
        second = machine.submit_answer(challenge.ink_color, challenge_id=challenge.id)
        assert second.error == CommandError.ROUND_ALREADY_RESOLVED
        assert len(machine.rounds) == 1

    def test_unknown_challenge_id_is_rejected(self, playing):
        machine = playing()
        result = machine.submit_answer('RED', challenge_id='not-a-challenge')
        assert result.error == CommandError.INVALID_SELECTION

    def test_timeout_shrinks_with_streak(self, playing, timer):
        machine = playing()
        for _ in range(5):
            answer_correctly(machine, timer, after_ms=100)
        snap = machine.snapshot()
        assert snap['timeout_ms'] == 4000
        assert snap['speed_level'] == '1.25x'

        timer.advance(4000)
        last = machine.rounds[-1]
        assert last.reaction_time_ms == 4000
        assert machine.snapshot()['timeout_ms'] == 5000

    def test_at_most_one_pending_callback(self, playing, timer):
        machine = playing(20)
        for i in range(20):
            assert timer.pending <= 1
            if i % 3 == 0:
                timer.advance(machine.timeout_ms)
            else:
                answer_correctly(machine, timer, after_ms=200)
        assert machine.status == GameStatus.FINISHED
        assert timer.pending == 0


class RacingTimerService(TimerService):
    """Keeps every scheduled callback and ignores cancel(), like a timer thread that already fired."""

    def __init__(self):
        self.clock = 0.0
        self.scheduled = []

    def now(self):
        return self.clock

    def schedule(self, delay_ms, callback):
        self.scheduled.append(callback)
        return TimerHandle(len(self.scheduled), self.clock + delay_ms)

    def cancel(self, handle):
        pass


class TestStaleCallbacks:
    def make_machine(self, countdown_ms=0):
        timer = RacingTimerService()
        return SessionStateMachine(timer=timer, rng=random.Random(5), countdown_ms=countdown_ms), timer

    def test_timeout_after_answer_does_not_resolve_again(self):
        machine, timer = self.make_machine()
        machine.start(3)
        first_timeout = timer.scheduled[-1]
        first = machine.state.current_challenge

        timer.clock = 400
        assert machine.submit_answer(first.ink_color, challenge_id=first.id).ok
        after_answer = machine.state

        first_timeout()

        state = machine.state
        assert len(state.rounds) == 1
        assert state.rounds[0].outcome == AnswerOutcome.SUCCESS
        assert state.status == GameStatus.PLAYING
        assert state.current_round_number == 2
        assert state.current_challenge == after_answer.current_challenge
        assert state.round_start_time == after_answer.round_start_time
        assert state.current_streak == 1

        timer.scheduled[-1]()
        assert len(machine.rounds) == 2
        assert machine.rounds[-1].challenge == after_answer.current_challenge

    def test_timeout_after_pause_is_ignored(self):
        machine, timer = self.make_machine()
        machine.start(3)
        round_timeout = timer.scheduled[-1]
        timer.clock = 1000
        assert machine.pause().ok

        round_timeout()

        assert machine.status == GameStatus.PAUSED
        assert machine.rounds == ()
        assert machine.time_remaining_ms() == 4000

    def test_countdown_after_reset_is_ignored(self):
        machine, timer = self.make_machine(countdown_ms=1000)
        machine.start(3)
        old_countdown = timer.scheduled[-1]
        machine.reset()

        old_countdown()
        assert machine.status == GameStatus.IDLE
        assert machine.state.current_challenge is None

        machine.start(3)
        old_countdown()
        assert machine.status == GameStatus.COUNTDOWN

        timer.scheduled[-1]()
        assert machine.status == GameStatus.PLAYING


class TestUnlocks:
    def test_unlocked_color_survives_streak_reset(self, playing, timer):
        machine = playing()
        for _ in range(3):
            answer_correctly(machine, timer)
        state = machine.state
        assert ColorName.PURPLE in state.active_colors
        assert ColorName.PURPLE in state.button_order

        timer.advance(5000)
        state = machine.state
        assert state.current_streak == 0
        assert ColorName.PURPLE in state.active_colors
        assert sorted(state.button_order) == sorted(state.active_colors)

    def test_active_colors_only_grow(self, playing, timer):
        machine = playing(30)
        previous = machine.state.active_colors
        for i in range(30):
            if i in (14, 25):
                timer.advance(machine.timeout_ms)
            else:
                answer_correctly(machine, timer, after_ms=50)
            current = machine.state.active_colors
            assert current[:len(previous)] == previous
            previous = current
        assert len(previous) == 9


class TestPauseResume:
    def test_pause_freezes_remaining_budget(self, playing, timer):
        machine = playing()
        timer.advance(1000)
        assert machine.pause().ok
        assert machine.status == GameStatus.PAUSED
        assert machine.time_remaining_ms() == 4000

        timer.advance(60_000)
        assert machine.rounds == ()
        assert machine.time_remaining_ms() == 4000

        assert machine.resume().ok
        assert machine.time_remaining_ms() == 4000
        timer.advance(3999)
        assert machine.rounds == ()
        timer.advance(1)
        assert len(machine.rounds) == 1
        assert machine.rounds[0].reaction_time_ms == 5000

    def test_paused_time_is_excluded_from_reaction_time(self, playing, timer):
        machine = playing()
        challenge = machine.state.current_challenge
        timer.advance(1000)
        machine.pause()
        timer.advance(12_345)
        machine.resume()
        timer.advance(500)

        result = machine.submit_answer(challenge.ink_color)
        assert result.round.reaction_time_ms == 1500

    def test_answers_are_rejected_while_paused(self, playing):
        machine = playing()
        machine.pause()
        assert machine.submit_answer('RED').error == CommandError.INVALID_STATE

    def test_pause_and_resume_only_from_matching_states(self, machine, playing):
        assert machine.pause().error == CommandError.INVALID_STATE
        assert machine.resume().error == CommandError.INVALID_STATE
        playing()
        assert machine.resume().error == CommandError.INVALID_STATE


class TestReset:
    def test_reset_clears_everything(self, playing, timer):
        machine = playing()
        for _ in range(4):
            answer_correctly(machine, timer)
        assert machine.reset().ok

        state = machine.state
        assert state.status == GameStatus.IDLE
        assert state.rounds == []
        assert state.current_streak == state.best_streak == 0
        assert state.active_colors == list(BASE_COLORS)
        assert state.current_round_number == 0
        assert state.current_challenge is None
        assert timer.pending == 0

    def test_reset_during_countdown_cancels_it(self, machine, timer):
        machine.start(5)
        machine.reset()
        timer.advance(COUNTDOWN_MS * 2)
        assert machine.status == GameStatus.IDLE

    def test_reset_while_paused(self, playing, timer):
        machine = playing()
        machine.pause()
        machine.reset()
        timer.advance(10_000)
        assert machine.status == GameStatus.IDLE
        assert machine.rounds == ()


class TestSnapshots:
    def test_snapshot_fields(self, playing, timer):
        machine = playing(12)
        timer.advance(2600)
        snap = machine.snapshot()
        assert snap['status'] == 'playing'
        assert snap['time_remaining_ms'] == 2400
        assert snap['timer_zone'] == 'warning'
        assert snap['current_round_number'] == 1
        assert snap['total_rounds'] == 12
        assert snap['next_unlock'] == {'milestone': 3, 'color': 'PURPLE'}
        assert set(snap['button_order']) == set(snap['active_colors'])

    def test_state_is_a_copy(self, playing):
        machine = playing()
        state = machine.state
        state.rounds.append('junk')
        state.active_colors.clear()
        assert machine.rounds == ()
        assert machine.state.active_colors == list(BASE_COLORS)

    def test_statistics_use_session_best_streak(self, playing, timer):
        machine = playing(4)
        for _ in range(3):
            answer_correctly(machine, timer, after_ms=400)
        timer.advance(5000)
        stats = machine.statistics()
        assert stats.total_rounds == 4
        assert stats.correct_answers == 3
        assert stats.longest_streak == 3
        assert stats.accuracy_rate == 75

    def test_same_seed_replays_same_session(self):
        def play(seed):
            timer = VirtualTimerService()
            machine = SessionStateMachine(timer=timer, rng=random.Random(seed),
                                          wall_clock=lambda: 0, countdown_ms=0)
            machine.start(8)
            while machine.status == GameStatus.PLAYING:
                answer_correctly(machine, timer, after_ms=300)
            return [(r.challenge.id, r.challenge.word, r.challenge.ink_color) for r in machine.rounds]

        assert play(99) == play(99)


class TestThreadingTimerService:
    def test_callback_fires(self):
        service = ThreadingTimerService()
        fired = threading.Event()
        service.schedule(10, fired.set)
        assert fired.wait(2.0)

    def test_cancelled_callback_never_fires(self):
        service = ThreadingTimerService()
        fired = threading.Event()
        handle = service.schedule(50, fired.set)
        service.cancel(handle)
        time.sleep(0.2)
        assert not fired.is_set()

    def test_now_is_monotonic_milliseconds(self):
        service = ThreadingTimerService()
        a = service.now()
        time.sleep(0.01)
        assert service.now() - a >= 5
