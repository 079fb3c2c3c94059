"""
Stroop Trainer — Session Statistics
Summary metrics and chart series derived from a session's round history.
Every function here is a pure read of the rounds it is given.
"""
# Module docstring: the statistics layer; nothing here mutates rounds or session state

from dataclasses import dataclass, asdict
# Imports dataclass utilities for the SessionStatistics record and its dict conversion

from typing import Dict, List, Optional, Sequence
# Imports type hints for better code documentation and IDE support

from stroop_engine import AnswerOutcome, RoundResult
# Imports the round record and outcome enum produced by the engine


@dataclass(frozen=True)
class SessionStatistics:
    """Summary of a session (or any list of rounds)."""

    total_rounds: int
    correct_answers: int
    impulse_errors: int
    wrong_choices: int
    accuracy_rate: float
    # Percentage 0-100

    average_reaction_time: float
    fastest_reaction_time: float
    slowest_reaction_time: float
    # All three in milliseconds

    longest_streak: int
    average_interference_cost: Optional[float] = None
    # Mean incongruent RT minus mean congruent RT; None unless both kinds of trial were played

    def to_dict(self) -> dict:
        data = asdict(self)
        if data['average_interference_cost'] is None:
            del data['average_interference_cost']
            # Omitted rather than reported as zero
        return data


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _longest_success_run(rounds: Sequence[RoundResult]) -> int:
    longest = current = 0
    for r in rounds:
        if r.outcome == AnswerOutcome.SUCCESS:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def compute(rounds: Sequence[RoundResult], best_streak: Optional[int] = None) -> SessionStatistics:
    """
    Calculate the summary statistics for `rounds`.

    `best_streak` is the session's own best streak; when it is not known
    (e.g. rounds loaded from storage) the longest run of successes in
    `rounds` is used instead.
    """
    # Aggregates counts, accuracy, reaction times and the Stroop interference cost

    total = len(rounds)
    # Number of rounds played

    longest_streak = best_streak if best_streak is not None else _longest_success_run(rounds)
    # The session's best streak when supplied, otherwise recomputed from the history

    if total == 0:
        return SessionStatistics(
            total_rounds=0,
            correct_answers=0,
            impulse_errors=0,
            wrong_choices=0,
            accuracy_rate=0.0,
            average_reaction_time=0.0,
            fastest_reaction_time=0.0,
            slowest_reaction_time=0.0,
            longest_streak=longest_streak,
        )
        # Empty history: every metric is zero, no division attempted

    correct = sum(1 for r in rounds if r.outcome == AnswerOutcome.SUCCESS)
    impulse = sum(1 for r in rounds if r.outcome == AnswerOutcome.IMPULSE_ERROR)
    wrong = sum(1 for r in rounds if r.outcome == AnswerOutcome.WRONG_CHOICE)
    # Counts per outcome

    times = [r.reaction_time_ms for r in rounds]
    # Every round's reaction time, timeouts included at their pinned value

    congruent = [r.reaction_time_ms for r in rounds if r.challenge.is_congruent]
    incongruent = [r.reaction_time_ms for r in rounds if not r.challenge.is_congruent]
    # Reaction times split by trial type

    interference = (
        _mean(incongruent) - _mean(congruent)
        if congruent and incongruent else None
    )
    # How much slower the player is when word and ink disagree

    return SessionStatistics(
        total_rounds=total,
        correct_answers=correct,
        impulse_errors=impulse,
        wrong_choices=wrong,
        accuracy_rate=100 * correct / total,
        average_reaction_time=_mean(times),
        fastest_reaction_time=min(times),
        slowest_reaction_time=max(times),
        longest_streak=longest_streak,
        average_interference_cost=interference,
    )


# ── Chart Series ──────────────────────────────────────────────

REACTION_TIME_BUCKETS = (
    ('<500ms', 500),
    ('500-1000ms', 1000),
    ('1000-2000ms', 2000),
    ('>2000ms', None),
)
# Histogram buckets as (label, exclusive upper bound); the last bucket is open-ended

OUTCOME_LABELS = {
    AnswerOutcome.SUCCESS: ('Correct', '#22C55E'),
    AnswerOutcome.IMPULSE_ERROR: ('Impulse Error', '#EAB308'),
    AnswerOutcome.WRONG_CHOICE: ('Wrong', '#EF4444'),
}
# Display label and chart fill color per outcome


def reaction_time_distribution(rounds: Sequence[RoundResult]) -> List[Dict]:
    """Count rounds per reaction time bucket."""
    counts = {label: 0 for label, _ in REACTION_TIME_BUCKETS}
    for r in rounds:
        for label, upper in REACTION_TIME_BUCKETS:
            if upper is None or r.reaction_time_ms < upper:
                counts[label] += 1
                break
    return [{'range': label, 'count': counts[label]} for label, _ in REACTION_TIME_BUCKETS]


def reaction_time_trend(rounds: Sequence[RoundResult]) -> List[Dict]:
    return [
        {'round': i, 'time': r.reaction_time_ms, 'outcome': r.outcome.value}
        for i, r in enumerate(rounds, start=1)
    ]


def outcome_distribution(rounds: Sequence[RoundResult]) -> List[Dict]:
    """Pie chart slices; outcomes that never happened are left out."""
    slices = []
    for outcome, (name, fill) in OUTCOME_LABELS.items():
        value = sum(1 for r in rounds if r.outcome == outcome)
        if value > 0:
            slices.append({'name': name, 'value': value, 'fill': fill})
    return slices


def average_time_by_outcome(rounds: Sequence[RoundResult]) -> List[Dict]:
    averages = []
    for outcome, (name, _) in OUTCOME_LABELS.items():
        times = [r.reaction_time_ms for r in rounds if r.outcome == outcome]
        avg = round(_mean(times)) if times else 0
        if avg > 0:
            averages.append({'outcome': name, 'avg_time': avg})
    return averages


def performance_rating(stats: SessionStatistics) -> str:
    """Assign a rank title from average reaction time and correct answers."""
    # Evaluates the player's overall performance the same way for live and historical sessions

    avg_ms = stats.average_reaction_time
    correct = stats.correct_answers

    if avg_ms < 600 and correct > 25:
        return "Grandmaster"
        # Lightning-fast reactions AND nearly a full session correct

    elif avg_ms < 800 and correct > 20:
        return "Expert"

    elif avg_ms < 1000 and correct > 15:
        return "Advanced"

    elif avg_ms < 1200 and correct > 8:
        return "Intermediate"

    elif correct > 3:
        return "Beginner"
        # A few correct answers, needs more practice

    else:
        return "Trainee"
        # Just starting out


def build_report(rounds: Sequence[RoundResult], best_streak: Optional[int] = None) -> dict:
    """Statistics plus chart series in one JSON-ready dict."""
    stats = compute(rounds, best_streak=best_streak)
    return {
        'statistics': stats.to_dict(),
        'rating': performance_rating(stats),
        'reaction_time_distribution': reaction_time_distribution(rounds),
        'reaction_time_trend': reaction_time_trend(rounds),
        'outcome_distribution': outcome_distribution(rounds),
        'average_time_by_outcome': average_time_by_outcome(rounds),
    }
