"""Service for ranking completed quiz results into a leaderboard."""

from __future__ import annotations

from enum import Enum
import math

from group_quiz.core.models import (
    Leaderboard,
    LeaderboardEntry,
    LeaderboardStats,
    QuizResult,
    display_name_for,
)


class ResultPolicy(str, Enum):
    """Which attempt counts when a participant completed the quiz more than once."""

    LATEST = "latest"
    BEST = "best"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _time_key(result: QuizResult) -> float:
    # Unknown durations lose every tie against a recorded time.
    if result.time_taken_seconds is None:
        return math.inf
    return float(result.time_taken_seconds)


def _completed_key(result: QuizResult) -> float:
    return result.completed_at.timestamp() if result.completed_at else math.inf


def _ranking_key(result: QuizResult) -> tuple[int, float, float, str]:
    return (-result.score, _time_key(result), _completed_key(result), result.user_id)


class LeaderboardAggregator:
    """Ranks results by score descending, then time taken ascending.

    Aggregation is a pure function of the input snapshot: it never mutates
    the results and can be recomputed on every refresh.
    """

    def __init__(self, policy: ResultPolicy = ResultPolicy.LATEST) -> None:
        self._policy = policy

    @property
    def policy(self) -> ResultPolicy:
        return self._policy

    def aggregate(
        self,
        results: list[QuizResult],
        participant_count: int | None = None,
    ) -> Leaderboard:
        """Build a ranked leaderboard and summary statistics.

        ``participant_count`` is the session's total participant count; when
        omitted, the number of distinct users in ``results`` is used instead.
        """
        completed = self._select_attempts([r for r in results if r.is_completed])
        ranked = sorted(completed, key=_ranking_key)
        entries = tuple(
            LeaderboardEntry(
                rank=position,
                user_id=result.user_id,
                display_name=display_name_for(result.username, result.email),
                score=result.score,
                time_taken_seconds=result.time_taken_seconds,
                correct_answers=result.correct_answers,
                total_questions=result.total_questions,
                completed_at=result.completed_at,
            )
            for position, result in enumerate(ranked, start=1)
        )

        if participant_count is None:
            participant_count = len({r.user_id for r in results})
        # Someone with a result is a participant even if the presence view lags.
        participant_count = max(participant_count, len(entries))

        return Leaderboard(entries=entries, stats=self._summarize(entries, participant_count))

    def _select_attempts(self, completed: list[QuizResult]) -> list[QuizResult]:
        """Keep one completed attempt per participant according to the policy."""
        chosen: dict[str, QuizResult] = {}
        for result in completed:
            current = chosen.get(result.user_id)
            if current is None or self._prefer(result, current):
                chosen[result.user_id] = result
        return list(chosen.values())

    def _prefer(self, candidate: QuizResult, current: QuizResult) -> bool:
        if self._policy is ResultPolicy.BEST:
            return _ranking_key(candidate)[:2] < _ranking_key(current)[:2]
        # Later input order wins when completion timestamps are equal.
        return _completed_key(candidate) >= _completed_key(current)

    @staticmethod
    def _summarize(entries: tuple[LeaderboardEntry, ...], participant_count: int) -> LeaderboardStats:
        completed_count = len(entries)
        if not completed_count:
            return LeaderboardStats(
                participant_count=participant_count,
                completed_count=0,
                average_score=0,
                highest_score=0,
                completion_rate=0,
            )
        scores = [entry.score for entry in entries]
        completion_rate = (
            round_half_up(completed_count / participant_count * 100) if participant_count else 0
        )
        return LeaderboardStats(
            participant_count=participant_count,
            completed_count=completed_count,
            average_score=round_half_up(sum(scores) / completed_count),
            highest_score=max(scores),
            completion_rate=completion_rate,
        )
