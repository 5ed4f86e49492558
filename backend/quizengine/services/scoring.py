"""
Scoring Service - attempt percentages and quiz-level grades.

Attempt level (pure, no I/O):
1. partial credit = mean(credit_earned) over the ledger
2. first attempt = share of questions with attempts == 1 and eventually_correct
Both are percentages rounded half-up to one decimal place.

Quiz level: one user may complete several attempts; the quiz's grading
strategy picks which one counts:
- HIGHEST: best partial credit (ties go to the earliest completed)
- MOST_RECENT: latest completed_at
- FIRST: earliest started_at
Unknown strategies fall back to HIGHEST.
"""

import math
import time
from typing import Iterable

from sqlalchemy.orm import Session

from quizengine.errors import QuizNotFound
from quizengine.models.attempt import Attempt
from quizengine.models.quiz import Quiz, GradingStrategy
from quizengine.logging_config import get_logger, log_with_context

# Channel logger for scoring operations
logger = get_logger("scoring")


def round1(value: float) -> float:
    """Round half-up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _field(result, name):
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name)


def calculate_percentages_from_results(results: Iterable) -> dict:
    """
    Derive attempt percentages from ledger entries.

    Args:
        results: QuestionResult records or plain dicts

    Returns:
        {"partial_credit_percentage": float|None, "first_attempt_percentage": float|None}
    """
    results = list(results or [])
    if not results:
        return {"partial_credit_percentage": None, "first_attempt_percentage": None}

    total = len(results)
    partial = sum(float(_field(r, "credit_earned")) for r in results) / total
    first_try = sum(
        1 for r in results
        if _field(r, "attempts") == 1 and _field(r, "eventually_correct")
    )

    return {
        "partial_credit_percentage": round1(partial),
        "first_attempt_percentage": round1(first_try / total * 100),
    }


def _select_counting_attempt(attempts: list, strategy: str) -> Attempt:
    """Pick the attempt that counts. `attempts` is ordered by completed_at ascending."""
    if strategy == GradingStrategy.MOST_RECENT.value:
        return attempts[-1]
    if strategy == GradingStrategy.FIRST.value:
        return min(attempts, key=lambda a: a.started_at)

    # HIGHEST and unknown strategies: first maximum wins ties
    best = attempts[0]
    for attempt in attempts[1:]:
        if attempt.partial_credit_percentage > best.partial_credit_percentage:
            best = attempt
    return best


def calculate_quiz_score(db: Session, quiz_id: str, user_id: str) -> dict:
    """
    Compute a user's authoritative grade for a quiz across all attempts.

    Only completed attempts with a recorded partial credit are considered.

    Returns:
        Dict with score, strategy, total_attempts, counting_attempt_id and
        all_scores [{attempt_id, score, completed_at}] for audit display
    """
    start_time = time.time()

    quiz = db.query(Quiz).filter(Quiz.id == str(quiz_id)).first()
    if not quiz:
        raise QuizNotFound(quiz_id)

    attempts = db.query(Attempt).filter(
        Attempt.quiz_id == str(quiz_id),
        Attempt.user_id == str(user_id),
        Attempt.completed_at.isnot(None),
        Attempt.partial_credit_percentage.isnot(None)
    ).order_by(Attempt.completed_at.asc()).all()

    if not attempts:
        return {
            "score": None,
            "strategy": quiz.grading_strategy,
            "total_attempts": 0,
            "counting_attempt_id": None,
            "all_scores": [],
        }

    counting = _select_counting_attempt(attempts, quiz.grading_strategy)

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Quiz score {} via {} across {} attempts".format(
            counting.partial_credit_percentage, quiz.grading_strategy, len(attempts)),
        context={"quiz_id": str(quiz_id), "user_id": str(user_id),
                 "counting_attempt_id": str(counting.id)},
        extra_data={"duration_ms": round(duration_ms, 2)})

    return {
        "score": counting.partial_credit_percentage,
        "strategy": quiz.grading_strategy,
        "total_attempts": len(attempts),
        "counting_attempt_id": str(counting.id),
        "all_scores": [
            {
                "attempt_id": str(a.id),
                "score": a.partial_credit_percentage,
                "completed_at": a.completed_at.isoformat() if a.completed_at else None,
            }
            for a in attempts
        ],
    }


def get_attempt_stats_by_quiz(db: Session, quiz_id: str) -> dict:
    """Summary statistics over a quiz's attempts; scores and times use completed ones only."""
    all_attempts = db.query(Attempt).filter(Attempt.quiz_id == str(quiz_id)).all()
    attempts = [a for a in all_attempts if a.completed_at is not None]

    if not attempts:
        return {
            "total_attempts": len(all_attempts),
            "completed_attempts": 0,
            "average_score": None,
            "min_score": None,
            "max_score": None,
            "average_time_minutes": None,
        }

    scores = [a.partial_credit_percentage for a in attempts if a.partial_credit_percentage is not None]
    times = [(a.completed_at - a.started_at).total_seconds() / 60 for a in attempts]

    return {
        "total_attempts": len(all_attempts),
        "completed_attempts": len(attempts),
        "average_score": round_half_up(sum(scores) / len(scores)) if scores else None,
        "min_score": min(scores) if scores else None,
        "max_score": max(scores) if scores else None,
        "average_time_minutes": round_half_up(sum(times) / len(times)) if times else None,
    }
