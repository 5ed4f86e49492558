"""
Grading Ledger Service - progressive per-question results for an attempt.

The grading conversation reports each question's outcome as soon as it is
resolved. Results are upserted by question number: a later report for the
same question replaces the earlier one, so the ledger holds at most one
entry per question, in the order they were last recorded.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from quizengine.database import utcnow
from quizengine.errors import AttemptNotFound
from quizengine.models.attempt import Attempt
from quizengine.models.question_result import QuestionResult
from quizengine.services.locking import attempt_lock
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("grading")

# Emoji shortcode -> grade, used when the collaborator does not pick an emoji
DEFAULT_EMOJI_GRADE_MAPPINGS = {
    "heart": 100,
    "+1": 90,
    "eyes": 80,
    "-1": 60,
    "sob": 0,
}

SKIP_COMPLETED = "completed"


def grade_to_emoji(score: float, emoji_grades: dict = None) -> str:
    """
    Return the emoji whose grade is nearest to the score.

    Ties go to the emoji listed first in the mapping.
    """
    emoji_grades = emoji_grades or DEFAULT_EMOJI_GRADE_MAPPINGS
    closest = None
    for emoji, grade in emoji_grades.items():
        if closest is None or abs(score - grade) < abs(score - emoji_grades[closest]):
            closest = emoji
    return closest


def append_question_result(db: Session, attempt_id: str, result: dict,
                           emoji_key: Optional[str] = None, now: datetime = None,
                           emoji_grades: Optional[dict] = None) -> dict:
    """
    Upsert one question's result into the attempt's ledger.

    Args:
        db: Database session
        attempt_id: Attempt being graded
        result: {question_num, attempts, eventually_correct, credit_earned}
        emoji_key: Emoji shortcode for display; derived from credit_earned if omitted
        now: Server timestamp for recorded_at
        emoji_grades: The classroom's emoji -> grade mapping; the defaults when omitted

    Returns:
        Dict with the stored `question_result` entry and a `skipped` reason.
        A sealed attempt's ledger is never modified.
    """
    now = now or utcnow()
    entry = QuestionResult(
        question_num=result["question_num"],
        attempts=result["attempts"],
        eventually_correct=result["eventually_correct"],
        credit_earned=result["credit_earned"],
        emoji=(emoji_key or grade_to_emoji(result["credit_earned"], emoji_grades)).lower(),
        recorded_at=now.isoformat() + "Z",
    )

    with attempt_lock(db, attempt_id) as attempt:
        if attempt.is_completed:
            log_with_context(logger, "WARNING",
                "Question {} result ignored: attempt already completed".format(entry.question_num),
                context={"attempt_id": str(attempt_id)})
            return {"question_result": None, "skipped": SKIP_COMPLETED}

        ledger = [r for r in attempt.question_results_list if r.question_num != entry.question_num]
        ledger.append(entry)
        attempt.set_question_results(ledger)

    log_with_context(logger, "INFO",
        "Question {} recorded: credit={}, attempts={}, correct={}".format(
            entry.question_num, entry.credit_earned, entry.attempts, entry.eventually_correct),
        context={"attempt_id": str(attempt_id)},
        extra_data={"ledger_size": len(ledger), "emoji": entry.emoji})

    return {"question_result": entry.model_dump(), "skipped": None}


def get_question_results(db: Session, attempt_id: str) -> list:
    """Return the attempt's ledger as QuestionResult records (empty list if none)."""
    attempt = db.query(Attempt).filter(Attempt.id == str(attempt_id)).first()
    if attempt is None:
        raise AttemptNotFound(attempt_id)
    return attempt.question_results_list
