"""
Quiz API routes - attempt creation and quiz-level aggregates.

Provides endpoints for:
- Starting a new attempt (subject to the lifecycle rules)
- A user's authoritative quiz score under the grading strategy
- Attempt listings, statistics and clearing for instructors
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from quizengine.database import get_db
from quizengine.models.membership import Membership
from quizengine.services import lifecycle, scoring
from quizengine.routes.dependencies import get_membership, require_instructor
from quizengine.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")


def _summarize_attempt(attempt) -> dict:
    return {
        "id": str(attempt.id),
        "user_id": str(attempt.user_id),
        "started_at": attempt.started_at.isoformat() if attempt.started_at else None,
        "completed_at": attempt.completed_at.isoformat() if attempt.completed_at else None,
        "session_status": attempt.session_status,
        "partial_credit_percentage": attempt.partial_credit_percentage,
        "first_attempt_percentage": attempt.first_attempt_percentage,
        **attempt.durations(),
    }


@router.post("/api/quizzes/{quiz_id}/attempts")
def create_attempt(quiz_id: str, db: Session = Depends(get_db),
                   membership: Membership = Depends(get_membership)):
    """
    Start a new attempt for the calling user.

    Refusals (incomplete attempt, max attempts, unpublished quiz) come back
    as {"success": false, "reason": ...} rather than HTTP errors.
    """
    result = lifecycle.create_new(db, quiz_id, membership.user_id, membership)
    if not result["success"]:
        log_with_context(logger, "INFO", "Attempt creation refused: {}".format(result["reason"]),
                         context={"quiz_id": quiz_id, "user_id": membership.user_id})
    return result


@router.get("/api/quizzes/{quiz_id}/score")
def get_quiz_score(
    quiz_id: str,
    user_id: Optional[str] = Query(None, description="User to score (instructors only; defaults to caller)"),
    db: Session = Depends(get_db),
    membership: Membership = Depends(get_membership)
):
    """Authoritative quiz grade for a user across all their completed attempts."""
    target_user = user_id or membership.user_id
    if target_user != membership.user_id and not membership.is_instructor:
        raise HTTPException(status_code=403, detail="Students may only view their own score")

    lifecycle.get_quiz_for_membership(db, quiz_id, membership)
    return scoring.calculate_quiz_score(db, quiz_id, target_user)


@router.get("/api/quizzes/{quiz_id}/attempts")
def list_quiz_attempts(quiz_id: str, db: Session = Depends(get_db),
                       membership: Membership = Depends(get_membership)):
    """List every attempt of a quiz, newest first (instructors only)."""
    require_instructor(membership)
    lifecycle.get_quiz_for_membership(db, quiz_id, membership)
    attempts = lifecycle.find_by_quiz(db, quiz_id)
    return {"quiz_id": quiz_id, "data": [_summarize_attempt(a) for a in attempts]}


@router.get("/api/quizzes/{quiz_id}/stats")
def get_quiz_stats(quiz_id: str, db: Session = Depends(get_db),
                   membership: Membership = Depends(get_membership)):
    require_instructor(membership)
    lifecycle.get_quiz_for_membership(db, quiz_id, membership)
    return {"quiz_id": quiz_id, **scoring.get_attempt_stats_by_quiz(db, quiz_id)}


@router.delete("/api/quizzes/{quiz_id}/attempts")
def clear_user_attempts(
    quiz_id: str,
    user_id: str = Query(..., description="User whose attempts will be cleared"),
    db: Session = Depends(get_db),
    membership: Membership = Depends(get_membership)
):
    """Delete all of one user's attempts on a quiz (instructors only)."""
    require_instructor(membership)
    return lifecycle.clear_for_user_and_quiz(db, user_id, quiz_id, membership)


@router.get("/api/users/me/attempts")
def list_my_attempts(db: Session = Depends(get_db),
                     membership: Membership = Depends(get_membership)):
    """The caller's attempts within their classroom, newest first."""
    attempts = lifecycle.find_by_user(db, membership.user_id, membership.classroom_id)
    return {"data": [{**_summarize_attempt(a), "quiz_id": str(a.quiz_id)} for a in attempts]}
