"""
Attempts API routes - the client-facing surface of the attempt engine.

Provides endpoints for:
- Viewing an attempt
- Duration heartbeats, close beacons and gap reconciliation
- Progressive question results and conversation messages
- Completing and deleting attempts
"""

import time
from typing import Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from quizengine.database import get_db
from quizengine.models.attempt import Attempt
from quizengine.models.membership import Membership
from quizengine.services import completion, conversation, durations, grading_ledger, lifecycle, modal_gap
from quizengine.routes.dependencies import get_membership, assert_attempt_access, require_instructor
from quizengine.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class DurationMetrics(BaseModel):
    """Client-reported durations; camelCase keys from the browser are accepted."""
    model_config = ConfigDict(populate_by_name=True)

    total_duration_ms: Optional[float] = Field(None, alias="totalDurationMs")
    unfocused_duration_ms: Optional[float] = Field(None, alias="unfocusedDurationMs")


class QuestionResultRequest(BaseModel):
    """Schema for one question outcome reported by the grading conversation."""
    question_num: int = Field(..., ge=1)
    attempts: int = Field(..., ge=0, description="0 = skipped")
    eventually_correct: bool
    credit_earned: float = Field(..., ge=0, le=100)
    emoji: Optional[str] = Field(None, description="Emoji shortcode; derived from credit if omitted")
    emoji_grades: Optional[Dict[str, float]] = Field(
        None, description="Classroom emoji -> grade mapping used to derive the emoji"
    )


class MessageRequest(BaseModel):
    role: str = Field(..., description="USER | ASSISTANT | SYSTEM | TOOL")
    content: str


def _metrics_dict(metrics: Optional[DurationMetrics]) -> Optional[dict]:
    if metrics is None:
        return None
    return metrics.model_dump(exclude_none=True) or None


def serialize_attempt(attempt: Attempt) -> dict:
    """Serialize an Attempt ORM object to a dict for API response."""
    return {
        "id": str(attempt.id),
        "quiz_id": str(attempt.quiz_id),
        "user_id": str(attempt.user_id),
        "started_at": attempt.started_at.isoformat() if attempt.started_at else None,
        "completed_at": attempt.completed_at.isoformat() if attempt.completed_at else None,
        "session_status": attempt.session_status,
        **attempt.durations(),
        "modal_closed_at": attempt.modal_closed_at.isoformat() if attempt.modal_closed_at else None,
        "partial_credit_percentage": attempt.partial_credit_percentage,
        "first_attempt_percentage": attempt.first_attempt_percentage,
        "question_results": [r.model_dump() for r in attempt.question_results_list],
        "quiz": {
            "id": str(attempt.quiz.id),
            "name": attempt.quiz.name,
            "grading_strategy": attempt.quiz.grading_strategy,
            "question_count": attempt.quiz.question_count,
        } if attempt.quiz else None,
    }


def _authorized_attempt(db: Session, attempt_id: str, membership: Membership) -> Attempt:
    attempt = lifecycle.find_by_id(db, attempt_id)
    assert_attempt_access(attempt, membership)
    return attempt


@router.get("/api/attempts/{attempt_id}")
def get_attempt(attempt_id: str, db: Session = Depends(get_db),
                membership: Membership = Depends(get_membership)):
    """Get detailed information for a specific attempt."""
    attempt = _authorized_attempt(db, attempt_id, membership)
    return serialize_attempt(attempt)


@router.post("/api/attempts/{attempt_id}/durations")
def update_durations(attempt_id: str, metrics: DurationMetrics,
                     db: Session = Depends(get_db),
                     membership: Membership = Depends(get_membership)):
    """Periodic heartbeat; safe to retry or deliver out of order."""
    _authorized_attempt(db, attempt_id, membership)
    result = durations.update_durations(db, attempt_id, _metrics_dict(metrics))
    return {"success": True, "updated": result}


@router.post("/api/attempts/{attempt_id}/modal-closed")
def record_modal_closed(attempt_id: str, metrics: Optional[DurationMetrics] = None,
                        db: Session = Depends(get_db),
                        membership: Membership = Depends(get_membership)):
    """Beacon sent when the quiz view is hidden or unloaded."""
    _authorized_attempt(db, attempt_id, membership)
    result = modal_gap.record_modal_closed(db, attempt_id, _metrics_dict(metrics))
    return {"success": True, "updated": result}


@router.post("/api/attempts/{attempt_id}/reconcile-gap")
def reconcile_gap(attempt_id: str, db: Session = Depends(get_db),
                  membership: Membership = Depends(get_membership)):
    """Sent when the quiz view regains focus or is reopened."""
    _authorized_attempt(db, attempt_id, membership)
    result = modal_gap.calculate_and_apply_modal_gap(db, attempt_id)
    return {
        "success": True,
        "gap_applied": result["gap_applied"],
        "gap_ms": result["gap_ms"],
        "durations": {
            "total_duration_ms": result["total_duration_ms"],
            "unfocused_duration_ms": result["unfocused_duration_ms"],
        },
    }


@router.post("/api/attempts/{attempt_id}/question-results")
def submit_question_result(attempt_id: str, request: QuestionResultRequest,
                           db: Session = Depends(get_db),
                           membership: Membership = Depends(get_membership)):
    """Record one question's outcome as soon as the conversation resolves it."""
    _authorized_attempt(db, attempt_id, membership)
    result = grading_ledger.append_question_result(
        db, attempt_id, request.model_dump(exclude={"emoji", "emoji_grades"}), request.emoji,
        emoji_grades=request.emoji_grades
    )
    return {"success": result["skipped"] is None, **result}


@router.get("/api/attempts/{attempt_id}/question-results")
def get_question_results(attempt_id: str, db: Session = Depends(get_db),
                         membership: Membership = Depends(get_membership)):
    _authorized_attempt(db, attempt_id, membership)
    results = grading_ledger.get_question_results(db, attempt_id)
    return {"attempt_id": attempt_id, "question_results": [r.model_dump() for r in results]}


@router.post("/api/attempts/{attempt_id}/messages")
def add_message(attempt_id: str, request: MessageRequest, db: Session = Depends(get_db),
                membership: Membership = Depends(get_membership)):
    """Store a conversation message (bridge for the grading conversation)."""
    _authorized_attempt(db, attempt_id, membership)
    try:
        message = conversation.add_message(db, attempt_id, request.role, request.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "id": str(message.id),
        "attempt_id": str(message.attempt_id),
        "role": message.role,
        "created_at": message.created_at.isoformat(),
    }


@router.post("/api/attempts/{attempt_id}/complete")
def complete_attempt(attempt_id: str, metrics: Optional[DurationMetrics] = None,
                     db: Session = Depends(get_db),
                     membership: Membership = Depends(get_membership)):
    """Finalize an attempt. Repeat calls return the sealed scores unchanged."""
    start_time = time.time()
    _authorized_attempt(db, attempt_id, membership)

    result = completion.complete_attempt(db, attempt_id, _metrics_dict(metrics))

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Attempt {} completion handled".format(attempt_id),
        context={"attempt_id": attempt_id},
        extra_data={"duration_ms": round(duration_ms, 2),
                    "already_completed": result["already_completed"]})

    return {"success": True, "attempt": result}


@router.delete("/api/attempts/{attempt_id}")
def delete_attempt(attempt_id: str, db: Session = Depends(get_db),
                   membership: Membership = Depends(get_membership)):
    """Delete an attempt and its conversation (instructors only)."""
    require_instructor(membership)
    _authorized_attempt(db, attempt_id, membership)
    deleted = lifecycle.delete_attempt(db, attempt_id)
    return {"success": True, "deleted_count": deleted}
