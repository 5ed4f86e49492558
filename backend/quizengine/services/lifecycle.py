"""
Lifecycle Service - creating, listing and removing attempts.

Creation rules for students (checked in this order):
1. The quiz must belong to the caller's classroom (hard error otherwise)
2. No incomplete attempt may exist for this quiz (resume it instead)
3. max_attempts (0 = unlimited) must not be reached
4. The quiz must be published

Instructors pass rule 1 and skip 2-4 so they can run concurrent preview
sessions. Refusals 2-4 are returned as structured results, not raised.
"""

import uuid
from datetime import datetime

from sqlalchemy.orm import Session, joinedload

from quizengine.database import utcnow
from quizengine.errors import AttemptNotFound, QuizNotFound, TenantMismatch
from quizengine.models.attempt import Attempt
from quizengine.models.conversation import ConversationMessage
from quizengine.models.membership import Membership
from quizengine.models.quiz import Quiz
from quizengine.services.locking import acquire_transaction_lock, creation_locks
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("lifecycle")

REASON_INCOMPLETE_EXISTS = "incomplete_attempt_exists"
REASON_MAX_ATTEMPTS = "max_attempts_reached"
REASON_NOT_PUBLISHED = "quiz_not_published"


def get_quiz_for_membership(db: Session, quiz_id: str, membership: Membership) -> Quiz:
    quiz = db.query(Quiz).filter(Quiz.id == str(quiz_id)).first()
    if not quiz:
        raise QuizNotFound(quiz_id)
    if str(quiz.classroom_id) != str(membership.classroom_id):
        log_with_context(logger, "WARNING", "Classroom mismatch on quiz access",
                         context={"quiz_id": str(quiz_id), "user_id": membership.user_id,
                                  "classroom_id": membership.classroom_id})
        raise TenantMismatch(quiz_id, membership.classroom_id)
    return quiz


def _refuse(db: Session, result: dict) -> dict:
    # Ends the transaction so the advisory lock is released before returning
    db.rollback()
    return result


def create_new(db: Session, quiz_id: str, user_id: str, membership: Membership,
               now: datetime = None) -> dict:
    """
    Create a new attempt if the caller is allowed one.

    Returns:
        On success: {success, attempt_id, attempt_count, max_attempts, new_attempt}
        On refusal: {success: False, reason, message, ...reason-specific fields}
    """
    context = {"quiz_id": str(quiz_id), "user_id": str(user_id), "role": membership.role.value}
    quiz = get_quiz_for_membership(db, quiz_id, membership)
    max_attempts = quiz.max_attempts or 0

    # Serialize creation per (quiz, user): the mutex covers this process, the
    # advisory lock covers other workers sharing the same PostgreSQL database
    lock_name = f"attempt-create:{quiz_id}:{user_id}"
    with creation_locks.hold(lock_name):
        try:
            acquire_transaction_lock(db, lock_name)

            if not membership.is_instructor:
                incomplete = db.query(Attempt).filter(
                    Attempt.quiz_id == str(quiz_id),
                    Attempt.user_id == str(user_id),
                    Attempt.completed_at.is_(None)
                ).order_by(Attempt.started_at.desc()).first()

                if incomplete:
                    log_with_context(logger, "INFO", "Creation refused: incomplete attempt exists",
                                     context={**context, "existing_attempt_id": str(incomplete.id)})
                    return _refuse(db, {
                        "success": False,
                        "reason": REASON_INCOMPLETE_EXISTS,
                        "message": ("You have an incomplete attempt for this quiz. "
                                    "Please complete it before starting a new attempt."),
                        "existing_attempt_id": str(incomplete.id),
                        "can_resume": True,
                    })

            existing_count = db.query(Attempt).filter(
                Attempt.quiz_id == str(quiz_id),
                Attempt.user_id == str(user_id)
            ).count()

            if not membership.is_instructor:
                if max_attempts != 0 and existing_count >= max_attempts:
                    log_with_context(logger, "INFO", "Creation refused: max attempts reached",
                                     context=context,
                                     extra_data={"attempt_count": existing_count,
                                                 "max_attempts": max_attempts})
                    return _refuse(db, {
                        "success": False,
                        "reason": REASON_MAX_ATTEMPTS,
                        "message": f"Maximum number of attempts ({max_attempts}) reached for this quiz",
                        "attempt_count": existing_count,
                        "max_attempts": max_attempts,
                    })

                if not quiz.is_published:
                    log_with_context(logger, "INFO", "Creation refused: quiz not published",
                                     context=context, extra_data={"status": quiz.status})
                    return _refuse(db, {
                        "success": False,
                        "reason": REASON_NOT_PUBLISHED,
                        "message": "Quiz is not published",
                    })

            now = now or utcnow()
            attempt = Attempt(
                id=str(uuid.uuid4()),
                quiz_id=str(quiz_id),
                user_id=str(user_id),
                started_at=now,
                updated_at=now,
            )
            new_attempt_id = attempt.id
            db.add(attempt)
            db.commit()
        except Exception:
            db.rollback()
            raise

    log_with_context(logger, "INFO", "Attempt created",
                     context={**context, "attempt_id": new_attempt_id},
                     extra_data={"attempt_count": existing_count + 1, "max_attempts": max_attempts})

    return {
        "success": True,
        "attempt_id": new_attempt_id,
        "attempt_count": existing_count + 1,
        "max_attempts": max_attempts,
        "new_attempt": True,
    }


def find_by_id(db: Session, attempt_id: str) -> Attempt:
    attempt = db.query(Attempt).options(
        joinedload(Attempt.quiz)
    ).filter(Attempt.id == str(attempt_id)).first()
    if not attempt:
        raise AttemptNotFound(attempt_id)
    return attempt


def find_by_quiz(db: Session, quiz_id: str) -> list:
    """All attempts of a quiz, newest first."""
    return db.query(Attempt).filter(
        Attempt.quiz_id == str(quiz_id)
    ).order_by(Attempt.started_at.desc()).all()


def find_by_user(db: Session, user_id: str, classroom_id: str = None) -> list:
    """All attempts of a user, optionally limited to one classroom, newest first."""
    query = db.query(Attempt).options(joinedload(Attempt.quiz)).filter(
        Attempt.user_id == str(user_id)
    )
    if classroom_id:
        query = query.join(Quiz).filter(Quiz.classroom_id == str(classroom_id))
    return query.order_by(Attempt.started_at.desc()).all()


def _delete_attempts(db: Session, attempt_ids: list) -> int:
    if not attempt_ids:
        return 0
    db.query(ConversationMessage).filter(
        ConversationMessage.attempt_id.in_(attempt_ids)
    ).delete(synchronize_session=False)
    deleted = db.query(Attempt).filter(
        Attempt.id.in_(attempt_ids)
    ).delete(synchronize_session=False)
    db.commit()
    return deleted


def delete_attempt(db: Session, attempt_id: str) -> int:
    """Delete one attempt and its conversation messages."""
    find_by_id(db, attempt_id)
    deleted = _delete_attempts(db, [str(attempt_id)])
    log_with_context(logger, "INFO", "Attempt deleted", context={"attempt_id": str(attempt_id)})
    return deleted


def clear_for_user_and_quiz(db: Session, user_id: str, quiz_id: str, membership: Membership) -> dict:
    """Delete every attempt a user made on a quiz (the quiz must be in the caller's classroom)."""
    get_quiz_for_membership(db, quiz_id, membership)
    attempt_ids = [row.id for row in db.query(Attempt.id).filter(
        Attempt.quiz_id == str(quiz_id),
        Attempt.user_id == str(user_id)
    ).all()]

    deleted = _delete_attempts(db, attempt_ids)
    log_with_context(logger, "INFO", "Cleared {} attempts".format(deleted),
                     context={"quiz_id": str(quiz_id), "user_id": str(user_id)})
    return {"success": True, "deleted_count": deleted}
