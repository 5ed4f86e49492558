"""
Request-scoped dependencies shared by the API routes.

Authentication happens upstream; the gateway forwards the caller's identity
as headers. This module only turns them into a Membership and checks that a
caller may touch a given attempt.
"""

from typing import Optional
from fastapi import Header, HTTPException

from quizengine.models.attempt import Attempt
from quizengine.models.membership import Membership, Role
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("http")


def get_membership(
    x_user_id: Optional[str] = Header(None),
    x_classroom_id: Optional[str] = Header(None),
    x_role: Optional[str] = Header(None),
) -> Membership:
    """Resolve the caller's membership from gateway headers."""
    if not x_user_id or not x_classroom_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID or X-Classroom-ID header")
    return Membership(
        user_id=x_user_id.strip(),
        classroom_id=x_classroom_id.strip(),
        role=Role.from_membership_role(x_role),
    )


def assert_attempt_access(attempt: Attempt, membership: Membership):
    """Owners may act on their attempt; instructors of the quiz's classroom may act on any."""
    if membership.is_instructor and attempt.quiz and attempt.quiz.classroom_id == membership.classroom_id:
        return
    if str(attempt.user_id) == membership.user_id:
        return

    log_with_context(logger, "WARNING", "Forbidden attempt access",
                     context={"attempt_id": str(attempt.id), "user_id": membership.user_id,
                              "owner_user_id": str(attempt.user_id)})
    raise HTTPException(status_code=403, detail="Forbidden")


def require_instructor(membership: Membership):
    if not membership.is_instructor:
        raise HTTPException(status_code=403, detail="Instructor role required")
