"""
Conversation Service - the contract with the grading conversation.

The conversation collaborator stores its messages per attempt through
add_message(). Attempts created before progressive grading existed have no
ledger; for those, the final scores live in a structured payload the
assistant wrote at the end of the quiz:

    [QUIZ_EVALUATION]
    ```json
    {"quiz_complete": true, "partial_credit_percentage": 82.5, ...}
    ```

find_completion_payload() locates that payload. It performs plain reads and
must never be called while an attempt lock is held.
"""

import json
import re
from typing import Optional

from sqlalchemy.orm import Session

from quizengine.config import COMPLETION_MESSAGE_LOOKBACK
from quizengine.errors import AttemptNotFound
from quizengine.models.attempt import Attempt
from quizengine.models.conversation import ConversationMessage, MESSAGE_ROLES
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("grading")

EVALUATION_MARKER = "[QUIZ_EVALUATION]"
_FENCED_EVALUATION = re.compile(r"\[QUIZ_EVALUATION\]\s*```(?:json)?\s*([\s\S]*?)```")
_RAW_EVALUATION = re.compile(r"\[QUIZ_EVALUATION\]\s*(\{[\s\S]*?\})\s*(?:\n\n|$)")


def check_for_completion(content: str) -> Optional[dict]:
    """
    Parse a quiz completion payload from one message's content.

    Handles JSON wrapped in a code block and raw JSON after the marker.
    Returns the payload dict only when it has quiz_complete == true.
    """
    if not content or not isinstance(content, str) or EVALUATION_MARKER not in content:
        return None

    match = _FENCED_EVALUATION.search(content) or _RAW_EVALUATION.search(content)
    if not match:
        log_with_context(logger, "WARNING", "Found evaluation marker but could not extract JSON")
        return None

    try:
        evaluation = json.loads(match.group(1).strip())
    except json.JSONDecodeError as e:
        log_with_context(logger, "WARNING", "Failed to parse evaluation JSON",
                         extra_data={"error": str(e)})
        return None

    if isinstance(evaluation, dict) and evaluation.get("quiz_complete") is True:
        return evaluation
    return None


def find_completion_payload(db: Session, attempt_id: str,
                            lookback: int = COMPLETION_MESSAGE_LOOKBACK) -> Optional[dict]:
    """Scan the most recent assistant messages, newest first, for a completion payload."""
    messages = db.query(ConversationMessage).filter(
        ConversationMessage.attempt_id == str(attempt_id),
        ConversationMessage.role == "ASSISTANT"
    ).order_by(ConversationMessage.created_at.desc()).limit(lookback).all()

    for message in messages:
        completion = check_for_completion(message.content)
        if completion:
            return completion
    return None


def add_message(db: Session, attempt_id: str, role: str, content: str) -> ConversationMessage:
    """Store one conversation message for an attempt."""
    role = role.upper()
    if role not in MESSAGE_ROLES:
        raise ValueError(f"Unknown message role: {role}")

    if not db.query(Attempt.id).filter(Attempt.id == str(attempt_id)).first():
        raise AttemptNotFound(attempt_id)

    message = ConversationMessage(attempt_id=str(attempt_id), role=role, content=content)
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def get_messages(db: Session, attempt_id: str) -> list:
    return db.query(ConversationMessage).filter(
        ConversationMessage.attempt_id == str(attempt_id)
    ).order_by(ConversationMessage.created_at.asc()).all()
