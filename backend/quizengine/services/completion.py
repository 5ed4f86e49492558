"""
Completion Service - idempotent finalization of an attempt.

Sealing an attempt writes completed_at, both percentages and the completed
session status in one transaction. Score sources, in priority order:
1. The progressive grading ledger (source of truth)
2. Legacy fallback: the completion payload in the conversation

A repeat call never recomputes or overwrites sealed scores; it only merges
any trailing duration metrics.
"""

import math
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from quizengine.database import utcnow
from quizengine.errors import MissingCompletionData
from quizengine.models.attempt import SESSION_COMPLETED
from quizengine.services.durations import build_duration_update
from quizengine.services.conversation import find_completion_payload
from quizengine.services.locking import attempt_lock
from quizengine.services.scoring import calculate_percentages_from_results
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("scoring")


def _first_present(payload: dict, *keys):
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def parse_percentage(raw_value, label: str, attempt_id: str) -> float:
    """Parse a payload percentage and clamp it to [0, 100]."""
    if raw_value is None:
        raise MissingCompletionData(attempt_id, f"Missing {label}")
    try:
        numeric = float(raw_value)
    except (TypeError, ValueError):
        raise MissingCompletionData(attempt_id, f"{label} must be numeric, received {raw_value!r}")
    if not math.isfinite(numeric):
        raise MissingCompletionData(attempt_id, f"{label} must be finite, received {raw_value!r}")
    return min(100.0, max(0.0, numeric))


def percentages_from_payload(payload: dict, attempt_id: str) -> dict:
    return {
        "partial_credit_percentage": parse_percentage(
            _first_present(payload, "partial_credit_percentage", "raw_percentage", "percentage"),
            "partial_credit_percentage", attempt_id),
        "first_attempt_percentage": parse_percentage(
            _first_present(payload, "first_attempt_percentage", "percentage"),
            "first_attempt_percentage", attempt_id),
    }


def _snapshot(attempt) -> dict:
    return {
        "id": str(attempt.id),
        "completed_at": attempt.completed_at.isoformat() if attempt.completed_at else None,
        "partial_credit_percentage": attempt.partial_credit_percentage,
        "first_attempt_percentage": attempt.first_attempt_percentage,
        "session_status": attempt.session_status,
        **attempt.durations(),
    }


def _seal(db: Session, attempt_id: str, metrics: Optional[dict], now: datetime,
          fallback_scores: Optional[dict]) -> Optional[dict]:
    """
    One locked pass of the finalizer.

    Returns the final snapshot, or None when the ledger is empty and no
    fallback scores were supplied (the caller must fetch them unlocked).
    """
    with attempt_lock(db, attempt_id) as attempt:
        duration_update = build_duration_update(metrics, attempt.durations())

        if attempt.is_sealed:
            for field, value in duration_update.items():
                setattr(attempt, field, value)
            snapshot = _snapshot(attempt)
            snapshot["already_completed"] = True
            return snapshot

        ledger = attempt.question_results_list
        if ledger:
            scores = calculate_percentages_from_results(ledger)
            source = "ledger"
        elif fallback_scores is not None:
            scores = fallback_scores
            source = "conversation"
        else:
            return None

        attempt.completed_at = now
        attempt.partial_credit_percentage = scores["partial_credit_percentage"]
        attempt.first_attempt_percentage = scores["first_attempt_percentage"]
        attempt.session_status = SESSION_COMPLETED
        for field, value in duration_update.items():
            setattr(attempt, field, value)

        snapshot = _snapshot(attempt)
        snapshot["already_completed"] = False
        snapshot["score_source"] = source
        return snapshot


def complete_attempt(db: Session, attempt_id: str, metrics: Optional[dict] = None,
                     now: datetime = None) -> dict:
    """
    Finalize an attempt, idempotently.

    Raises:
        AttemptNotFound: the attempt id does not resolve
        MissingCompletionData: no ledger and no usable completion payload
    """
    start_time = time.time()
    now = now or utcnow()

    result = _seal(db, attempt_id, metrics, now, fallback_scores=None)

    if result is None:
        # Legacy path: read the conversation outside any lock, then re-check under lock
        log_with_context(logger, "WARNING", "Empty grading ledger, falling back to conversation payload",
                         context={"attempt_id": str(attempt_id)})
        payload = find_completion_payload(db, attempt_id)
        if not payload:
            raise MissingCompletionData(attempt_id)
        fallback_scores = percentages_from_payload(payload, attempt_id)
        result = _seal(db, attempt_id, metrics, now, fallback_scores=fallback_scores)

    duration_ms = (time.time() - start_time) * 1000
    if result["already_completed"]:
        log_with_context(logger, "INFO", "Repeat completion ignored; scores already sealed",
            context={"attempt_id": str(attempt_id)},
            extra_data={"duration_ms": round(duration_ms, 2)})
    else:
        log_with_context(logger, "INFO",
            "Attempt completed: partial={}%, first_attempt={}% (from {})".format(
                result["partial_credit_percentage"], result["first_attempt_percentage"],
                result["score_source"]),
            context={"attempt_id": str(attempt_id)},
            extra_data={"duration_ms": round(duration_ms, 2),
                        "total_duration_ms": result["total_duration_ms"]})

    return result
