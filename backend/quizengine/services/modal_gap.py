"""
Modal Gap Service - charges time spent away from the quiz view.

When the student hides or closes the quiz, the client sends a best-effort
beacon (record_modal_closed). When they come back, the client asks for the
gap to be reconciled (calculate_and_apply_modal_gap). The whole gap is added
to both total and unfocused time: time away from the view is unfocused time.

If the beacon never arrived (device offline, browser killed), the row's
last-modified timestamp stands in for the close time, so the next
interaction self-heals the accounting.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from quizengine.config import MIN_GAP_MS
from quizengine.database import utcnow
from quizengine.services.durations import MAX_DURATION_MS, build_duration_update, extract_metrics
from quizengine.services.locking import attempt_lock
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("gaps")

SKIP_COMPLETED = "completed"
SKIP_ALREADY_CLOSED = "already_closed"
SKIP_STALE = "stale_request"


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def record_modal_closed(db: Session, attempt_id: str, metrics: Optional[dict] = None,
                        now: datetime = None) -> dict:
    """
    Mark the attempt's view as closed and apply any final metrics atomically.

    No-ops (with a `skipped` reason) when the attempt is completed, a close is
    already pending, or the beacon reports less total time than is stored,
    which means it was overtaken by a newer request.
    """
    now = now or utcnow()
    incoming = extract_metrics(metrics)

    with attempt_lock(db, attempt_id) as attempt:
        skipped = None
        if attempt.is_completed:
            skipped = SKIP_COMPLETED
        elif attempt.modal_closed_at is not None:
            skipped = SKIP_ALREADY_CLOSED
        elif ("total_duration_ms" in incoming
              and incoming["total_duration_ms"] < int(attempt.total_duration_ms or 0)):
            skipped = SKIP_STALE
        else:
            for field, value in build_duration_update(metrics, attempt.durations()).items():
                setattr(attempt, field, value)
            attempt.modal_closed_at = now

        result = {
            "id": str(attempt.id),
            "modal_closed_at": attempt.modal_closed_at.isoformat() if attempt.modal_closed_at else None,
            **attempt.durations(),
            "skipped": skipped,
        }

    log_with_context(logger, "DEBUG" if skipped else "INFO",
        "Modal close {}".format("skipped: " + skipped if skipped else "recorded"),
        context={"attempt_id": str(attempt_id)},
        extra_data={"incoming": incoming, "skipped": skipped})

    return result


def calculate_and_apply_modal_gap(db: Session, attempt_id: str, now: datetime = None,
                                  min_gap_ms: int = None) -> dict:
    """
    Charge the time elapsed since the view was closed.

    Reference time is modal_closed_at, or updated_at when no close beacon
    arrived. Gaps under min_gap_ms (quick reloads) only clear the pending
    marker. Larger gaps are added to total and unfocused durations and the
    marker is cleared, all inside one locked transaction.

    Returns:
        Dict with durations, `gap_applied` and `gap_ms`
    """
    now = now or utcnow()
    threshold = MIN_GAP_MS if min_gap_ms is None else min_gap_ms

    with attempt_lock(db, attempt_id) as attempt:
        if attempt.is_completed:
            return {**attempt.durations(), "gap_applied": False, "gap_ms": 0}

        had_close_marker = attempt.modal_closed_at is not None
        reference = attempt.modal_closed_at if had_close_marker else attempt.updated_at
        gap_ms = _elapsed_ms(reference, now) if reference else 0

        if gap_ms < threshold:
            if had_close_marker:
                attempt.modal_closed_at = None
            result = {**attempt.durations(), "gap_applied": False, "gap_ms": 0}
        else:
            attempt.total_duration_ms = min(MAX_DURATION_MS, int(attempt.total_duration_ms or 0) + gap_ms)
            attempt.unfocused_duration_ms = min(MAX_DURATION_MS, int(attempt.unfocused_duration_ms or 0) + gap_ms)
            attempt.modal_closed_at = None
            result = {**attempt.durations(), "gap_applied": True, "gap_ms": gap_ms}

    log_with_context(logger, "INFO" if result["gap_applied"] else "DEBUG",
        "Gap {} ({}ms, reference={})".format(
            "applied" if result["gap_applied"] else "ignored",
            gap_ms, "modal_closed_at" if had_close_marker else "updated_at"),
        context={"attempt_id": str(attempt_id)},
        extra_data={"gap_ms": gap_ms, "threshold_ms": threshold})

    return result
