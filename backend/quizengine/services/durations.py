"""
Duration Service - race-safe accumulation of time-on-task heartbeats.

Clients send total and unfocused durations periodically. Heartbeats can
arrive late, twice, or out of order, so every field is merged with
new = max(current, sanitize(incoming)) instead of being overwritten.
Merging down would silently erase recorded time.
"""

import math
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from quizengine.database import utcnow
from quizengine.services.locking import attempt_lock
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("durations")

SKIP_COMPLETED = "completed"
SKIP_GAP_PENDING = "gap_pending"

# Largest value a BIGINT column holds
MAX_DURATION_MS = 2 ** 63 - 1


def sanitize_duration(value) -> Optional[int]:
    """
    Normalize a client-reported duration.

    Returns None for missing, non-numeric or non-finite input. Otherwise
    rounds half-up to whole milliseconds, floors at zero and caps at
    MAX_DURATION_MS.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    rounded = math.floor(numeric + 0.5)
    return min(MAX_DURATION_MS, max(0, int(rounded)))


def extract_metrics(metrics: Optional[dict]) -> dict:
    """
    Pull sanitized durations out of a metrics payload.

    Accepts camelCase (totalDurationMs) and snake_case (total_duration_ms)
    keys. Only fields that survive sanitizing are returned.
    """
    if not metrics:
        return {}

    def _first(*keys):
        for key in keys:
            if metrics.get(key) is not None:
                return metrics[key]
        return None

    extracted = {}
    total = sanitize_duration(_first("totalDurationMs", "total_duration_ms", "totalMs", "total_ms"))
    unfocused = sanitize_duration(_first("unfocusedDurationMs", "unfocused_duration_ms",
                                         "unfocusedMs", "unfocused_ms"))
    if total is not None:
        extracted["total_duration_ms"] = total
    if unfocused is not None:
        extracted["unfocused_duration_ms"] = unfocused
    return extracted


def build_duration_update(metrics: Optional[dict], current: Optional[dict] = None) -> dict:
    """
    Monotonic max-merge of incoming metrics against current values.

    Returns only the fields that were supplied; each is the larger of the
    stored and incoming value.
    """
    current = current or {}
    update = {}
    for field, incoming in extract_metrics(metrics).items():
        update[field] = max(int(current.get(field) or 0), incoming)
    return update


def apply_duration_update(attempt, update: dict, now: datetime = None) -> bool:
    """Write a merged update onto the attempt. Returns True if anything was supplied."""
    if not update:
        return False
    for field, value in update.items():
        setattr(attempt, field, value)
    # A live heartbeat proves the client was present; it resets the gap fallback reference
    attempt.updated_at = now or utcnow()
    return True


def update_durations(db: Session, attempt_id: str, metrics: Optional[dict] = None,
                     now: datetime = None) -> dict:
    """
    Record a duration heartbeat for an attempt.

    Skips without writing when the attempt is completed or a gap is pending
    reconciliation, so a stale heartbeat cannot hide the gap.

    Returns:
        Dict with current total/unfocused durations and a `skipped` reason (or None)
    """
    with attempt_lock(db, attempt_id) as attempt:
        if attempt.is_completed:
            result = {**attempt.durations(), "skipped": SKIP_COMPLETED}
        elif attempt.modal_closed_at is not None:
            result = {**attempt.durations(), "skipped": SKIP_GAP_PENDING}
        else:
            update = build_duration_update(metrics, attempt.durations())
            apply_duration_update(attempt, update, now)
            result = {**attempt.durations(), "skipped": None}

    level = "DEBUG" if result["skipped"] else "INFO"
    log_with_context(logger, level,
        "Durations {} (total={}ms, unfocused={}ms)".format(
            "skipped: " + result["skipped"] if result["skipped"] else "merged",
            result["total_duration_ms"], result["unfocused_duration_ms"]),
        context={"attempt_id": str(attempt_id)},
        extra_data={"incoming": extract_metrics(metrics), "skipped": result["skipped"]})

    return result
