import math
import random
import threading
from datetime import timedelta

import pytest

from conftest import reload
from quizengine.database import utcnow
from quizengine.errors import AttemptNotFound
from quizengine.services.durations import (
    MAX_DURATION_MS, build_duration_update, extract_metrics, sanitize_duration, update_durations
)


@pytest.mark.parametrize("raw,expected", [
    (None, None),
    ("abc", None),
    (math.inf, None),
    (math.nan, None),
    (True, None),
    (-250, 0),
    (12.4, 12),
    (12.5, 13),
    ("1500", 1500),
    (1e19, MAX_DURATION_MS),
    (2 ** 70, MAX_DURATION_MS),
])
def test_sanitize_duration(raw, expected):
    assert sanitize_duration(raw) == expected


def test_extract_metrics_accepts_camel_and_snake_case():
    assert extract_metrics({"totalDurationMs": 10, "unfocusedDurationMs": 2}) == {
        "total_duration_ms": 10, "unfocused_duration_ms": 2}
    assert extract_metrics({"total_duration_ms": 7}) == {"total_duration_ms": 7}
    assert extract_metrics({"totalMs": 3, "unfocusedMs": float("inf")}) == {"total_duration_ms": 3}
    assert extract_metrics(None) == {}


def test_build_duration_update_never_merges_down():
    current = {"total_duration_ms": 9000, "unfocused_duration_ms": 100}
    update = build_duration_update({"total_duration_ms": 4000, "unfocused_duration_ms": 600}, current)
    assert update == {"total_duration_ms": 9000, "unfocused_duration_ms": 600}


def test_heartbeat_merges_supplied_fields_only(db, attempt):
    result = update_durations(db, attempt.id, {"totalDurationMs": 4200})

    assert result == {"total_duration_ms": 4200, "unfocused_duration_ms": 0, "skipped": None}


def test_out_of_order_heartbeats_keep_the_maximum(db, attempt):
    reports = [1000, 5000, 3000, 5000, 4000, 2500, 4999]
    rng = random.Random(7)
    for _ in range(3):
        rng.shuffle(reports)
        for total in reports:
            update_durations(db, attempt.id, {"total_duration_ms": total, "unfocused_duration_ms": total // 10})

    refreshed = reload(db, attempt.id)
    assert refreshed.total_duration_ms == 5000
    assert refreshed.unfocused_duration_ms == 500


def test_accepted_heartbeat_touches_updated_at(db, make_attempt):
    earlier = utcnow() - timedelta(minutes=10)
    attempt = make_attempt(updated_at=earlier)
    now = utcnow()

    update_durations(db, attempt.id, {"total_duration_ms": 100}, now=now)

    assert reload(db, attempt.id).updated_at == now


def test_completed_attempt_is_not_mutated(db, make_attempt):
    attempt = make_attempt(completed_at=utcnow(), total_duration_ms=800,
                           partial_credit_percentage=50.0, first_attempt_percentage=0.0)

    result = update_durations(db, attempt.id, {"total_duration_ms": 99999})

    assert result["skipped"] == "completed"
    assert result["total_duration_ms"] == 800
    assert reload(db, attempt.id).total_duration_ms == 800


def test_pending_gap_suppresses_heartbeats(db, make_attempt):
    attempt = make_attempt(modal_closed_at=utcnow(), total_duration_ms=1000)

    result = update_durations(db, attempt.id, {"total_duration_ms": 60000})

    assert result["skipped"] == "gap_pending"
    assert reload(db, attempt.id).total_duration_ms == 1000


def test_oversized_heartbeat_is_capped(db, attempt):
    result = update_durations(db, attempt.id, {"total_duration_ms": 1e19, "unfocused_duration_ms": 1e30})

    assert result["skipped"] is None
    assert result["total_duration_ms"] == MAX_DURATION_MS
    refreshed = reload(db, attempt.id)
    assert refreshed.total_duration_ms == MAX_DURATION_MS
    assert refreshed.unfocused_duration_ms == MAX_DURATION_MS


def test_unknown_attempt_raises(db):
    with pytest.raises(AttemptNotFound):
        update_durations(db, "does-not-exist", {"total_duration_ms": 1})


def test_concurrent_heartbeats_converge_to_maximum(session_factory, attempt):
    attempt_id = attempt.id
    values = list(range(100, 4100, 100))
    random.Random(3).shuffle(values)
    chunks = [values[i::8] for i in range(8)]
    errors = []

    def worker(chunk):
        session = session_factory()
        try:
            for total in chunk:
                update_durations(session, attempt_id, {"total_duration_ms": total})
        except Exception as e:  # surfaced through the errors list
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(chunk,)) for chunk in chunks]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    check = session_factory()
    try:
        assert reload(check, attempt_id).total_duration_ms == max(values)
    finally:
        check.close()
