import json
from datetime import datetime

import pytest
from pydantic import ValidationError

from conftest import reload
from quizengine.database import utcnow
from quizengine.errors import AttemptNotFound
from quizengine.services.grading_ledger import (
    append_question_result, get_question_results, grade_to_emoji
)


def _result(question_num, attempts=1, eventually_correct=True, credit_earned=100):
    return {
        "question_num": question_num,
        "attempts": attempts,
        "eventually_correct": eventually_correct,
        "credit_earned": credit_earned,
    }


@pytest.mark.parametrize("score,emoji", [
    (100, "heart"),
    (96, "heart"),
    (85, "+1"),
    (80, "eyes"),
    (62, "-1"),
    (10, "sob"),
    (0, "sob"),
])
def test_grade_to_emoji_picks_nearest(score, emoji):
    assert grade_to_emoji(score) == emoji


def test_grade_to_emoji_tie_goes_to_first_listed():
    assert grade_to_emoji(95) == "heart"
    assert grade_to_emoji(50, {"a": 40, "b": 60}) == "a"


def test_append_stores_entry_with_server_fields(db, attempt):
    now = datetime(2026, 3, 1, 12, 30, 0)

    result = append_question_result(db, attempt.id, _result(1, credit_earned=85), now=now)

    assert result["skipped"] is None
    entry = result["question_result"]
    assert entry["emoji"] == "+1"
    assert entry["recorded_at"] == "2026-03-01T12:30:00Z"


def test_classroom_emoji_mapping_overrides_defaults(db, attempt):
    classroom = {"tada": 100, "thinking": 50, "x": 0}

    result = append_question_result(db, attempt.id, _result(1, credit_earned=60), emoji_grades=classroom)

    assert result["question_result"]["emoji"] == "thinking"


def test_explicit_emoji_is_lowercased(db, attempt):
    result = append_question_result(db, attempt.id, _result(1), emoji_key="HEART")

    assert result["question_result"]["emoji"] == "heart"


def test_later_result_replaces_same_question(db, attempt):
    append_question_result(db, attempt.id, _result(1))
    append_question_result(db, attempt.id, _result(2, attempts=2, credit_earned=50))
    append_question_result(db, attempt.id, _result(3, attempts=0, eventually_correct=False, credit_earned=0))
    append_question_result(db, attempt.id, _result(2, attempts=3, credit_earned=80))

    ledger = get_question_results(db, attempt.id)

    assert [r.question_num for r in ledger] == [1, 3, 2]
    assert ledger[2].credit_earned == 80
    assert ledger[2].attempts == 3


def test_first_attempt_correct_is_derived_not_stored(db, attempt):
    append_question_result(db, attempt.id, _result(1))
    append_question_result(db, attempt.id, _result(2, attempts=2))

    stored = json.loads(reload(db, attempt.id).question_results)
    ledger = get_question_results(db, attempt.id)

    assert all("first_attempt_correct" not in entry for entry in stored)
    assert [r.first_attempt_correct for r in ledger] == [True, False]


def test_completed_attempt_ledger_is_frozen(db, make_attempt):
    attempt = make_attempt(completed_at=utcnow(), partial_credit_percentage=100.0,
                           first_attempt_percentage=100.0)

    result = append_question_result(db, attempt.id, _result(1, credit_earned=0))

    assert result == {"question_result": None, "skipped": "completed"}
    assert get_question_results(db, attempt.id) == []


def test_empty_ledger(db, attempt):
    assert get_question_results(db, attempt.id) == []


@pytest.mark.parametrize("bad", [
    _result(0),
    _result(1, attempts=-1),
    _result(1, credit_earned=101),
])
def test_invalid_results_are_rejected(db, attempt, bad):
    with pytest.raises(ValidationError):
        append_question_result(db, attempt.id, bad)
    assert get_question_results(db, attempt.id) == []


def test_unknown_attempt(db):
    with pytest.raises(AttemptNotFound):
        append_question_result(db, "missing", _result(1))
    with pytest.raises(AttemptNotFound):
        get_question_results(db, "missing")
