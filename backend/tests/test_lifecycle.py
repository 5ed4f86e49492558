import threading

import pytest

from conftest import CLASSROOM, STUDENT
from quizengine.database import utcnow
from quizengine.errors import AttemptNotFound, QuizNotFound, TenantMismatch
from quizengine.models import Attempt, ConversationMessage, Membership, Role
from quizengine.services import lifecycle


@pytest.mark.parametrize("raw,role", [
    ("OWNER", Role.INSTRUCTOR),
    ("assistant", Role.INSTRUCTOR),
    ("Teacher", Role.INSTRUCTOR),
    ("INSTRUCTOR", Role.INSTRUCTOR),
    ("STUDENT", Role.STUDENT),
    ("guest", Role.STUDENT),
    (None, Role.STUDENT),
])
def test_membership_role_mapping(raw, role):
    assert Role.from_membership_role(raw) is role


def test_creates_first_attempt(db, quiz, student):
    result = lifecycle.create_new(db, quiz.id, STUDENT, student)

    assert result["success"] is True
    assert result["new_attempt"] is True
    assert result["attempt_count"] == 1
    attempt = db.get(Attempt, result["attempt_id"])
    assert attempt.user_id == STUDENT
    assert attempt.total_duration_ms == 0
    assert attempt.question_results_list == []


def test_unknown_quiz(db, student):
    with pytest.raises(QuizNotFound):
        lifecycle.create_new(db, "missing", STUDENT, student)


def test_other_classroom_is_a_hard_error(db, make_quiz, student, instructor):
    quiz = make_quiz(classroom_id="class-2")

    with pytest.raises(TenantMismatch):
        lifecycle.create_new(db, quiz.id, STUDENT, student)
    with pytest.raises(TenantMismatch):
        lifecycle.create_new(db, quiz.id, instructor.user_id, instructor)


def test_incomplete_attempt_must_be_resumed(db, quiz, student):
    first = lifecycle.create_new(db, quiz.id, STUDENT, student)

    result = lifecycle.create_new(db, quiz.id, STUDENT, student)

    assert result["success"] is False
    assert result["reason"] == lifecycle.REASON_INCOMPLETE_EXISTS
    assert result["existing_attempt_id"] == first["attempt_id"]
    assert result["can_resume"] is True


def test_max_attempts_reached(db, make_quiz, make_attempt, student):
    quiz = make_quiz(max_attempts=2)
    make_attempt(for_quiz=quiz, completed_at=utcnow())
    make_attempt(for_quiz=quiz, completed_at=utcnow())

    result = lifecycle.create_new(db, quiz.id, STUDENT, student)

    assert result["success"] is False
    assert result["reason"] == lifecycle.REASON_MAX_ATTEMPTS
    assert result["attempt_count"] == 2
    assert result["max_attempts"] == 2


def test_zero_max_attempts_is_unlimited(db, make_quiz, make_attempt, student):
    quiz = make_quiz(max_attempts=0)
    for _ in range(5):
        make_attempt(for_quiz=quiz, completed_at=utcnow())

    result = lifecycle.create_new(db, quiz.id, STUDENT, student)

    assert result["success"] is True
    assert result["attempt_count"] == 6


def test_unpublished_quiz_is_refused(db, make_quiz, student):
    quiz = make_quiz(status="DRAFT")

    result = lifecycle.create_new(db, quiz.id, STUDENT, student)

    assert result["success"] is False
    assert result["reason"] == lifecycle.REASON_NOT_PUBLISHED


def test_instructor_skips_student_rules(db, make_quiz, instructor):
    quiz = make_quiz(status="DRAFT", max_attempts=1)

    first = lifecycle.create_new(db, quiz.id, instructor.user_id, instructor)
    second = lifecycle.create_new(db, quiz.id, instructor.user_id, instructor)

    assert first["success"] is True
    assert second["success"] is True
    assert second["attempt_count"] == 2


def test_concurrent_creates_yield_one_attempt(session_factory, quiz):
    quiz_id = quiz.id
    member = Membership(user_id=STUDENT, classroom_id=CLASSROOM, role=Role.STUDENT)
    results = []
    barrier = threading.Barrier(6)

    def worker():
        session = session_factory()
        try:
            barrier.wait()
            results.append(lifecycle.create_new(session, quiz_id, STUDENT, member))
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 6
    assert sum(1 for r in results if r["success"]) == 1
    assert {r["reason"] for r in results if not r["success"]} == {lifecycle.REASON_INCOMPLETE_EXISTS}


def test_find_by_id_and_missing(db, attempt):
    assert lifecycle.find_by_id(db, attempt.id).quiz is not None
    with pytest.raises(AttemptNotFound):
        lifecycle.find_by_id(db, "missing")


def test_find_by_user_filters_by_classroom(db, make_quiz, make_attempt):
    home = make_quiz()
    away = make_quiz(classroom_id="class-2")
    make_attempt(for_quiz=home)
    make_attempt(for_quiz=away)

    assert len(lifecycle.find_by_user(db, STUDENT)) == 2
    mine = lifecycle.find_by_user(db, STUDENT, CLASSROOM)
    assert [a.quiz_id for a in mine] == [home.id]


def test_clear_for_user_and_quiz(db, quiz, make_attempt, add_assistant_message, instructor):
    doomed = make_attempt(completed_at=utcnow())
    make_attempt()
    kept = make_attempt(user_id="student-2")
    add_assistant_message(doomed.id, "hello")

    result = lifecycle.clear_for_user_and_quiz(db, STUDENT, quiz.id, instructor)

    assert result == {"success": True, "deleted_count": 2}
    db.expire_all()
    assert [a.id for a in lifecycle.find_by_quiz(db, quiz.id)] == [kept.id]
    assert db.query(ConversationMessage).count() == 0


def test_delete_attempt(db, attempt):
    attempt_id = attempt.id

    assert lifecycle.delete_attempt(db, attempt_id) == 1
    db.expire_all()
    assert db.get(Attempt, attempt_id) is None
