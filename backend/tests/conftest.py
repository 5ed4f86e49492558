import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from quizengine.database import build_engine, create_tables, get_db
from quizengine.models import Attempt, ConversationMessage, Membership, Quiz, Role

CLASSROOM = "class-1"
STUDENT = "student-1"
INSTRUCTOR = "teacher-1"


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'quiz_engine_test.db'}")
    create_tables(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_quiz(db):
    def _make(**overrides):
        fields = {
            "classroom_id": CLASSROOM,
            "name": "Recursion check-in",
            "max_attempts": 0,
            "grading_strategy": "HIGHEST",
            "status": "PUBLISHED",
            "question_count": 5,
        }
        fields.update(overrides)
        quiz = Quiz(**fields)
        db.add(quiz)
        db.commit()
        return quiz
    return _make


@pytest.fixture
def quiz(make_quiz):
    return make_quiz()


@pytest.fixture
def make_attempt(db, quiz):
    def _make(for_quiz=None, user_id=STUDENT, **overrides):
        target = for_quiz or quiz
        attempt = Attempt(quiz_id=target.id, user_id=user_id, **overrides)
        db.add(attempt)
        db.commit()
        return attempt
    return _make


@pytest.fixture
def attempt(make_attempt):
    return make_attempt()


@pytest.fixture
def add_assistant_message(db):
    def _add(attempt_id, content, **overrides):
        message = ConversationMessage(attempt_id=attempt_id, role="ASSISTANT", content=content, **overrides)
        db.add(message)
        db.commit()
        return message
    return _add


@pytest.fixture
def student():
    return Membership(user_id=STUDENT, classroom_id=CLASSROOM, role=Role.STUDENT)


@pytest.fixture
def instructor():
    return Membership(user_id=INSTRUCTOR, classroom_id=CLASSROOM, role=Role.INSTRUCTOR)


def reload(db, attempt_id):
    db.expire_all()
    return db.get(Attempt, attempt_id)


@pytest.fixture
def client(session_factory):
    from quizengine.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(user_id=STUDENT, role="STUDENT", classroom_id=CLASSROOM):
    return {"X-User-ID": user_id, "X-Classroom-ID": classroom_id, "X-Role": role}
