"""
Attempt model - one student's session taking a quiz.

This is the central entity of the engine and the only shared mutable
resource. Each attempt contains:
- Accumulated wall-clock and unfocused time reported by the client
- A pending-gap marker set when the client view was closed
- The progressive grading ledger as JSON
- Final scores, sealed once at completion
"""

import uuid
import json
from sqlalchemy import Column, Text, DateTime, ForeignKey, Index, String, BigInteger, Float
from sqlalchemy.orm import relationship
from quizengine.database import Base, utcnow
from quizengine.models.question_result import QuestionResult


SESSION_IN_PROGRESS = "in_progress"
SESSION_COMPLETED = "completed"


class Attempt(Base):
    """
    SQLAlchemy model for the attempts table.

    Lifecycle: created by the lifecycle guard, mutated while active only by
    duration, gap and ledger updates, and sealed exactly once by completion.
    After completed_at is set, question_results and both percentages never
    change; durations may still receive trailing accounting updates.
    """
    __tablename__ = "attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    quiz_id = Column(String(36), ForeignKey("quizzes.id"), nullable=False,
                     doc="Reference to the quiz being attempted")
    user_id = Column(String(64), nullable=False,
                     doc="User taking the quiz")
    started_at = Column(DateTime, nullable=False, default=utcnow,
                        doc="When the attempt was created")
    completed_at = Column(DateTime, nullable=True,
                          doc="When the attempt was sealed (NULL while in progress)")
    total_duration_ms = Column(BigInteger, nullable=False, default=0,
                               doc="Wall-clock time on the quiz, never decreases")
    unfocused_duration_ms = Column(BigInteger, nullable=False, default=0,
                                   doc="Time the quiz view was open but not focused, or closed")
    modal_closed_at = Column(DateTime, nullable=True,
                             doc="Set when the client reported the view closed; pending gap marker")
    question_results = Column(Text, nullable=False, default="[]",
                              doc="Progressive grading ledger as a JSON array")
    partial_credit_percentage = Column(Float, nullable=True,
                                       doc="Mean credit earned across questions, 0-100")
    first_attempt_percentage = Column(Float, nullable=True,
                                      doc="Share of questions answered correctly first try, 0-100")
    session_status = Column(Text, nullable=False, default=SESSION_IN_PROGRESS,
                            doc="in_progress | completed")
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow,
                        doc="Last time this row was written; gap fallback reference")

    # Relationships
    quiz = relationship("Quiz", back_populates="attempts")
    messages = relationship("ConversationMessage", back_populates="attempt",
                            cascade="all, delete-orphan",
                            order_by="ConversationMessage.created_at")

    # Database indexes for common query patterns
    __table_args__ = (
        Index("ix_attempts_quiz_user", "quiz_id", "user_id"),
        Index("ix_attempts_user_id", "user_id"),
        Index("ix_attempts_completed_at", "completed_at"),
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def is_sealed(self) -> bool:
        """Completed with both scores recorded; repeat completions are no-ops."""
        return (self.completed_at is not None
                and self.partial_credit_percentage is not None
                and self.first_attempt_percentage is not None)

    @property
    def question_results_list(self) -> list:
        """Parse the ledger JSON into QuestionResult records, in stored order."""
        raw = self.question_results
        if isinstance(raw, str):
            try:
                raw = json.loads(raw) if raw else []
            except (json.JSONDecodeError, TypeError):
                raw = []
        return [QuestionResult(**entry) for entry in (raw or [])]

    def set_question_results(self, results: list):
        self.question_results = json.dumps([r.model_dump() for r in results])

    def durations(self) -> dict:
        return {
            "total_duration_ms": int(self.total_duration_ms or 0),
            "unfocused_duration_ms": int(self.unfocused_duration_ms or 0),
        }

    def __repr__(self):
        return f"<Attempt(id={self.id}, quiz={self.quiz_id}, user={self.user_id}, status='{self.session_status}')>"
