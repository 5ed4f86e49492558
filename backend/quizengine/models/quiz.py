"""
Quiz model - the configuration owner for attempts.

A quiz defines how many attempts a student may make, which attempt counts
toward the grade, and whether students can see it yet. Attempts read this
configuration but never mutate it.
"""

import enum
import uuid
from sqlalchemy import Column, Text, Integer, DateTime, String, Index
from sqlalchemy.orm import relationship
from quizengine.database import Base, utcnow


class GradingStrategy(str, enum.Enum):
    """Which of a user's completed attempts counts as the quiz score."""
    HIGHEST = "HIGHEST"
    MOST_RECENT = "MOST_RECENT"
    FIRST = "FIRST"


class QuizStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class Quiz(Base):
    """
    SQLAlchemy model for the quizzes table.

    max_attempts of 0 means unlimited attempts.
    """
    __tablename__ = "quizzes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique quiz identifier")
    classroom_id = Column(String(36), nullable=False,
                          doc="Classroom (tenant) that owns this quiz")
    name = Column(Text, nullable=False,
                  doc="Quiz name/title")
    max_attempts = Column(Integer, nullable=False, default=1,
                          doc="Maximum attempts per student, 0 = unlimited")
    grading_strategy = Column(Text, nullable=False, default=GradingStrategy.HIGHEST.value,
                              doc="HIGHEST | MOST_RECENT | FIRST")
    status = Column(Text, nullable=False, default=QuizStatus.DRAFT.value,
                    doc="DRAFT | PUBLISHED | ARCHIVED")
    question_count = Column(Integer, nullable=False, default=5,
                            doc="Number of questions the conversation asks")
    created_at = Column(DateTime, default=utcnow,
                        doc="Timestamp when quiz was created")

    # Relationship: one quiz has many attempts
    attempts = relationship("Attempt", back_populates="quiz")

    __table_args__ = (
        Index("ix_quizzes_classroom_id", "classroom_id"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == QuizStatus.PUBLISHED.value

    def __repr__(self):
        return f"<Quiz(id={self.id}, name='{self.name}', status='{self.status}')>"
