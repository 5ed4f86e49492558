"""
QuestionResult record - one entry of an attempt's progressive grading ledger.

This is not a table. The ledger is persisted as a JSON array in
attempts.question_results; this model gives each entry a typed shape.
"""

from typing import Optional
from pydantic import BaseModel, Field


class QuestionResult(BaseModel):
    question_num: int = Field(..., ge=1, description="1-indexed question number")
    attempts: int = Field(..., ge=0, description="Answer attempts (0 = skipped)")
    eventually_correct: bool
    credit_earned: float = Field(..., ge=0, le=100, description="Credit for this question, 0-100")
    emoji: Optional[str] = Field(None, description="Emoji shortcode nearest to the credit earned")
    recorded_at: Optional[str] = Field(None, description="Server-assigned ISO 8601 timestamp")

    @property
    def first_attempt_correct(self) -> bool:
        # Derived, never stored
        return self.attempts == 1 and self.eventually_correct
