"""
ConversationMessage model - messages exchanged with the grading conversation.

The conversation collaborator owns these rows. The engine only reads recent
assistant messages when finalizing an attempt that has no progressive
grading ledger (attempts created before progressive grading existed).
"""

import uuid
from sqlalchemy import Column, Text, DateTime, ForeignKey, String, Index
from sqlalchemy.orm import relationship
from quizengine.database import Base, utcnow


MESSAGE_ROLES = ("USER", "ASSISTANT", "SYSTEM", "TOOL")


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    attempt_id = Column(String(36), ForeignKey("attempts.id"), nullable=False,
                        doc="Attempt this message belongs to")
    role = Column(Text, nullable=False,
                  doc="USER | ASSISTANT | SYSTEM | TOOL")
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    attempt = relationship("Attempt", back_populates="messages")

    __table_args__ = (
        Index("ix_conversation_messages_attempt_id", "attempt_id"),
    )

    def __repr__(self):
        return f"<ConversationMessage(id={self.id}, attempt={self.attempt_id}, role='{self.role}')>"
