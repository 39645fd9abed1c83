"""SQLAlchemy models for the QuizDeck question bank and activity log."""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.db.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Question(Base):
    """A multi-select question. Owned by the question bank, read-only here."""
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=new_id)
    category = Column(Text, nullable=True)  # free text, normalized on read
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)  # ordered option strings
    correct_answers = Column(JSON, nullable=False, default=list)  # subset of options
    explanation = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_questions_category', 'category'),
    )

    # Relationships
    activity = relationship("UserActivity", back_populates="question", cascade="all, delete-orphan")


class UserActivity(Base):
    """One rated answer to one question within a quiz attempt."""
    __tablename__ = "user_activity"

    id = Column(String(36), primary_key=True, default=new_id)
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False)
    user_email = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    user_rating = Column(Integer, CheckConstraint("user_rating BETWEEN 1 AND 4"), nullable=False)
    satisfaction_rating = Column(
        Integer,
        CheckConstraint("satisfaction_rating IS NULL OR satisfaction_rating BETWEEN 1 AND 4"),
        nullable=True
    )
    submitted_answer = Column(JSON, nullable=False, default=list)
    attempted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Indexes for query performance
    __table_args__ = (
        Index('idx_activity_user_attempted', 'user_email', 'attempted_at'),
        Index('idx_activity_user_question', 'user_email', 'question_id'),
    )

    # Relationships
    question = relationship("Question", back_populates="activity")
