"""
Feedback models
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Index, Uuid, func
from summarizer.core.database import Base


class Feedback(Base):
    """User ratings of summaries (append-only)"""
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    summary_id = Column(Uuid, nullable=False, comment="Rated summary")
    user_id = Column(String(100), nullable=False, comment="User id")
    rating = Column(Integer, nullable=False, comment="Rating (1-5)")
    feedback_type = Column(String(30), nullable=False, comment="Feedback type")
    edited_summary = Column(Text, nullable=True, comment="User corrected summary")
    comments = Column(Text, nullable=True, comment="Free-form comments")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_feedback_summary_id', 'summary_id'),
        Index('idx_feedback_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<Feedback(id={self.id}, summary_id={self.summary_id}, rating={self.rating})>"


class RetrainingExample(Base):
    """Corrected source/target pairs queued from poor feedback"""
    __tablename__ = "retraining_examples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    summary_id = Column(Uuid, nullable=True, comment="Originating summary")
    model_version = Column(String(100), nullable=True, comment="Model version that produced the summary")
    source_text = Column(Text, nullable=False, comment="Source text")
    target_text = Column(Text, nullable=False, comment="Target summary")
    rating = Column(Integer, nullable=True, comment="Rating that triggered the example")
    feedback_type = Column(String(30), nullable=True, comment="Feedback type")
    status = Column(String(20), nullable=False, default="pending", comment="Status (pending/used)")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    def __repr__(self):
        return f"<RetrainingExample(id={self.id}, summary_id={self.summary_id}, status={self.status})>"
