"""
Usage, block and profile models
"""
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Index, Uuid, func
from summarizer.core.database import Base


class UsageLog(Base):
    """Append-only usage records, also the source for sliding-window counts"""
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, comment="User id")
    action = Column(String(50), nullable=False, comment="Action (summarize/upload/feedback)")
    document_id = Column(Uuid, nullable=True, comment="Related document")
    summary_id = Column(Uuid, nullable=True, comment="Related summary")
    tokens_used = Column(Integer, nullable=False, default=0, comment="Tokens used")
    cost = Column(Float, nullable=False, default=0.0, comment="Cost")
    processing_time = Column(Integer, nullable=True, comment="Processing time in milliseconds")
    usage_metadata = Column("metadata", JSON, nullable=True, comment="Extra metadata")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_usage_logs_user_action_created', 'user_id', 'action', 'created_at'),
        Index('idx_usage_logs_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<UsageLog(id={self.id}, user_id={self.user_id}, action={self.action})>"


class UserBlock(Base):
    """Temporary blocks issued by the rate limiter, one row per user"""
    __tablename__ = "user_blocks"

    user_id = Column(String(100), primary_key=True, comment="User id")
    reason = Column(String(100), nullable=True, comment="Block reason")
    blocked_until = Column(DateTime(timezone=True), nullable=False, comment="Block expiry")
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now(), comment="Updated at")

    def __repr__(self):
        return f"<UserBlock(user_id={self.user_id}, blocked_until={self.blocked_until})>"


class UserProfile(Base):
    """Subscription tier and quota per user"""
    __tablename__ = "user_profiles"

    user_id = Column(String(100), primary_key=True, comment="User id")
    tier = Column(String(20), nullable=False, default="free", comment="Tier (free/pro/premium)")
    monthly_quota = Column(Integer, nullable=True, comment="Monthly request quota, tier default when empty")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    def __repr__(self):
        return f"<UserProfile(user_id={self.user_id}, tier={self.tier})>"
