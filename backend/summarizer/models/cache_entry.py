"""
Database cache tier model
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Index, func
from summarizer.core.database import Base


class SummaryCacheEntry(Base):
    """Durable cache tier for summary results"""
    __tablename__ = "summary_cache"

    cache_key = Column(String(128), primary_key=True, comment="Cache key")
    value = Column(Text, nullable=False, comment="Serialised SummaryResult")
    hits = Column(Integer, nullable=False, default=0, comment="Hit count")
    expires_at = Column(DateTime(timezone=True), nullable=False, comment="Expiry time")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_summary_cache_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<SummaryCacheEntry(cache_key={self.cache_key}, expires_at={self.expires_at})>"
