"""
Document and summary models
"""
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Index, Uuid, func
import uuid
from summarizer.core.database import Base


class Document(Base):
    """Source documents submitted for summarization"""
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(100), nullable=False, comment="Owner user id")
    original_text = Column(Text, nullable=False, comment="Submitted text")
    content_hash = Column(String(64), nullable=True, comment="SHA-256 of the normalised text")
    language = Column(String(10), nullable=False, default="en", comment="Detected language")
    status = Column(String(20), nullable=False, default="completed", comment="Status (processing/completed/failed)")
    doc_metadata = Column("metadata", JSON, nullable=True, comment="Extra metadata (word count, source)")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_documents_user_id', 'user_id'),
        Index('idx_documents_content_hash', 'content_hash'),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, user_id={self.user_id}, status={self.status})>"


class Summary(Base):
    """Generated summaries"""
    __tablename__ = "summaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, comment="Source document")
    user_id = Column(String(100), nullable=False, comment="Owner user id")
    summary_text = Column(Text, nullable=False, comment="Summary text")
    method = Column(String(50), nullable=False, comment="Method (extractive/abstractive/hybrid/hierarchical/... (fallback))")
    config = Column(JSON, nullable=False, comment="Summarization config")
    metrics = Column(JSON, nullable=True, comment="Summary metrics")
    model_version = Column(String(100), nullable=True, comment="Model version that produced the summary")
    processing_time = Column(Integer, nullable=True, comment="Processing time in milliseconds")
    confidence = Column(Float, nullable=True, comment="Confidence score (0-1)")
    cache_key = Column(String(128), nullable=True, comment="Cache key")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_summaries_document_id', 'document_id'),
        Index('idx_summaries_user_id', 'user_id'),
        Index('idx_summaries_model_version', 'model_version'),
    )

    def __repr__(self):
        return f"<Summary(id={self.id}, method={self.method}, model_version={self.model_version})>"
