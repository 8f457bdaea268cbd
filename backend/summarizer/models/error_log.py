"""
Error log model
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index, func
from summarizer.core.database import Base


class ErrorLog(Base):
    """Classified errors with their correlation ids"""
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    correlation_id = Column(String(64), nullable=False, comment="Correlation id returned to the caller")
    error_type = Column(String(30), nullable=False, comment="Error kind")
    severity = Column(String(20), nullable=False, comment="Severity (low/medium/high/critical)")
    message = Column(Text, nullable=True, comment="Internal error message")
    user_id = Column(String(100), nullable=True, comment="User id")
    context = Column(JSON, nullable=True, comment="Operation context")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_error_logs_correlation_id', 'correlation_id'),
        Index('idx_error_logs_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<ErrorLog(id={self.id}, error_type={self.error_type}, severity={self.severity})>"
