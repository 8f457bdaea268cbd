"""
Alert model
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index, func
from summarizer.core.database import Base


class Alert(Base):
    """Operator alerts raised by the error monitor"""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_type = Column(String(50), nullable=False, comment="Alert type (critical_error/consecutive_errors)")
    severity = Column(String(20), nullable=False, comment="Severity of the triggering error")
    correlation_id = Column(String(64), nullable=True, comment="Correlation id of the triggering error")
    message = Column(Text, nullable=True, comment="Alert message")
    data = Column(JSON, nullable=True, comment="Full alert payload")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_alerts_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<Alert(id={self.id}, alert_type={self.alert_type}, severity={self.severity})>"
