"""
Model registry model
"""
from sqlalchemy import Column, String, Float, Boolean, DateTime, JSON, Index, Uuid, func
import uuid
from summarizer.core.database import Base


class ModelVersion(Base):
    """Registered model variants; rows are retired, never deleted"""
    __tablename__ = "model_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, comment="Display name")
    type = Column(String(20), nullable=False, comment="Model type (extractive/abstractive/hybrid)")
    provider = Column(String(50), nullable=False, comment="Backend provider")
    backend_model_id = Column(String(200), nullable=False, comment="Model id understood by the backend")
    version = Column(String(100), nullable=False, unique=True, comment="Version string")
    cost = Column(Float, nullable=False, default=0.0, comment="Cost per 1K tokens")
    quality = Column(Float, nullable=False, default=0.0, comment="Quality score (0-1)")
    speed = Column(Float, nullable=False, default=0.0, comment="Speed score (0-1)")
    is_active = Column(Boolean, nullable=False, default=False, comment="Serving traffic")
    config = Column(JSON, nullable=True, comment="Backend parameters")
    metrics = Column(JSON, nullable=True, comment="Running metric averages")
    deployed_at = Column(DateTime(timezone=True), nullable=True, comment="Last activation time")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), comment="Created at")

    __table_args__ = (
        Index('idx_model_versions_type_active', 'type', 'is_active'),
    )

    def __repr__(self):
        return f"<ModelVersion(id={self.id}, version={self.version}, is_active={self.is_active})>"
