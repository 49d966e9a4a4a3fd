"""Durable analysis state snapshot model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String, Text

from app.config.database import Base


class AnalysisStateSnapshot(Base):
    """Serialized per-repository orchestrator state mapped to `analysis_state_snapshots`."""

    __tablename__ = "analysis_state_snapshots"

    repository_key = Column(String(200), primary_key=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_analysis_state_updated_at", "updated_at"),
    )

    def __repr__(self):
        return f"<AnalysisStateSnapshot {self.repository_key}>"
