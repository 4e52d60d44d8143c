"""Incident model - continuous down periods."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class Incident(Base):
    """A down period; open while resolved_at is NULL."""
    
    __tablename__ = "incidents"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String(36), ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    notified = Column(Integer, nullable=False, default=0)
    
    monitor = relationship("Monitor", back_populates="incidents")
    
    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
