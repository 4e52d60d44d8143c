"""MonitorCheck model - append-only observation history."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorCheck(Base):
    """One up/down observation, from a probe or a passive message."""
    
    __tablename__ = "monitor_checks"
    __table_args__ = (
        Index("idx_monitor_checks_monitor_checked", "monitor_id", "checked_at"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String(36), ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)  # up, down
    response_time = Column(Integer, nullable=False, default=0)  # ms
    status_code = Column(Integer, nullable=False, default=0)
    error_message = Column(String, nullable=False, default="")
    checked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    
    monitor = relationship("Monitor", back_populates="checks")
