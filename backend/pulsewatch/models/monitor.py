"""Monitor model - targets being watched."""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from ..database import Base

CHECK_TYPES = ("http", "tcp", "status_api", "passive_listen")

# Kinds the scheduler probes; passive_listen only learns state from messages
ACTIVE_CHECK_TYPES = ("http", "tcp", "status_api")

DEFAULT_EXPECTED_STATUS_CODES = "200,201,204,301,302"
DEFAULT_OFFLINE_KEYWORDS = "离线,offline,down,掉线"
DEFAULT_ONLINE_KEYWORDS = "上线,online,up,恢复"


def _new_id() -> str:
    return str(uuid.uuid4())


class Monitor(Base):
    """A monitored target - HTTP endpoint, TCP host, status API or passive listener."""
    
    __tablename__ = "monitors"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False, default="")  # Empty for passive_listen
    check_type = Column(String, nullable=False, default="http")
    check_method = Column(String, nullable=False, default="GET")  # GET, HEAD, POST
    check_timeout = Column(Integer, nullable=False, default=30)  # seconds
    check_interval = Column(Integer, nullable=False, default=5)  # minutes
    check_interval_max = Column(Integer, nullable=True)  # minutes, http only
    expected_status_codes = Column(String, default=DEFAULT_EXPECTED_STATUS_CODES)
    expected_keyword = Column(String, nullable=True)
    forbidden_keyword = Column(String, nullable=True)
    offline_threshold = Column(Integer, default=3)  # minutes, status_api only
    
    # Comma-separated names: exact allow-list for status_api,
    # substring filter for passive matching
    server_names = Column(String, nullable=True)
    offline_keywords = Column(String, nullable=True)
    online_keywords = Column(String, nullable=True)
    chat_id = Column(String, nullable=True)  # Chat a passive_listen monitor listens to
    notify_chat_id = Column(String, nullable=True)  # Chat that receives acknowledgments
    
    webhook_url = Column(String, nullable=True)
    webhook_content_type = Column(String, default="application/json")
    webhook_headers = Column(String, nullable=True)  # JSON object
    webhook_body = Column(String, nullable=True)  # JSON template
    webhook_username = Column(String, nullable=True)
    
    is_active = Column(Integer, default=1)
    sort_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    checks = relationship(
        "MonitorCheck", back_populates="monitor",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    incidents = relationship(
        "Incident", back_populates="monitor",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    
    @property
    def random_interval_range(self):
        """(min, max) minutes when randomized scheduling applies, else None.
        
        A max that does not exceed the fixed interval is ignored.
        """
        if self.check_type != "http" or not self.check_interval_max:
            return None
        if self.check_interval_max <= (self.check_interval or 0):
            return None
        return (self.check_interval, self.check_interval_max)
