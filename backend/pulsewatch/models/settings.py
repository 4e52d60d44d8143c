"""Settings model - key-value store for runtime configuration."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime

from ..database import Base


class Setting(Base):
    """Global settings stored as key-value pairs."""
    
    __tablename__ = "settings"
    
    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Default settings
DEFAULT_SETTINGS = {
    # Telegram bot used for passive listening and acknowledgments
    "telegram_bot_token": "",
    
    # Inbound status webhook (/api/status-notify)
    "status_notify_enabled": "0",  # 0 or 1
    "status_notify_chat_id": "",  # Fallback chat for acknowledgments
}
