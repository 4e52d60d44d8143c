"""Settings schemas for API."""
from typing import Optional
from pydantic import BaseModel, Field


class TelegramSettingsResponse(BaseModel):
    """Telegram bot status; the token is never returned in full."""
    configured: bool
    connected: bool
    token_preview: Optional[str] = None


class TelegramSettingsUpdate(BaseModel):
    """Set or clear the bot token; an empty token disables the bot."""
    token: str = ""


class TelegramTestRequest(BaseModel):
    chat_id: str = Field(..., min_length=1)


class TelegramTestResponse(BaseModel):
    success: bool
    message: str


class StatusNotifySettingsResponse(BaseModel):
    """Inbound status webhook settings."""
    enabled: bool = False
    chat_id: Optional[str] = None


class StatusNotifySettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    chat_id: Optional[str] = None
