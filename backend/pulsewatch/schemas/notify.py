"""Schemas for inbound status notifications and manual schedule runs."""
from typing import Any, Optional, Union
from pydantic import BaseModel


class StatusNotifyPayload(BaseModel):
    """Alert pushed by a status panel.

    ``message`` is matched against monitor server names; ``title`` is
    prepended when present. ``time`` may be Unix seconds, milliseconds or
    an ISO-8601 string.
    """
    title: Optional[str] = None
    message: str = ""
    id: Optional[Union[str, int]] = None
    time: Optional[Any] = None

    @property
    def text(self) -> str:
        return "\n".join(part for part in (self.title, self.message) if part)


class IngestResponse(BaseModel):
    """What the matcher did with an inbound message."""
    accepted: bool
    reason: str
    monitor_id: Optional[str] = None
    monitor_name: Optional[str] = None
    status: Optional[str] = None
    matched_name: Optional[str] = None

    class Config:
        from_attributes = True


class TriggerResponse(BaseModel):
    checked: int
