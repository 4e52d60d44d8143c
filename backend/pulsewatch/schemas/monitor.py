"""Monitor schemas for API."""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class MonitorBase(BaseModel):
    """Fields shared by create and update."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    url: Optional[str] = None
    check_type: Optional[str] = Field(None, pattern="^(http|tcp|status_api|passive_listen)$")
    check_method: Optional[str] = Field(None, pattern="^(GET|HEAD|POST)$")
    check_timeout: Optional[int] = Field(None, ge=1, le=300)  # seconds
    check_interval: Optional[int] = Field(None, ge=1, le=1440)  # minutes
    check_interval_max: Optional[int] = Field(None, ge=1, le=1440)  # minutes, http only
    expected_status_codes: Optional[str] = None
    expected_keyword: Optional[str] = None
    forbidden_keyword: Optional[str] = None
    offline_threshold: Optional[int] = Field(None, ge=1, le=1440)  # minutes
    server_names: Optional[str] = None
    offline_keywords: Optional[str] = None
    online_keywords: Optional[str] = None
    chat_id: Optional[str] = None
    notify_chat_id: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_content_type: Optional[str] = None
    webhook_headers: Optional[Union[Dict[str, Any], str]] = None
    webhook_body: Optional[Union[Dict[str, Any], List[Any], str]] = None
    webhook_username: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("webhook_headers", "webhook_body", mode="before")
    @classmethod
    def parse_json_text(cls, value):
        """Accept JSON given as text; empty text means unset."""
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                return json.loads(value)
            except ValueError:
                raise ValueError("must be valid JSON")
        return value

    @field_validator("webhook_headers")
    @classmethod
    def headers_must_be_object(cls, value):
        if value is not None and not isinstance(value, dict):
            raise ValueError("must be a JSON object")
        for key, header_value in (value or {}).items():
            if not f"{key}{header_value}".isascii():
                raise ValueError(f"header {key!r} must be ASCII")
        return value

    def column_values(self) -> Dict[str, Any]:
        """Explicitly set fields, converted to column values."""
        values = self.model_dump(exclude_unset=True)
        for key in ("webhook_headers", "webhook_body"):
            if key in values and values[key] is not None:
                values[key] = json.dumps(values[key], ensure_ascii=False)
        if "is_active" in values and values["is_active"] is not None:
            values["is_active"] = 1 if values["is_active"] else 0
        return values


class MonitorCreate(MonitorBase):
    """Schema for creating a new monitor."""
    name: str = Field(..., min_length=1, max_length=255)
    url: str = ""
    check_type: str = Field(default="http", pattern="^(http|tcp|status_api|passive_listen)$")

    @model_validator(mode="after")
    def require_address(self):
        if self.check_type != "passive_listen" and not (self.url or "").strip():
            raise ValueError("url is required for active monitors")
        return self


class MonitorUpdate(MonitorBase):
    """Schema for updating a monitor; only sent fields change."""


class MonitorResponse(BaseModel):
    """Schema for monitor in API responses."""
    id: str
    name: str
    url: str
    check_type: str
    check_method: str
    check_timeout: int
    check_interval: int
    check_interval_max: Optional[int] = None
    expected_status_codes: Optional[str] = None
    expected_keyword: Optional[str] = None
    forbidden_keyword: Optional[str] = None
    offline_threshold: Optional[int] = None
    server_names: Optional[str] = None
    offline_keywords: Optional[str] = None
    online_keywords: Optional[str] = None
    chat_id: Optional[str] = None
    notify_chat_id: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_content_type: Optional[str] = None
    webhook_headers: Optional[Any] = None
    webhook_body: Optional[Any] = None
    webhook_username: Optional[str] = None
    is_active: bool
    sort_order: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("webhook_headers", "webhook_body", mode="before")
    @classmethod
    def load_json_text(cls, value):
        # Stored as text; hand back the parsed value, or the raw text if it is broken
        if isinstance(value, str) and value:
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value or None

    @field_validator("is_active", mode="before")
    @classmethod
    def int_to_bool(cls, value):
        return bool(value)


class LatestCheck(BaseModel):
    """Latest observation for a monitor."""
    status: str
    response_time: int
    status_code: int
    error_message: str
    checked_at: datetime

    class Config:
        from_attributes = True


class MonitorWithStatus(MonitorResponse):
    """Monitor with its latest observation."""
    latest_check: Optional[LatestCheck] = None


class ReorderRequest(BaseModel):
    """Monitor ids in their new display order."""
    ids: List[str] = Field(..., min_length=1)


class CheckResponse(BaseModel):
    """One observation."""
    id: int
    monitor_id: str
    status: str
    response_time: int
    status_code: int
    error_message: str
    checked_at: datetime

    class Config:
        from_attributes = True


class StatsResponse(BaseModel):
    """Aggregate numbers over a monitor's retained history."""
    total_checks: int
    up_checks: int
    uptime_percent: float
    avg_response_time: Optional[int] = None


class IncidentResponse(BaseModel):
    id: int
    monitor_id: str
    started_at: datetime
    resolved_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    notified: bool

    class Config:
        from_attributes = True

    @field_validator("notified", mode="before")
    @classmethod
    def int_to_bool(cls, value):
        return bool(value)


class StatusServerResponse(BaseModel):
    """A status-API sub-resource as currently seen."""
    name: str
    region: str
    updated_at: Optional[datetime] = None
    minutes_ago: Optional[int] = None
    is_online: bool


class NotificationTestResponse(BaseModel):
    success: bool
    message: str
