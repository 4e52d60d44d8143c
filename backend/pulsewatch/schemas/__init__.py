"""Pydantic schemas for API request/response models."""
from .monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    MonitorWithStatus,
    LatestCheck,
    ReorderRequest,
    CheckResponse,
    StatsResponse,
    IncidentResponse,
    StatusServerResponse,
    NotificationTestResponse,
)
from .settings import (
    TelegramSettingsResponse,
    TelegramSettingsUpdate,
    TelegramTestRequest,
    TelegramTestResponse,
    StatusNotifySettingsResponse,
    StatusNotifySettingsUpdate,
)
from .notify import (
    StatusNotifyPayload,
    IngestResponse,
    TriggerResponse,
)

__all__ = [
    "MonitorCreate",
    "MonitorUpdate",
    "MonitorResponse",
    "MonitorWithStatus",
    "LatestCheck",
    "ReorderRequest",
    "CheckResponse",
    "StatsResponse",
    "IncidentResponse",
    "StatusServerResponse",
    "NotificationTestResponse",
    "TelegramSettingsResponse",
    "TelegramSettingsUpdate",
    "TelegramTestRequest",
    "TelegramTestResponse",
    "StatusNotifySettingsResponse",
    "StatusNotifySettingsUpdate",
    "StatusNotifyPayload",
    "IngestResponse",
    "TriggerResponse",
]
