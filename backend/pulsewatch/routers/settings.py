"""Settings API endpoints - Telegram bot and inbound status webhook."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Setting
from ..models.settings import DEFAULT_SETTINGS
from ..schemas.settings import (
    TelegramSettingsResponse,
    TelegramSettingsUpdate,
    TelegramTestRequest,
    TelegramTestResponse,
    StatusNotifySettingsResponse,
    StatusNotifySettingsUpdate,
)
from ..services.passive import passive_ingestion_service
from ..services.telegram import format_timestamp, mask_token, telegram_service
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


async def get_all_settings(db: AsyncSession) -> dict:
    """Get all settings as a dictionary."""
    result = await db.execute(select(Setting))
    settings_list = result.scalars().all()

    # Start with defaults
    settings_dict = dict(DEFAULT_SETTINGS)

    # Override with stored values
    for setting in settings_list:
        settings_dict[setting.key] = setting.value

    return settings_dict


async def set_setting(db: AsyncSession, key: str, value):
    """Insert or update one setting; bools are stored as "0"/"1"."""
    if isinstance(value, bool):
        store_value = "1" if value else "0"
    else:
        store_value = str(value)

    result = await db.execute(select(Setting).where(Setting.key == key))
    setting = result.scalar_one_or_none()

    if setting:
        setting.value = store_value
    else:
        db.add(Setting(key=key, value=store_value))


def _telegram_response(token: str) -> TelegramSettingsResponse:
    return TelegramSettingsResponse(
        configured=bool(token),
        connected=telegram_service.connected,
        token_preview=mask_token(token) or None,
    )


@router.get("/telegram", response_model=TelegramSettingsResponse)
async def get_telegram_settings(db: AsyncSession = Depends(get_db)):
    """Bot status with a masked token."""
    settings_dict = await get_all_settings(db)
    return _telegram_response(settings_dict.get("telegram_bot_token", ""))


@router.put("/telegram", response_model=TelegramSettingsResponse)
async def update_telegram_settings(
    update: TelegramSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Validate and store a bot token, then restart the listener with it."""
    token = update.token.strip()
    if token:
        # Raises ChatTransportError for a rejected token
        username = await telegram_service.validate_token(token)
        logger.info(f"Telegram token accepted for @{username}")

    await set_setting(db, "telegram_bot_token", token)
    await retry_on_lock(db.commit)

    await telegram_service.stop()
    if token:
        telegram_service.set_handler(passive_ingestion_service.handle_chat_message)
        telegram_service.start(token)

    return _telegram_response(token)


@router.post("/telegram/test", response_model=TelegramTestResponse)
async def test_telegram(request: TelegramTestRequest):
    """Send a connectivity test message to a chat."""
    if not telegram_service.connected:
        return TelegramTestResponse(success=False, message="Telegram bot is not configured")

    success = await telegram_service.send_message(
        request.chat_id,
        f"✅ *Pulsewatch test message*\n⏰ {format_timestamp()}",
    )
    return TelegramTestResponse(
        success=success,
        message="Test message sent" if success else "Failed to send test message",
    )


@router.get("/status-notify", response_model=StatusNotifySettingsResponse)
async def get_status_notify_settings(db: AsyncSession = Depends(get_db)):
    settings_dict = await get_all_settings(db)
    return StatusNotifySettingsResponse(
        enabled=settings_dict.get("status_notify_enabled") == "1",
        chat_id=settings_dict.get("status_notify_chat_id") or None,
    )


@router.put("/status-notify", response_model=StatusNotifySettingsResponse)
async def update_status_notify_settings(
    update: StatusNotifySettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Toggle the inbound status webhook and set its fallback chat."""
    if update.enabled is not None:
        await set_setting(db, "status_notify_enabled", update.enabled)
    if update.chat_id is not None:
        await set_setting(db, "status_notify_chat_id", update.chat_id.strip())
    await retry_on_lock(db.commit)

    return await get_status_notify_settings(db)
