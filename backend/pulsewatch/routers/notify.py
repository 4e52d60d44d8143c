"""Inbound status webhook and manual schedule trigger."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.notify import IngestResponse, StatusNotifyPayload, TriggerResponse
from ..services.passive import parse_message_time, passive_ingestion_service
from ..services.scheduler import scheduler_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["notify"])


@router.post("/status-notify", response_model=IngestResponse)
async def status_notify(payload: StatusNotifyPayload, db: AsyncSession = Depends(get_db)):
    """Accept an alert pushed by a status panel and apply it to the matching monitor."""
    result = await passive_ingestion_service.ingest_status_webhook(
        db,
        payload.text,
        message_id=str(payload.id) if payload.id is not None else None,
        timestamp=parse_message_time(payload.time),
    )
    logger.debug(f"Status notification {result.reason}: {payload.text[:100]}")
    return IngestResponse.model_validate(result)


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_checks():
    """Run one schedule pass now; returns how many monitors were probed."""
    checked = await scheduler_service.run_due()
    return TriggerResponse(checked=checked)
