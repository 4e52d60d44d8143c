"""Monitor CRUD and per-monitor action endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..exceptions import ConfigurationInvalid, UnknownTarget
from ..models import Incident, Monitor, MonitorCheck
from ..models.monitor import ACTIVE_CHECK_TYPES
from ..schemas.monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorWithStatus,
    LatestCheck,
    ReorderRequest,
    CheckResponse,
    StatsResponse,
    IncidentResponse,
    StatusServerResponse,
    NotificationTestResponse,
)
from ..services.alerter import alerter_service
from ..services.checker import checker_service
from ..services.incidents import get_latest_check
from ..services.scheduler import scheduler_service
from ..services.state import monitor_state_store
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


async def _get_monitor_or_404(db: AsyncSession, monitor_id: str) -> Monitor:
    monitor = await db.get(Monitor, monitor_id)
    if monitor is None:
        raise UnknownTarget(monitor_id)
    return monitor


async def _with_status(db: AsyncSession, monitor: Monitor) -> MonitorWithStatus:
    latest = await get_latest_check(db, monitor.id)
    data = MonitorWithStatus.model_validate(monitor)
    data.latest_check = LatestCheck.model_validate(latest) if latest else None
    return data


def _validate_monitor(monitor: Monitor):
    """Reject combinations the schema cannot see on its own (partial updates)."""
    if monitor.check_type in ACTIVE_CHECK_TYPES and not (monitor.url or "").strip():
        raise ConfigurationInvalid(f"A {monitor.check_type} monitor needs a url")


@router.get("", response_model=List[MonitorWithStatus])
async def list_monitors(db: AsyncSession = Depends(get_db)):
    """List all monitors with their latest check."""
    result = await db.execute(
        select(Monitor).order_by(Monitor.sort_order, Monitor.created_at.desc())
    )
    return [await _with_status(db, monitor) for monitor in result.scalars().all()]


@router.post("", response_model=MonitorWithStatus, status_code=201)
async def create_monitor(payload: MonitorCreate, db: AsyncSession = Depends(get_db)):
    """Create a monitor; active kinds get one immediate probe."""
    values = {k: v for k, v in payload.column_values().items() if v is not None}
    max_order = await db.scalar(select(func.max(Monitor.sort_order)))
    monitor = Monitor(sort_order=(max_order or 0) + 1, **values)
    _validate_monitor(monitor)
    db.add(monitor)

    await retry_on_lock(db.commit)
    await db.refresh(monitor)
    logger.info(f"Created {monitor.check_type} monitor {monitor.name} ({monitor.id})")

    if monitor.is_active and monitor.check_type in ACTIVE_CHECK_TYPES:
        await scheduler_service.check_monitor(db, monitor)

    return await _with_status(db, monitor)


# Declared before /{monitor_id} so "reorder" is not taken for an id
@router.put("/reorder")
async def reorder_monitors(payload: ReorderRequest, db: AsyncSession = Depends(get_db)):
    """Persist a new display order; ids are placed in the order given."""
    result = await db.execute(select(Monitor).where(Monitor.id.in_(payload.ids)))
    monitors = {monitor.id: monitor for monitor in result.scalars().all()}

    for monitor_id in payload.ids:
        if monitor_id not in monitors:
            raise UnknownTarget(monitor_id)

    for index, monitor_id in enumerate(payload.ids):
        monitors[monitor_id].sort_order = index

    await retry_on_lock(db.commit)
    return {"success": True}


@router.get("/{monitor_id}", response_model=MonitorWithStatus)
async def get_monitor(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Get a specific monitor by ID."""
    monitor = await _get_monitor_or_404(db, monitor_id)
    return await _with_status(db, monitor)


@router.put("/{monitor_id}", response_model=MonitorWithStatus)
async def update_monitor(
    monitor_id: str,
    payload: MonitorUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update a monitor; its cached schedule is recomputed on the next tick."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    for key, value in payload.column_values().items():
        setattr(monitor, key, value)
    _validate_monitor(monitor)

    await retry_on_lock(db.commit)
    await db.refresh(monitor)
    monitor_state_store.reset_schedule(monitor.id)

    return await _with_status(db, monitor)


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Delete a monitor together with its checks and incidents."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    await db.delete(monitor)
    await retry_on_lock(db.commit)
    monitor_state_store.discard(monitor_id)
    logger.info(f"Deleted monitor {monitor.name} ({monitor_id})")


@router.post("/{monitor_id}/check", response_model=CheckResponse)
async def check_monitor_now(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Probe a monitor right away, outside its schedule."""
    monitor = await _get_monitor_or_404(db, monitor_id)
    if monitor.check_type not in ACTIVE_CHECK_TYPES:
        raise ConfigurationInvalid(f"{monitor.check_type} monitors cannot be probed")
    return await scheduler_service.probe_now(db, monitor_id)


@router.post("/{monitor_id}/test-notification", response_model=NotificationTestResponse)
async def send_test_notification(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Send a test webhook with sample values."""
    monitor = await _get_monitor_or_404(db, monitor_id)
    if not monitor.webhook_url:
        raise ConfigurationInvalid("No webhook URL configured")

    success = await alerter_service.send_test(monitor)
    return NotificationTestResponse(
        success=success,
        message="Test notification sent" if success else "Test notification failed",
    )


@router.get("/{monitor_id}/checks", response_model=List[CheckResponse])
async def get_monitor_checks(
    monitor_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Check history, newest first."""
    await _get_monitor_or_404(db, monitor_id)
    result = await db.execute(
        select(MonitorCheck)
        .where(MonitorCheck.monitor_id == monitor_id)
        .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{monitor_id}/stats", response_model=StatsResponse)
async def get_monitor_stats(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Total checks, uptime percentage and average latency."""
    await _get_monitor_or_404(db, monitor_id)
    result = await db.execute(
        select(
            func.count(MonitorCheck.id),
            func.sum(case((MonitorCheck.status == "up", 1), else_=0)),
            func.avg(case((MonitorCheck.status == "up", MonitorCheck.response_time))),
        ).where(MonitorCheck.monitor_id == monitor_id)
    )
    total, up, avg_latency = result.one()
    total = total or 0
    up = int(up or 0)

    return StatsResponse(
        total_checks=total,
        up_checks=up,
        uptime_percent=round(up / total * 100, 2) if total else 0.0,
        avg_response_time=int(round(avg_latency)) if avg_latency is not None else None,
    )


@router.get("/{monitor_id}/incidents", response_model=List[IncidentResponse])
async def get_monitor_incidents(
    monitor_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Incidents, most recent first."""
    await _get_monitor_or_404(db, monitor_id)
    result = await db.execute(
        select(Incident)
        .where(Incident.monitor_id == monitor_id)
        .order_by(Incident.started_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{monitor_id}/status-servers", response_model=List[StatusServerResponse])
async def get_status_servers(monitor_id: str, db: AsyncSession = Depends(get_db)):
    """Current view of the servers a status_api monitor watches."""
    monitor = await _get_monitor_or_404(db, monitor_id)
    if monitor.check_type != "status_api":
        raise ConfigurationInvalid("Only status_api monitors report servers")

    servers = await checker_service.describe_status_servers(monitor)

    return [
        StatusServerResponse(
            name=server.name,
            region=server.region,
            updated_at=server.updated_at,
            minutes_ago=server.minutes_ago,
            is_online=server.is_online,
        )
        for server in servers
    ]
