"""Incident tracker - turns up/down observations into open/close events.

Each monitor is either Resolved (no open incident) or Open (exactly one
incident with ``resolved_at`` NULL). A ``down`` while Resolved opens an
incident, an ``up`` while Open closes it, anything else is a no-op.
Writers must hold the monitor's lock from the state store so concurrent
probe and passive paths cannot both open or close the same incident.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Incident, MonitorCheck
from ..utils.db_utils import retry_on_lock
from .alerter import alerter_service, AlerterService
from .state import monitor_state_store, MonitorStateStore

logger = logging.getLogger(__name__)

# Status API probes must see this many downs in a row before opening
STATUS_API_CONFIRMATIONS = 2


@dataclass(frozen=True)
class IngestionPath:
    """Where an observation came from, and the alert policy that goes with it."""
    name: str
    notify_on_recovery: bool = True
    confirm_status_api_downs: bool = False


PROBE_PATH = IngestionPath("probe", notify_on_recovery=True, confirm_status_api_downs=True)
# Recoveries from chat are closed silently; downstream automation posts to the same chat
CHAT_PATH = IngestionPath("chat", notify_on_recovery=False)
WEBHOOK_PATH = IngestionPath("status_webhook", notify_on_recovery=True)


@dataclass
class Transition:
    """An incident opened ("down") or closed ("recovered")."""
    kind: str
    incident: Incident


def isoformat(value: datetime) -> str:
    return value.isoformat() + "Z"


async def get_latest_check(session: AsyncSession, monitor_id: str) -> Optional[MonitorCheck]:
    """Most recent observation for a monitor, or None."""
    result = await session.execute(
        select(MonitorCheck)
        .where(MonitorCheck.monitor_id == monitor_id)
        .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_recent_statuses(session: AsyncSession, monitor_id: str, limit: int) -> List[str]:
    result = await session.execute(
        select(MonitorCheck.status)
        .where(MonitorCheck.monitor_id == monitor_id)
        .order_by(MonitorCheck.checked_at.desc(), MonitorCheck.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_open_incident(session: AsyncSession, monitor_id: str) -> Optional[Incident]:
    result = await session.execute(
        select(Incident)
        .where(Incident.monitor_id == monitor_id, Incident.resolved_at.is_(None))
        .order_by(Incident.started_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


class IncidentTracker:
    """Records observations and advances the per-monitor incident state."""

    def __init__(
        self,
        alerter: Optional[AlerterService] = None,
        state_store: Optional[MonitorStateStore] = None,
    ):
        self.alerter = alerter if alerter is not None else alerter_service
        self.state_store = state_store if state_store is not None else monitor_state_store

    async def record(
        self,
        session: AsyncSession,
        monitor,
        status: str,
        response_time: int = 0,
        status_code: int = 0,
        error: str = "",
        path: IngestionPath = PROBE_PATH,
    ) -> Tuple[MonitorCheck, Optional[Transition]]:
        """Append an observation and apply the state machine, then commit.

        The caller must hold ``state_store.lock(monitor.id)``.
        """
        check = MonitorCheck(
            monitor_id=monitor.id,
            status=status,
            response_time=response_time,
            status_code=status_code,
            error_message=error or "",
            checked_at=datetime.utcnow(),
        )
        session.add(check)
        await session.flush()

        transition = await self._advance(session, monitor, check, path)
        await retry_on_lock(session.commit)
        return check, transition

    async def _advance(
        self,
        session: AsyncSession,
        monitor,
        check: MonitorCheck,
        path: IngestionPath,
    ) -> Optional[Transition]:
        incident = await get_open_incident(session, monitor.id)

        if check.status == "down":
            if incident is not None:
                return None

            if path.confirm_status_api_downs and monitor.check_type == "status_api":
                recent = await get_recent_statuses(session, monitor.id, STATUS_API_CONFIRMATIONS)
                downs = sum(1 for status in recent if status == "down")
                if downs < STATUS_API_CONFIRMATIONS:
                    logger.info(
                        f"Status API monitor {monitor.name}: waiting for consecutive failures "
                        f"({downs}/{STATUS_API_CONFIRMATIONS})"
                    )
                    return None

            incident = Incident(monitor_id=monitor.id, started_at=check.checked_at, notified=0)
            session.add(incident)
            await session.flush()
            logger.info(f"Incident opened for {monitor.name} via {path.name}: {check.error_message}")
            return Transition("down", incident)

        if incident is None:
            return None

        incident.resolved_at = check.checked_at
        incident.duration_seconds = max(
            0, int((datetime.utcnow() - incident.started_at).total_seconds())
        )
        logger.info(
            f"Incident closed for {monitor.name} via {path.name} after {incident.duration_seconds}s"
        )
        return Transition("recovered", incident)

    async def dispatch(
        self,
        session: AsyncSession,
        monitor,
        check: MonitorCheck,
        transition: Transition,
        path: IngestionPath = PROBE_PATH,
        error: Optional[str] = None,
    ) -> bool:
        """Send the webhook for a transition, honoring the path's recovery policy.

        Returns True when a notification was delivered.
        """
        if transition.kind == "recovered" and not path.notify_on_recovery:
            logger.info(f"Recovery of {monitor.name} via {path.name} closed without notification")
            return False
        if not monitor.webhook_url:
            return False

        delivered = await self.alerter.send_alert(
            monitor,
            transition.kind,
            error=check.error_message if error is None else error,
            timestamp=isoformat(check.checked_at),
            response_time=check.response_time,
            status_code=check.status_code,
        )

        if delivered and transition.kind == "down":
            transition.incident.notified = 1
            await retry_on_lock(session.commit)
        return delivered

    async def observe(
        self,
        session: AsyncSession,
        monitor,
        status: str,
        response_time: int = 0,
        status_code: int = 0,
        error: str = "",
        path: IngestionPath = PROBE_PATH,
    ) -> Tuple[MonitorCheck, Optional[Transition]]:
        """Record under the monitor's lock, then notify outside it."""
        async with self.state_store.lock(monitor.id):
            check, transition = await self.record(
                session, monitor, status, response_time, status_code, error, path
            )
        if transition is not None:
            await self.dispatch(session, monitor, check, transition, path)
        return check, transition


# Global instance
incident_tracker = IncidentTracker()
