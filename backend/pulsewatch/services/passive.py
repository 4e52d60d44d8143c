"""Passive ingestion - learns monitor state from pushed messages.

Two sources feed it: chat messages delivered by the Telegram transport and
alert text posted to the inbound status webhook. A message is matched to a
monitor by its server-name filter, classified with the monitor's offline and
online keywords, deduplicated, cooled down and finally recorded through the
incident tracker.

Cooldowns compare the timestamps the messages carry themselves, not the
time they were received. A sender with a skewed or forged clock can
therefore hold a state change back; that trust is placed in the source.
"""
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import async_session
from ..models import Monitor, Setting
from ..models.monitor import DEFAULT_OFFLINE_KEYWORDS, DEFAULT_ONLINE_KEYWORDS
from ..models.settings import DEFAULT_SETTINGS
from .checker import parse_timestamp, split_list
from .incidents import (
    CHAT_PATH,
    WEBHOOK_PATH,
    IngestionPath,
    IncidentTracker,
    get_latest_check,
    incident_tracker,
)
from .state import MonitorStateStore, monitor_state_store
from .telegram import ChatMessage, TelegramService, format_status_message, telegram_service

logger = logging.getLogger(__name__)

MAX_PROCESSED_MESSAGES = 1000
CHANGE_COOLDOWN_SECONDS = 60

STATUS_WEBHOOK_SOURCE = "status-webhook"


@dataclass
class InboundMessage:
    """A pushed message, normalized across sources."""
    source: str  # chat id, or STATUS_WEBHOOK_SOURCE
    message_id: str
    text: str
    timestamp: float  # Unix seconds from the message itself

    @property
    def key(self) -> str:
        return f"{self.source}_{self.message_id}"


@dataclass
class IngestResult:
    """Outcome of one inbound message, for logs and the API."""
    accepted: bool
    reason: str
    monitor_id: Optional[str] = None
    monitor_name: Optional[str] = None
    status: Optional[str] = None
    matched_name: Optional[str] = None


class MessageDeduplicator:
    """Bounded set of seen message keys, evicting the oldest first."""

    def __init__(self, capacity: int = MAX_PROCESSED_MESSAGES):
        self.capacity = capacity
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def seen(self, key: str) -> bool:
        """True if the key was seen before; otherwise remember it."""
        if key in self._seen:
            return True
        self._seen[key] = None
        while len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
        return False

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def derive_status(monitor, text: str) -> Optional[str]:
    """Classify text as "down" or "up" for a monitor; offline wins ties."""
    text_lower = text.lower()
    offline = split_list(monitor.offline_keywords or DEFAULT_OFFLINE_KEYWORDS, lower=True)
    online = split_list(monitor.online_keywords or DEFAULT_ONLINE_KEYWORDS, lower=True)

    if any(keyword in text_lower for keyword in offline):
        return "down"
    if any(keyword in text_lower for keyword in online):
        return "up"
    return None


def match(
    monitors: Iterable,
    text: str,
    source_address: Optional[str] = None,
) -> Tuple[Optional[object], Optional[str], Optional[str]]:
    """Pick the monitor a message is about and the state it signals.

    Only monitors bound to ``source_address`` are considered when one is
    given. The first monitor whose name filter appears in the text wins.
    Returns (monitor, status, matched_name); status is None when the text
    names the monitor but carries no state keyword.
    """
    text_lower = text.lower()
    for monitor in monitors:
        if source_address is not None and (monitor.chat_id or "") != source_address:
            continue
        names = split_list(monitor.server_names)
        if not names:
            continue
        matched_name = next((name for name in names if name.lower() in text_lower), None)
        if matched_name is None:
            continue
        return monitor, derive_status(monitor, text), matched_name
    return None, None, None


def parse_message_time(value) -> Optional[float]:
    """Accept Unix seconds/milliseconds or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return value / 1000 if value > 1e12 else float(value)
    text = str(value).strip()
    try:
        return parse_message_time(float(text))
    except ValueError:
        pass
    parsed = parse_timestamp(text)
    return parsed.timestamp() if parsed else None


class PassiveIngestionService:
    """Matches pushed messages to monitors and records accepted state changes."""

    def __init__(
        self,
        tracker: Optional[IncidentTracker] = None,
        state_store: Optional[MonitorStateStore] = None,
        telegram: Optional[TelegramService] = None,
    ):
        self.tracker = tracker if tracker is not None else incident_tracker
        self.state_store = state_store if state_store is not None else monitor_state_store
        self.telegram = telegram if telegram is not None else telegram_service
        self.dedup = MessageDeduplicator()

    async def _load_candidates(self, session: AsyncSession, check_type: str, chat_id: Optional[str] = None):
        query = select(Monitor).where(Monitor.is_active == 1, Monitor.check_type == check_type)
        if chat_id is not None:
            query = query.where(Monitor.chat_id == chat_id)
        result = await session.execute(query.order_by(Monitor.sort_order, Monitor.created_at))
        return list(result.scalars().all())

    async def _get_setting(self, session: AsyncSession, key: str) -> str:
        result = await session.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()
        return setting.value if setting else DEFAULT_SETTINGS.get(key, "")

    async def ingest(
        self,
        session: AsyncSession,
        message: InboundMessage,
        candidates: Iterable,
        path: IngestionPath,
        source_address: Optional[str] = None,
        error_prefix: str = "Chat notice",
        notify_error: Optional[str] = None,
    ) -> IngestResult:
        """Run one message through dedup, matching, cooldown and the tracker."""
        if self.dedup.seen(message.key):
            return IngestResult(False, "duplicate")

        monitor, status, matched_name = match(candidates, message.text, source_address)
        if monitor is None:
            return IngestResult(False, "no_match")
        result = IngestResult(
            False, "no_state", monitor.id, monitor.name, status, matched_name
        )
        if status is None:
            return result

        state = self.state_store.get(monitor.id)
        async with state.lock:
            last_change = state.cooldowns.get(status)
            if last_change is not None and message.timestamp - last_change < CHANGE_COOLDOWN_SECONDS:
                result.reason = "cooldown"
                return result

            latest = await get_latest_check(session, monitor.id)
            if latest is not None and latest.status == status:
                result.reason = "unchanged"
                return result

            state.cooldowns[status] = message.timestamp
            error = f"{error_prefix}: {message.text[:100]}" if status == "down" else ""
            check, transition = await self.tracker.record(
                session, monitor, status, 0, 0, error, path
            )

        logger.info(
            f"[{path.name}] {monitor.name} (server: {matched_name}) changed to {status.upper()}: "
            f"{message.text[:100]}"
        )
        if transition is not None:
            # Alert text stands in for the error detail of a down only
            error = notify_error if transition.kind == "down" else None
            await self.tracker.dispatch(session, monitor, check, transition, path, error)

        result.accepted = True
        result.reason = "accepted"
        return result

    async def handle_chat_message(self, chat_message: ChatMessage) -> IngestResult:
        """Transport handler for inbound chat messages."""
        message = InboundMessage(
            source=chat_message.chat_id,
            message_id=str(chat_message.message_id),
            text=chat_message.text,
            timestamp=float(chat_message.date),
        )
        async with async_session() as session:
            candidates = await self._load_candidates(session, "passive_listen", chat_message.chat_id)
            if not candidates:
                self.dedup.seen(message.key)
                return IngestResult(False, "no_match")
            result = await self.ingest(
                session, message, candidates, CHAT_PATH, source_address=chat_message.chat_id
            )

        if result.accepted:
            await self.telegram.send_message(
                chat_message.chat_id,
                format_status_message(result.monitor_name, result.status, result.matched_name),
            )
        return result

    async def ingest_status_webhook(
        self,
        session: AsyncSession,
        text: str,
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> IngestResult:
        """Handle alert text posted by a status panel to the inbound webhook."""
        if await self._get_setting(session, "status_notify_enabled") != "1":
            return IngestResult(False, "disabled")

        timestamp = timestamp if timestamp is not None else time.time()
        if not message_id:
            message_id = hashlib.sha1(f"{text}|{timestamp}".encode("utf-8")).hexdigest()[:16]
        message = InboundMessage(STATUS_WEBHOOK_SOURCE, message_id, text, timestamp)

        candidates = await self._load_candidates(session, "status_api")
        result = await self.ingest(
            session,
            message,
            candidates,
            WEBHOOK_PATH,
            error_prefix="Status notice",
            notify_error=text[:200],
        )
        if not result.accepted:
            return result

        monitor = await session.get(Monitor, result.monitor_id)
        chat_id = (monitor.notify_chat_id if monitor else None) or await self._get_setting(
            session, "status_notify_chat_id"
        )
        if chat_id:
            await self.telegram.send_message(
                chat_id,
                format_status_message(result.monitor_name, result.status, result.matched_name, text),
            )
        return result


# Global instance
passive_ingestion_service = PassiveIngestionService()
