"""Telegram transport - listens to chats and sends short status messages.

Talks to the Bot API directly: ``getMe`` validates a token, long-polling
``getUpdates`` feeds inbound messages to a handler and ``sendMessage``
delivers acknowledgments. Every call carries an explicit timeout.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import httpx

from ..config import settings
from ..exceptions import ChatTransportError

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"

# Acknowledgment timestamps are shown in this zone
DISPLAY_TZ = timezone(timedelta(hours=8))


@dataclass
class ChatMessage:
    """Inbound chat message as delivered by the transport."""
    chat_id: str
    message_id: int
    text: str
    date: int  # Unix seconds, as stamped by Telegram
    chat_title: str = ""

    @property
    def key(self) -> str:
        return f"{self.chat_id}_{self.message_id}"

    @classmethod
    def from_update(cls, update: Dict[str, Any]) -> Optional["ChatMessage"]:
        message = update.get("message") or update.get("channel_post")
        if not message or "chat" not in message:
            return None
        chat = message["chat"]
        return cls(
            chat_id=str(chat["id"]),
            message_id=int(message.get("message_id", 0)),
            text=message.get("text") or message.get("caption") or "",
            date=int(message.get("date", 0)),
            chat_title=chat.get("title") or "private",
        )


MessageHandler = Callable[[ChatMessage], Awaitable[Any]]


def mask_token(token: str) -> str:
    return f"{token[:10]}..." if token else ""


def format_timestamp(value: Optional[datetime] = None) -> str:
    value = value or datetime.now(timezone.utc)
    return value.astimezone(DISPLAY_TZ).strftime("%Y-%m-%d %H:%M:%S")


def format_status_message(
    monitor_name: str,
    status: str,
    server_name: Optional[str] = None,
    detail: Optional[str] = None,
) -> str:
    """Short human-readable state message for a chat."""
    emoji = "🔴" if status == "down" else "🟢"
    state = "offline" if status == "down" else "online"
    lines = [
        f"{emoji} *Status update received*",
        f"📊 Monitor: {monitor_name}",
    ]
    if server_name:
        lines.append(f"🖥️ Server: {server_name}")
    lines.append(f"📌 State: {state} → monitoring updated")
    if detail:
        lines.append(f"💬 {detail[:200]}")
    lines.append(f"⏰ {format_timestamp()}")
    return "\n".join(lines)


class TelegramClient:
    """Minimal Bot API client over httpx."""

    def __init__(self, token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self.transport = transport

    async def call(self, method: str, params: Optional[dict] = None, timeout: float = 10.0) -> Any:
        url = f"{API_BASE}/bot{self.token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await client.post(url, json=params or {})
            data = response.json()
        except httpx.HTTPError as e:
            raise ChatTransportError(f"Telegram request failed: {e.__class__.__name__}")
        except ValueError:
            raise ChatTransportError("Telegram returned invalid JSON")

        if not isinstance(data, dict):
            raise ChatTransportError("Telegram returned an unexpected response")
        if not data.get("ok"):
            raise ChatTransportError(data.get("description") or "Telegram API error")
        return data.get("result")

    async def get_me(self) -> Dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(self, offset: Optional[int], poll_timeout: int) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message", "channel_post"]}
        if offset is not None:
            params["offset"] = offset
        result = await self.call("getUpdates", params, timeout=poll_timeout + 10)
        return result if isinstance(result, list) else []

    async def send_message(self, chat_id: str, text: str, parse_mode: Optional[str] = "Markdown"):
        params = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        return await self.call("sendMessage", params)


class TelegramService:
    """Owns the bot lifecycle: token validation, polling task and sends."""

    RETRY_DELAY_SECONDS = 5

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.handler: Optional[MessageHandler] = None
        self._client: Optional[TelegramClient] = None
        self._task: Optional[asyncio.Task] = None
        self._offset: Optional[int] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._chat_tasks: Dict[str, asyncio.Task] = {}

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def token(self) -> str:
        return self._client.token if self._client else ""

    def set_handler(self, handler: MessageHandler):
        self.handler = handler

    async def validate_token(self, token: str) -> str:
        """Return the bot username for a valid token, raise ChatTransportError otherwise."""
        me = await TelegramClient(token, self.transport).get_me()
        return me.get("username", "")

    def start(self, token: str, poll: bool = True) -> bool:
        """Start (or keep) the bot for a token; returns False without a token."""
        if not token:
            logger.info("Telegram bot token not set, chat monitoring disabled")
            return False
        if self._client is not None and self._client.token == token:
            return True

        self._cancel_polling()
        self._client = TelegramClient(token, self.transport)
        self._offset = None
        if poll:
            self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Telegram bot started ({mask_token(token)})")
        return True

    async def stop(self):
        task = self._cancel_polling()
        self._client = None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            await self.drain()
            logger.info("Telegram bot stopped")

    def _cancel_polling(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def poll_once(self) -> int:
        """Fetch one batch of updates and hand each message to a handler task.

        Messages from one chat are handled in order; different chats are
        handled concurrently. Returns the number of messages dispatched.
        """
        client = self._client
        if client is None:
            return 0

        updates = await client.get_updates(self._offset, settings.telegram_poll_timeout)
        dispatched = 0
        for update in updates:
            if not isinstance(update, dict) or "update_id" not in update:
                logger.warning(f"Skipping malformed Telegram update: {update!r:.200}")
                continue
            self._offset = int(update["update_id"]) + 1
            message = ChatMessage.from_update(update)
            if message is None or self.handler is None:
                continue
            self._dispatch(message, self.handler)
            dispatched += 1
        return dispatched

    def _dispatch(self, message: ChatMessage, handler: MessageHandler):
        previous = self._chat_tasks.get(message.chat_id)
        task = asyncio.create_task(self._handle(message, handler, previous))
        self._chat_tasks[message.chat_id] = task
        self._handler_tasks.add(task)
        task.add_done_callback(lambda done: self._forget(message.chat_id, done))

    def _forget(self, chat_id: str, task: asyncio.Task):
        self._handler_tasks.discard(task)
        if self._chat_tasks.get(chat_id) is task:
            del self._chat_tasks[chat_id]

    async def _handle(
        self,
        message: ChatMessage,
        handler: MessageHandler,
        previous: Optional[asyncio.Task],
    ):
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await handler(message)
        except Exception as e:
            logger.error(f"Error handling chat message {message.key}: {e}")

    async def drain(self):
        """Wait until every dispatched message has been handled."""
        while self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)

    async def _poll_loop(self):
        while self._client is not None:
            try:
                await self.poll_once()
            except ChatTransportError as e:
                logger.error(f"Telegram polling error: {e.message}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS)
            except Exception as e:
                logger.exception(f"Unexpected Telegram polling error: {e}")
                await asyncio.sleep(self.RETRY_DELAY_SECONDS)

    async def send_message(self, chat_id: str, text: str) -> bool:
        """Send a chat message; failures are logged and reported as False."""
        if self._client is None or not chat_id:
            return False
        try:
            await self._client.send_message(chat_id, text)
            return True
        except ChatTransportError as e:
            logger.warning(f"Failed to send Telegram message to {chat_id}: {e.message}")
            return False


# Global instance
telegram_service = TelegramService()
