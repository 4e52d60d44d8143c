"""Alerter service - renders and delivers webhook notifications on state changes."""
import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..exceptions import MalformedTemplate, NotificationDeliveryFailure
from .templating import render_template

logger = logging.getLogger(__name__)

TRANSITIONS = ("down", "recovered", "test")


@dataclass
class Notification:
    """A rendered webhook call, ready to send."""
    url: str
    headers: Dict[str, str]
    payload: Any


def _load_json(raw: Optional[str], what: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedTemplate(f"Invalid {what} JSON: {e}")


class AlerterService:
    """Service building and sending per-monitor webhook notifications."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def build_variables(
        self,
        monitor,
        transition: str,
        error: str = "",
        timestamp: str = "",
        response_time: int = 0,
        status_code: int = 0,
    ) -> Dict[str, str]:
        """Values available to ``{{name}}`` placeholders."""
        return {
            "monitor_name": monitor.name,
            "monitor_url": monitor.url or "",
            "status": transition,
            "error": error or "",
            "timestamp": timestamp,
            "response_time": str(response_time),
            "status_code": str(status_code),
        }

    def default_payload(self, monitor, transition: str, variables: Dict[str, str]) -> Dict[str, Any]:
        """Payload used when the monitor has no (usable) body template."""
        if transition == "recovered":
            message = f"✅ {monitor.name} is back UP!"
        elif transition == "test":
            message = f"🔔 {monitor.name} test notification"
        else:
            message = f"🚨 {monitor.name} is DOWN! {variables['error'][:100]}".rstrip()

        return {
            "monitor": monitor.name,
            "url": monitor.url or "",
            "status": transition,
            "timestamp": variables["timestamp"],
            "response_time": int(variables["response_time"]),
            "status_code": int(variables["status_code"]),
            "error": variables["error"],
            "message": message,
        }

    def build_headers(self, monitor) -> Dict[str, str]:
        """Content type, then custom headers (which win), then basic auth."""
        headers = {"Content-Type": monitor.webhook_content_type or "application/json"}

        try:
            custom = _load_json(monitor.webhook_headers, "webhook headers")
        except MalformedTemplate as e:
            logger.warning(f"Ignoring headers for {monitor.name}: {e.message}")
            custom = None
        if isinstance(custom, dict):
            headers.update({str(k): str(v) for k, v in custom.items()})

        if monitor.webhook_username:
            token = base64.b64encode(f"{monitor.webhook_username}:".encode()).decode()
            headers["Authorization"] = f"Basic {token}"

        return headers

    def render(self, monitor, transition: str, variables: Dict[str, str]) -> Notification:
        """Render the monitor's notification for a transition."""
        try:
            template = _load_json(monitor.webhook_body, "webhook body")
        except MalformedTemplate as e:
            logger.warning(f"Falling back to default payload for {monitor.name}: {e.message}")
            template = None

        if template is None:
            payload = self.default_payload(monitor, transition, variables)
        else:
            payload = render_template(template, variables)

        return Notification(
            url=monitor.webhook_url,
            headers=self.build_headers(monitor),
            payload=payload,
        )

    async def deliver(self, notification: Notification):
        """POST a rendered notification once; raises NotificationDeliveryFailure."""
        body = json.dumps(notification.payload, ensure_ascii=False).encode("utf-8")
        try:
            async with httpx.AsyncClient(
                timeout=settings.notification_timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    notification.url,
                    content=body,
                    headers=notification.headers,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NotificationDeliveryFailure(f"Webhook request failed: {e.__class__.__name__}: {e}")
        except (UnicodeEncodeError, ValueError) as e:
            # Header values httpx cannot encode as ASCII
            raise NotificationDeliveryFailure(f"Webhook request invalid: {e.__class__.__name__}: {e}")

        if response.status_code >= 400:
            raise NotificationDeliveryFailure(
                f"Webhook returned {response.status_code}",
                {"status_code": response.status_code},
            )

    async def send_alert(
        self,
        monitor,
        transition: str,
        error: str = "",
        timestamp: str = "",
        response_time: int = 0,
        status_code: int = 0,
    ) -> bool:
        """Render and send a notification; failures are logged, never raised."""
        if not monitor.webhook_url:
            return False

        variables = self.build_variables(
            monitor, transition, error, timestamp, response_time, status_code
        )
        notification = self.render(monitor, transition, variables)

        try:
            await self.deliver(notification)
        except NotificationDeliveryFailure as e:
            logger.error(f"Failed to send {transition} webhook for {monitor.name}: {e.message}")
            return False

        logger.info(f"Webhook sent: {transition} for {monitor.name}")
        return True

    async def send_test(self, monitor) -> bool:
        """Send a test notification with fixed sample values."""
        return await self.send_alert(
            monitor,
            "test",
            error="Test notification",
            timestamp=datetime.utcnow().isoformat() + "Z",
            response_time=123,
            status_code=200,
        )


# Global instance
alerter_service = AlerterService()
