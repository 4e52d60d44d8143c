"""Checker service - performs HTTP, TCP and status-API probes."""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import httpx

from ..config import settings
from ..exceptions import (
    ProbeError,
    ProbeTimeout,
    ProbeTransportFailure,
    ProbeAssertionFailure,
)
from ..models.monitor import DEFAULT_EXPECTED_STATUS_CODES

logger = logging.getLogger(__name__)

USER_AGENT = "Pulsewatch/1.0"


@dataclass
class CheckResult:
    """Result of a monitoring check."""
    status: str  # up, down
    response_time_ms: int = 0
    status_code: int = 0
    error: str = ""

    @property
    def is_up(self) -> bool:
        return self.status == "up"


@dataclass
class StatusServer:
    """One sub-resource reported by a status API."""
    name: str
    region: str
    updated_at: Optional[datetime]
    minutes_ago: Optional[int] = None
    is_online: bool = True


def parse_status_codes(value: Optional[str]) -> Set[int]:
    """Parse a comma-separated list of status codes, ignoring junk entries."""
    codes = set()
    for part in (value or DEFAULT_EXPECTED_STATUS_CODES).split(","):
        part = part.strip()
        if part.isdigit():
            codes.add(int(part))
    if not codes:
        codes = parse_status_codes(DEFAULT_EXPECTED_STATUS_CODES)
    return codes


def split_list(value: Optional[str], lower: bool = False) -> List[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""
    items = [item.strip() for item in (value or "").split(",")]
    if lower:
        items = [item.lower() for item in items]
    return [item for item in items if item]


def evaluate_http_response(
    status_code: int,
    body: str,
    expected_codes: Set[int],
    expected_keyword: Optional[str] = None,
    forbidden_keyword: Optional[str] = None,
):
    """Apply the pass rules to an HTTP response, raising on failure.

    Order: status code, then forbidden keyword, then required keyword.
    """
    if status_code not in expected_codes:
        raise ProbeAssertionFailure(
            f"Status code {status_code} not in expected list", status_code
        )

    if forbidden_keyword and forbidden_keyword.strip() and body and forbidden_keyword in body:
        raise ProbeAssertionFailure(
            f'Forbidden keyword "{forbidden_keyword}" found', status_code
        )

    if expected_keyword and expected_keyword.strip():
        if not body or expected_keyword not in body:
            raise ProbeAssertionFailure(
                f'Keyword "{expected_keyword}" not found', status_code
            )


def resolve_host_port(target: str) -> Tuple[str, int]:
    """Split a URL or bare host into (host, port), assuming https without a scheme."""
    if not target.startswith(("http://", "https://")):
        target = f"https://{target}"
    parsed = urlparse(target)
    if not parsed.hostname:
        raise ProbeTransportFailure(f"Invalid address: {target}")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return parsed.hostname, port


_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    text = _FRACTION_RE.sub(r"\1", value.strip()).replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def classify_servers(
    servers: List[dict],
    allow_list: List[str],
    offline_threshold_minutes: int,
    now: Optional[datetime] = None,
) -> List[StatusServer]:
    """Mark each (allow-listed) server online or offline by its last update."""
    now = now or datetime.now(timezone.utc)
    threshold = offline_threshold_minutes * 60
    result = []

    for server in servers:
        name = str(server.get("name", ""))
        if allow_list and name not in allow_list:
            continue

        updated_at = parse_timestamp(server.get("updated_at"))
        entry = StatusServer(
            name=name,
            region=str(server.get("region") or ""),
            updated_at=updated_at,
        )
        if updated_at is None:
            logger.warning(f"Status API server {name!r} has unreadable updated_at")
        else:
            elapsed = (now - updated_at).total_seconds()
            entry.minutes_ago = int(elapsed // 60)
            entry.is_online = elapsed <= threshold
        result.append(entry)

    return result


class Probe:
    """One active check kind; subclasses own their parameter subset."""

    check_type: str = ""

    def __init__(self, checker: "CheckerService"):
        self.checker = checker

    async def run(self, monitor, timeout: float) -> int:
        """Probe the monitor and return the status code seen (0 if none).

        Raises a ProbeError subclass when the target is not up.
        """
        raise NotImplementedError


class HttpProbe(Probe):
    """Issue the configured request and apply status/keyword assertions."""

    check_type = "http"

    async def run(self, monitor, timeout: float) -> int:
        method = (monitor.check_method or "GET").upper()
        need_body = bool(
            (monitor.expected_keyword or "").strip() or (monitor.forbidden_keyword or "").strip()
        ) and method != "HEAD"

        try:
            async with self.checker.client(timeout, follow_redirects=True) as client:
                if need_body:
                    response = await client.request(method, monitor.url)
                    status_code = response.status_code
                    try:
                        body = response.text
                    except UnicodeDecodeError:
                        body = ""
                else:
                    # Status only, never download the body
                    async with client.stream(method, monitor.url) as response:
                        status_code = response.status_code
                    body = ""
        except httpx.TimeoutException:
            raise ProbeTimeout(f"Timeout ({timeout:g}s)")
        except httpx.HTTPError as e:
            raise ProbeTransportFailure(str(e) or e.__class__.__name__)

        evaluate_http_response(
            status_code,
            body,
            parse_status_codes(monitor.expected_status_codes),
            monitor.expected_keyword,
            monitor.forbidden_keyword,
        )
        return status_code


class TcpProbe(Probe):
    """Reachability only: a completed TCP handshake counts as up."""

    check_type = "tcp"

    async def run(self, monitor, timeout: float) -> int:
        host, port = resolve_host_port(monitor.url)
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except asyncio.TimeoutError:
            raise ProbeTimeout(f"Connection timeout ({timeout:g}s)")
        except OSError as e:
            raise ProbeTransportFailure(f"Connection failed: {e}")

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return 0


class StatusApiProbe(Probe):
    """Fetch a status document and fail if any watched server went stale."""

    check_type = "status_api"

    async def fetch_servers(self, monitor, timeout: float) -> Tuple[int, List[dict]]:
        """Fetch the server list, raising ProbeError when the API is unusable."""
        try:
            async with self.checker.client(timeout) as client:
                response = await client.get(monitor.url)
        except httpx.TimeoutException:
            raise ProbeTimeout(f"Timeout ({timeout:g}s)")
        except httpx.HTTPError as e:
            raise ProbeTransportFailure(str(e) or e.__class__.__name__)

        if not response.is_success:
            raise ProbeAssertionFailure(
                f"Status API returned {response.status_code}", response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            raise ProbeTransportFailure("Status API returned invalid JSON", response.status_code)

        if not isinstance(data, dict) or data.get("status") != "success":
            message = data.get("message") if isinstance(data, dict) else None
            raise ProbeAssertionFailure(
                f"Status API error: {message or 'unknown error'}", response.status_code
            )

        servers = data.get("data") or []
        return response.status_code, [s for s in servers if isinstance(s, dict)]

    async def run(self, monitor, timeout: float) -> int:
        status_code, servers = await self.fetch_servers(monitor, timeout)
        classified = classify_servers(
            servers,
            split_list(monitor.server_names),
            monitor.offline_threshold or 3,
        )
        offline = [s for s in classified if not s.is_online]
        if offline:
            names = ", ".join(f"{s.region}{s.name}({s.minutes_ago} min)" for s in offline)
            raise ProbeAssertionFailure(f"Offline servers: {names}", status_code)
        return status_code


class CheckerService:
    """Service dispatching checks to the probe registered for each kind."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Tests swap in an httpx.MockTransport here
        self.transport = transport
        self.probes: Dict[str, Probe] = {
            probe.check_type: probe
            for probe in (HttpProbe(self), TcpProbe(self), StatusApiProbe(self))
        }

    def client(self, timeout: float, **kwargs) -> httpx.AsyncClient:
        """Build an HTTP client bounded by the probe timeout."""
        return httpx.AsyncClient(
            timeout=timeout,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT},
            **kwargs,
        )

    def timeout_for(self, monitor) -> float:
        return float(monitor.check_timeout or settings.default_check_timeout)

    async def check(self, monitor) -> CheckResult:
        """Run the monitor's probe; never raises, failures come back as down."""
        probe = self.probes.get(monitor.check_type or "http")
        if probe is None:
            return CheckResult(status="down", error=f"Unsupported check type: {monitor.check_type}")

        timeout = self.timeout_for(monitor)
        start = time.monotonic()
        try:
            # Hard bound on the whole probe, whatever the transport does
            status_code = await asyncio.wait_for(probe.run(monitor, timeout), timeout=timeout)
            result = CheckResult(status="up", status_code=status_code)
        except asyncio.TimeoutError:
            result = CheckResult(status="down", error=f"Timeout ({timeout:g}s)")
        except ProbeError as e:
            result = CheckResult(status="down", status_code=e.probe_status_code, error=e.message)
        except Exception as e:
            logger.exception(f"Unexpected error probing monitor {monitor.id}")
            result = CheckResult(status="down", error=str(e) or "Request failed")

        result.response_time_ms = int((time.monotonic() - start) * 1000)
        logger.debug(f"Probe {monitor.check_type} {monitor.name}: {result.status} {result.error}")
        return result

    async def describe_status_servers(self, monitor) -> List[StatusServer]:
        """Current server view for a status_api monitor (raises ProbeError)."""
        probe: StatusApiProbe = self.probes["status_api"]
        timeout = self.timeout_for(monitor)
        try:
            _, servers = await asyncio.wait_for(probe.fetch_servers(monitor, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            raise ProbeTimeout(f"Timeout ({timeout:g}s)")
        return classify_servers(
            servers,
            split_list(monitor.server_names),
            monitor.offline_threshold or 3,
        )


# Global instance
checker_service = CheckerService()
