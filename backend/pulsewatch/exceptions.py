"""Exception hierarchy for the check-and-alert engine.

Probe errors are raised inside the probe executors and converted into a
``down`` check by the checker, so they never reach API callers. The rest
carry an HTTP status and a machine-readable code which the application's
exception handler serializes as ``{"error": code, "detail": message}``.
"""
from typing import Any, Dict, Optional


class PulsewatchError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ProbeError(PulsewatchError):
    """A probe could not confirm the target is up."""

    status_code = 502
    code = "probe_failed"

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        # HTTP status seen by the probe, 0 if none
        self.probe_status_code = status_code


class ProbeTimeout(ProbeError):
    code = "probe_timeout"


class ProbeTransportFailure(ProbeError):
    code = "probe_transport_failure"


class ProbeAssertionFailure(ProbeError):
    """The target answered but failed a status or keyword assertion."""

    code = "probe_assertion_failure"


class NotificationDeliveryFailure(PulsewatchError):
    status_code = 502
    code = "notification_delivery_failure"


class MalformedTemplate(PulsewatchError):
    """A stored webhook body or header map is not valid JSON."""

    status_code = 400
    code = "malformed_template"


class UnknownTarget(PulsewatchError):
    status_code = 404
    code = "unknown_target"

    def __init__(self, monitor_id: str):
        super().__init__(f"Monitor not found: {monitor_id}", {"monitor_id": monitor_id})
        self.monitor_id = monitor_id


class ConfigurationInvalid(PulsewatchError):
    status_code = 400
    code = "configuration_invalid"


class ChatTransportError(PulsewatchError):
    status_code = 502
    code = "chat_transport_error"
