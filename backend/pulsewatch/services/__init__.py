"""Services for probing, scheduling, incident tracking and alerting."""
from .checker import CheckerService
from .scheduler import SchedulerService
from .alerter import AlerterService
from .incidents import IncidentTracker
from .passive import PassiveIngestionService
from .telegram import TelegramService

__all__ = [
    "CheckerService",
    "SchedulerService",
    "AlerterService",
    "IncidentTracker",
    "PassiveIngestionService",
    "TelegramService",
]
