"""Database models."""
from .settings import Setting
from .monitor import Monitor
from .monitor_check import MonitorCheck
from .incident import Incident

__all__ = ["Setting", "Monitor", "MonitorCheck", "Incident"]
