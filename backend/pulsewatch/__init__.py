"""Pulsewatch - uptime monitoring with incident tracking and alerting."""

__version__ = "1.0.0"
