"""Process-local per-monitor state.

Holds what never gets persisted: the randomized next interval, the
cooldown timestamps of the passive matcher and the lock that serializes
incident transitions. Entries are created lazily and dropped when a
monitor is updated or deleted; a restart simply starts from empty.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class MonitorState:
    """In-memory state owned by a single monitor."""
    next_interval: Optional[int] = None  # minutes
    # (derived status) -> message timestamp of the last accepted change
    cooldowns: Dict[str, float] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class MonitorStateStore:
    """Registry of MonitorState keyed by monitor id."""
    
    def __init__(self):
        self._states: Dict[str, MonitorState] = {}
    
    def get(self, monitor_id: str) -> MonitorState:
        state = self._states.get(monitor_id)
        if state is None:
            state = MonitorState()
            self._states[monitor_id] = state
        return state
    
    def lock(self, monitor_id: str) -> asyncio.Lock:
        """Lock serializing observation + incident updates for one monitor."""
        return self.get(monitor_id).lock
    
    def reset_schedule(self, monitor_id: str):
        """Forget the cached random interval (after a config change)."""
        state = self._states.get(monitor_id)
        if state is not None:
            state.next_interval = None
    
    def discard(self, monitor_id: str):
        """Drop everything held for a deleted monitor."""
        if self._states.pop(monitor_id, None) is not None:
            logger.debug(f"Dropped in-memory state for monitor {monitor_id}")
    
    def clear(self):
        self._states.clear()
    
    def __contains__(self, monitor_id: str) -> bool:
        return monitor_id in self._states
    
    def __len__(self) -> int:
        return len(self._states)


# Global instance
monitor_state_store = MonitorStateStore()
