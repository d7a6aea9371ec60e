"""
Tier 1 Memory - Recent Buffer.

Keeps the most recent interaction events per user, in process.
This is the immediate, ephemeral context window; nothing here survives
a restart.
"""

import dataclasses
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from tiered_memory.database.models import as_naive_utc, utcnow
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("tier1_memory")


class EventKind(str, Enum):
    """Which side of the conversation produced an event."""
    USER_MESSAGE = "user_message"
    BOT_RESPONSE = "bot_response"


@dataclass(frozen=True)
class MemoryEvent:
    """A single inbound or outbound turn held in the Recent Buffer."""
    kind: EventKind
    content: str
    user_id: Optional[str] = None
    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    platform: Optional[str] = None
    importance: Optional[float] = None
    thought_trace: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": EventKind(self.kind).value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "platform": self.platform,
            "importance": self.importance,
            "thought_trace": self.thought_trace,
            "metadata": self.metadata,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def serialize(self) -> str:
        """JSON form used for substring search."""
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False)


class RecentBuffer:
    """
    Tier 1 Memory - bounded per-user event window.

    Each user maps to an insertion-ordered list. Appending past
    ``max_items`` drops events from the front, so the list always holds
    the newest ``max_items`` events. Unknown users read as empty.
    """

    # Fields update() never takes from the caller
    _PROTECTED_FIELDS = frozenset({"id", "user_id", "updated_at"})

    def __init__(self, max_items: int = 150):
        """
        Initialize Tier 1 memory.

        Args:
            max_items: Maximum events kept per user
        """
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.max_items = max_items
        self._events: Dict[str, List[MemoryEvent]] = {}

    async def append(self, user_id: str, event: MemoryEvent) -> str:
        """Add an event for a user and enforce the window size. Returns the event id."""
        event = dataclasses.replace(
            event,
            user_id=user_id,
            id=event.id or f"evt_{uuid.uuid4().hex[:16]}",
            timestamp=as_naive_utc(event.timestamp) if event.timestamp else utcnow(),
        )

        events = self._events.setdefault(user_id, [])
        events.append(event)

        overflow = len(events) - self.max_items
        if overflow > 0:
            del events[:overflow]

        logger.debug("Added event to recent buffer", user_id=user_id, kind=EventKind(event.kind).value)
        return event.id

    async def recent(self, user_id: str, limit: int = 10) -> List[MemoryEvent]:
        """Newest events first."""
        if limit <= 0:
            return []
        events = self._events.get(user_id, [])
        return list(reversed(events[-limit:]))

    async def oldest(self, user_id: str, limit: int = 10) -> List[MemoryEvent]:
        """Oldest events first."""
        if limit <= 0:
            return []
        return list(self._events.get(user_id, [])[:limit])

    async def all(self, user_id: str) -> List[MemoryEvent]:
        return list(self._events.get(user_id, []))

    async def count(self, user_id: str) -> int:
        return len(self._events.get(user_id, []))

    async def search(self, user_id: str, query: str) -> List[MemoryEvent]:
        """Case-insensitive substring match over each serialized event."""
        needle = query.lower()
        return [
            event for event in self._events.get(user_id, [])
            if needle in event.serialize().lower()
        ]

    async def by_kind(self, user_id: str, kind: EventKind) -> List[MemoryEvent]:
        kind = EventKind(kind)
        return [e for e in self._events.get(user_id, []) if e.kind == kind]

    async def by_time_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime
    ) -> List[MemoryEvent]:
        """Events whose timestamp falls within [start, end]. Aware bounds are converted to UTC."""
        start, end = as_naive_utc(start), as_naive_utc(end)
        return [
            e for e in self._events.get(user_id, [])
            if start <= e.timestamp <= end
        ]

    async def latest_of_kind(self, user_id: str, kind: EventKind) -> Optional[MemoryEvent]:
        kind = EventKind(kind)
        for event in reversed(self._events.get(user_id, [])):
            if event.kind == kind:
                return event
        return None

    async def update(self, user_id: str, event_id: str, **changes: Any) -> bool:
        """
        Replace fields of a stored event.

        Events are immutable values; the stored entry is swapped for a copy
        carrying the changes and a fresh ``updated_at``.
        """
        events = self._events.get(user_id)
        if not events:
            return False

        for index, event in enumerate(events):
            if event.id == event_id:
                allowed = {k: v for k, v in changes.items() if k not in self._PROTECTED_FIELDS}
                events[index] = dataclasses.replace(event, **allowed, updated_at=utcnow())
                return True
        return False

    async def remove(self, user_id: str, event_id: str) -> bool:
        events = self._events.get(user_id)
        if not events:
            return False

        for index, event in enumerate(events):
            if event.id == event_id:
                del events[index]
                return True
        return False

    async def evict_down(self, user_id: str, keep_count: int) -> None:
        """Drop the oldest events until at most ``keep_count`` remain."""
        events = self._events.get(user_id)
        if events is None:
            return

        keep_count = max(int(keep_count), 0)
        if len(events) > keep_count:
            del events[:len(events) - keep_count]
            logger.debug("Evicted old events", user_id=user_id, kept=keep_count)

    async def clear(self, user_id: str) -> None:
        if self._events.pop(user_id, None) is not None:
            logger.info("Cleared recent buffer", user_id=user_id)

    async def status(self) -> Dict[str, Any]:
        return {
            "type": "short-term",
            "total_users": len(self._events),
            "total_items": sum(len(events) for events in self._events.values()),
            "max_items_per_user": self.max_items,
        }
