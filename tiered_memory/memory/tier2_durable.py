"""
Tier 2 Memory - Durable Store.

Persists importance-scored conversation memories in a SQL table so they
survive restarts. Retrieval is keyword based: a literal substring test
over the serialized content and metadata, ranked by importance and then
recency.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import delete, func, or_, select

from tiered_memory.database.connection import Database
from tiered_memory.database.models import LongTermMemoryRow, as_naive_utc, utcnow
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("tier2_memory")


def clamp_importance(value: float) -> float:
    """Importance always lives in [0, 1]; out-of-range values are clamped."""
    return min(max(float(value), 0.0), 1.0)


@dataclass
class LongTermRecord:
    """A memory row as returned to callers."""

    id: int
    user_id: str
    # None when the stored JSON could not be decoded
    content: Optional[Dict[str, Any]]
    importance: float
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def user_message(self) -> Optional[str]:
        return (self.content or {}).get("user_message")

    @property
    def bot_response(self) -> Optional[str]:
        return (self.content or {}).get("bot_response")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "metadata": self.metadata,
            "importance": self.importance,
            "timestamp": self.timestamp.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class DurableStore:
    """
    Tier 2 Memory - persistent, user-partitioned memory records.

    Read, update and maintenance paths never raise: storage errors are
    logged and turned into empty results, False or 0. ``store`` is the
    exception, its failures propagate so lost writes stay visible.
    """

    def __init__(self, database: Union[Database, str]):
        """
        Initialize Tier 2 memory.

        Args:
            database: A Database instance or an async SQLAlchemy URL
        """
        self.db = database if isinstance(database, Database) else Database(database)

    async def initialize(self) -> None:
        """Create the table and its indexes if missing."""
        await self.db.init_db()
        logger.info("Durable store initialized")

    async def close(self) -> None:
        await self.db.dispose()

    # Writes

    async def store(
        self,
        user_id: str,
        user_message: Optional[str] = None,
        bot_response: Optional[str] = None,
        importance: float = 0.5,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ) -> int:
        """
        Persist one memory and return its store-assigned id.

        Raises:
            Any storage error, unchanged.
        """
        timestamp = as_naive_utc(timestamp) if timestamp else utcnow()
        content = {
            "user_message": user_message,
            "bot_response": bot_response,
            "timestamp": timestamp.isoformat(),
        }

        row = LongTermMemoryRow(
            user_id=user_id,
            content=json.dumps(content, ensure_ascii=False),
            metadata_json=json.dumps(metadata or {}, ensure_ascii=False, default=str),
            importance=clamp_importance(importance),
            timestamp=timestamp,
        )

        try:
            async with self.db.session() as session:
                session.add(row)
                await session.commit()
                memory_id = row.id
        except Exception as e:
            logger.error("Failed to store long-term memory", user_id=user_id, error=str(e))
            raise

        logger.debug("Stored long-term memory", user_id=user_id, memory_id=memory_id)
        return memory_id

    async def update(
        self,
        memory_id: int,
        content: Optional[Union[str, Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        importance: Optional[float] = None
    ) -> bool:
        """Apply a partial update; returns False for unknown ids or on error."""
        try:
            async with self.db.session() as session:
                row = await session.get(LongTermMemoryRow, memory_id)
                if row is None:
                    return False

                if content is not None:
                    row.content = content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)
                if metadata is not None:
                    row.metadata_json = json.dumps(metadata, ensure_ascii=False, default=str)
                if importance is not None:
                    row.importance = clamp_importance(importance)
                row.updated_at = utcnow()

                await session.commit()
                return True
        except Exception as e:
            logger.error("Failed to update long-term memory", memory_id=memory_id, error=str(e))
            return False

    async def delete(self, memory_id: int) -> bool:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    delete(LongTermMemoryRow)
                    .where(LongTermMemoryRow.id == memory_id)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                return result.rowcount > 0
        except Exception as e:
            logger.error("Failed to delete long-term memory", memory_id=memory_id, error=str(e))
            return False

    async def clear(self, user_id: str) -> int:
        """Delete every memory of one user. Returns the number removed."""
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    delete(LongTermMemoryRow)
                    .where(LongTermMemoryRow.user_id == user_id)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to clear long-term memory", user_id=user_id, error=str(e))
            return 0

        logger.info("Cleared long-term memory", user_id=user_id, removed=result.rowcount)
        return result.rowcount

    async def cleanup(
        self,
        max_age_days: int = 365,
        min_importance: float = 0.1,
        max_records: int = 10000
    ) -> int:
        """
        Two-phase sweep across all users.

        1. Remove memories older than ``max_age_days`` AND below
           ``min_importance``.
        2. If more than ``max_records`` remain, remove the oldest by
           timestamp until the cap is met.

        Returns:
            Total number of memories removed.
        """
        cutoff = utcnow() - timedelta(days=max_age_days)

        try:
            async with self.db.session() as session:
                stale = await session.execute(
                    delete(LongTermMemoryRow)
                    .where(
                        LongTermMemoryRow.timestamp < cutoff,
                        LongTermMemoryRow.importance < min_importance,
                    )
                    .execution_options(synchronize_session=False)
                )
                removed = stale.rowcount

                total = await session.scalar(select(func.count()).select_from(LongTermMemoryRow))
                if total > max_records:
                    oldest_ids = (
                        select(LongTermMemoryRow.id)
                        .order_by(LongTermMemoryRow.timestamp.asc(), LongTermMemoryRow.id.asc())
                        .limit(total - max_records)
                    )
                    excess = await session.execute(
                        delete(LongTermMemoryRow)
                        .where(LongTermMemoryRow.id.in_(oldest_ids))
                        .execution_options(synchronize_session=False)
                    )
                    removed += excess.rowcount

                await session.commit()
        except Exception as e:
            logger.error("Long-term memory cleanup failed", error=str(e))
            return 0

        logger.info("Cleaned up long-term memory", removed=removed)
        return removed

    # Reads

    async def get_relevant(self, user_id: str, query: str, limit: int = 5) -> List[LongTermRecord]:
        """Keyword matches for a user, most important (then newest) first."""
        try:
            stmt = (
                select(LongTermMemoryRow)
                .where(LongTermMemoryRow.user_id == user_id, self._matches(query))
                .order_by(LongTermMemoryRow.importance.desc(), LongTermMemoryRow.timestamp.desc())
                .limit(limit)
            )
            return await self._fetch(stmt)
        except Exception as e:
            logger.error("Failed to get relevant long-term memories", user_id=user_id, error=str(e))
            return []

    async def get_recent(self, user_id: str, limit: int = 10) -> List[LongTermRecord]:
        try:
            stmt = (
                select(LongTermMemoryRow)
                .where(LongTermMemoryRow.user_id == user_id)
                .order_by(LongTermMemoryRow.timestamp.desc(), LongTermMemoryRow.id.desc())
                .limit(limit)
            )
            return await self._fetch(stmt)
        except Exception as e:
            logger.error("Failed to get recent long-term memories", user_id=user_id, error=str(e))
            return []

    async def search(
        self,
        user_id: str,
        query: Optional[str] = None,
        limit: int = 10,
        min_importance: float = 0.0,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> List[LongTermRecord]:
        """Filtered keyword search with the same ranking as get_relevant."""
        try:
            stmt = select(LongTermMemoryRow).where(
                LongTermMemoryRow.user_id == user_id,
                LongTermMemoryRow.importance >= min_importance,
            )
            if query:
                stmt = stmt.where(self._matches(query))
            if start_date:
                stmt = stmt.where(LongTermMemoryRow.timestamp >= as_naive_utc(start_date))
            if end_date:
                stmt = stmt.where(LongTermMemoryRow.timestamp <= as_naive_utc(end_date))

            stmt = stmt.order_by(
                LongTermMemoryRow.importance.desc(),
                LongTermMemoryRow.timestamp.desc(),
            ).limit(limit)
            return await self._fetch(stmt)
        except Exception as e:
            logger.error("Failed to search long-term memory", user_id=user_id, error=str(e))
            return []

    async def get(self, memory_id: int) -> Optional[LongTermRecord]:
        try:
            async with self.db.session() as session:
                row = await session.get(LongTermMemoryRow, memory_id)
                return self._to_record(row) if row else None
        except Exception as e:
            logger.error("Failed to load long-term memory", memory_id=memory_id, error=str(e))
            return None

    async def status(self) -> Dict[str, Any]:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(
                        func.count(LongTermMemoryRow.id),
                        func.count(func.distinct(LongTermMemoryRow.user_id)),
                        func.avg(LongTermMemoryRow.importance),
                    )
                )
                total, users, average = result.one()
        except Exception as e:
            logger.error("Failed to get long-term memory status", error=str(e))
            return {"type": "long-term", "error": str(e)}

        return {
            "type": "long-term",
            "total_memories": total,
            "total_users": users,
            "average_importance": float(average or 0.0),
        }

    async def get_memory_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Per-user totals and the span of stored timestamps."""
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(
                        func.count(LongTermMemoryRow.id),
                        func.avg(LongTermMemoryRow.importance),
                        func.min(LongTermMemoryRow.timestamp),
                        func.max(LongTermMemoryRow.timestamp),
                    ).where(LongTermMemoryRow.user_id == user_id)
                )
                total, average, oldest, newest = result.one()
        except Exception as e:
            logger.error("Failed to get memory stats", user_id=user_id, error=str(e))
            return None

        return {
            "total_memories": total,
            "average_importance": float(average or 0.0),
            "oldest_memory": oldest,
            "newest_memory": newest,
        }

    # Private methods

    @staticmethod
    def _matches(query: str):
        """Literal substring test against serialized content or metadata."""
        return or_(
            LongTermMemoryRow.content.contains(query, autoescape=True),
            LongTermMemoryRow.metadata_json.contains(query, autoescape=True),
        )

    async def _fetch(self, stmt) -> List[LongTermRecord]:
        async with self.db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: LongTermMemoryRow) -> LongTermRecord:
        try:
            content = json.loads(row.content)
        except (TypeError, ValueError):
            content = None
        if not isinstance(content, dict):
            logger.warning("Corrupt long-term memory content", memory_id=row.id)
            content = None

        try:
            metadata = json.loads(row.metadata_json) if row.metadata_json else {}
        except (TypeError, ValueError):
            metadata = None
        if not isinstance(metadata, dict):
            logger.warning("Corrupt long-term memory metadata", memory_id=row.id)
            metadata = {}

        return LongTermRecord(
            id=row.id,
            user_id=row.user_id,
            content=content,
            metadata=metadata,
            importance=row.importance,
            timestamp=row.timestamp,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
