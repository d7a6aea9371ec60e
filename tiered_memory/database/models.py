from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

# Base class for all SQLAlchemy models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format SQLite DATETIME columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class LongTermMemoryRow(Base):
    """
    A single importance-scored memory promoted from a conversation.
    Content and metadata are stored as serialized JSON text.
    """
    __tablename__ = "long_term_memory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)

    # {"user_message": ..., "bot_response": ..., "timestamp": ...}
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes, the column keeps the name
    metadata_json = Column("metadata", Text, nullable=True)

    importance = Column(Float, nullable=False, default=0.5)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_user_id", "user_id"),
        Index("idx_timestamp", "timestamp"),
        Index("idx_importance", "importance"),
    )
