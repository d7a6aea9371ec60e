"""
Memory Orchestrator.

Unified interface for the 3-tier memory system. Ingests conversation
turns, promotes important exchanges, assembles context from every tier
and keeps the Recent Buffer bounded through consolidation.

Nothing raised by a tier escapes this class: failures are logged and
the affected tier contributes an empty result.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional

from tiered_memory.config.settings import MemorySettings, settings as default_settings
from tiered_memory.database.models import utcnow
from tiered_memory.memory.scoring import KeywordTurnScorer, TurnScorer
from tiered_memory.memory.tier1_recent import EventKind, MemoryEvent, RecentBuffer
from tiered_memory.memory.tier2_durable import DurableStore, LongTermRecord
from tiered_memory.memory.tier3_semantic import ScoredDocument, SemanticIndex
from tiered_memory.services.scheduler import CleanupScheduler
from tiered_memory.utils.embedding_client import EmbeddingProvider, build_embedding_provider
from tiered_memory.utils.structured_logging import get_logger, setup_logging

logger = get_logger("memory_manager")


class MemoryScope(str, Enum):
    """Which per-user tiers a clear operation touches."""
    ALL = "all"
    SHORT = "short"
    LONG = "long"


@dataclass
class ContextBundle:
    """Merged retrieval result; every tier is always present, possibly empty."""
    short_term: List[MemoryEvent] = field(default_factory=list)
    long_term: List[LongTermRecord] = field(default_factory=list)
    rag: List[ScoredDocument] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.short_term or self.long_term or self.rag)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "short_term": [event.to_dict() for event in self.short_term],
            "long_term": [record.to_dict() for record in self.long_term],
            "rag": [doc.to_dict() for doc in self.rag],
        }


class MemoryOrchestrator:
    """
    Composes the Recent Buffer, Durable Store and Semantic Index.

    Provides:
    - Turn ingestion with importance scoring
    - Promotion of important exchanges to the durable and semantic tiers
    - Concurrent, failure-tolerant context assembly
    - Capacity-triggered consolidation of the Recent Buffer
    - Per-user clearing, cross-tier search, status and cleanup
    """

    def __init__(
        self,
        recent: RecentBuffer,
        durable: DurableStore,
        semantic: SemanticIndex,
        scorer: Optional[TurnScorer] = None,
        config: Optional[MemorySettings] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            recent: Tier 1 buffer
            durable: Tier 2 store
            semantic: Tier 3 index
            scorer: Promotion/importance heuristic (keyword scorer by default)
            config: Thresholds and windows (module settings by default)
        """
        self.recent = recent
        self.durable = durable
        self.semantic = semantic
        self.scorer = scorer or KeywordTurnScorer()
        self.config = config or default_settings
        self.scheduler: Optional[CleanupScheduler] = None

    @classmethod
    def from_settings(
        cls,
        config: Optional[MemorySettings] = None,
        provider: Optional[EmbeddingProvider] = None,
        scorer: Optional[TurnScorer] = None,
        configure_logging: bool = False
    ) -> "MemoryOrchestrator":
        """
        Build all three tiers from configuration.

        Args:
            config: Settings to use (module settings by default)
            provider: Embedding provider; built from config when omitted
            scorer: Turn scorer (keyword scorer by default)
            configure_logging: Apply LOG_LEVEL/LOG_JSON via setup_logging
        """
        config = config or default_settings
        if configure_logging:
            setup_logging(config.log_level, config.log_json)
        if provider is None:
            provider = build_embedding_provider(config)

        return cls(
            recent=RecentBuffer(max_items=config.short_term_max_items),
            durable=DurableStore(config.database_url),
            semantic=SemanticIndex.from_settings(config, provider),
            scorer=scorer,
            config=config,
        )

    async def initialize(self) -> None:
        """
        Prepare durable storage. Must be awaited before first use.

        A storage failure is logged once and the engine starts anyway.
        """
        logger.info("Initializing memory orchestrator...")
        try:
            await self.durable.initialize()
        except Exception as e:
            logger.error("Durable store unavailable, continuing without it", error=str(e))

        if self.config.enable_cleanup_scheduler and self.scheduler is None:
            self.scheduler = CleanupScheduler.from_settings(self, self.config)
            await self.scheduler.start()

        logger.info(
            "Memory orchestrator initialized",
            semantic_mode=self.semantic.mode,
            short_term_max_items=self.recent.max_items,
            consolidation_threshold=self.config.consolidation_threshold,
        )

    async def close(self) -> None:
        if self.scheduler:
            await self.scheduler.stop()
            self.scheduler = None
        await self.semantic.close()
        await self.durable.close()

    # Turn ingestion

    async def ingest_user_message(
        self,
        user_id: str,
        text: str,
        platform: str = "unknown",
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Record an inbound message. Returns the event id, or None on failure."""
        try:
            return await self.recent.append(user_id, MemoryEvent(
                kind=EventKind.USER_MESSAGE,
                content=text,
                platform=platform,
                metadata=metadata or {},
            ))
        except Exception as e:
            logger.error("Failed to ingest user message", user_id=user_id, error=str(e))
            return None

    async def ingest_bot_response(
        self,
        user_id: str,
        text: str,
        thought_trace: Optional[Any] = None,
        user_message: Optional[str] = None
    ) -> Optional[str]:
        """
        Record an outbound response, then promote and consolidate as needed.

        Args:
            user_id: User the response was sent to
            text: Response text
            thought_trace: Reasoning trace attached to the event (optional)
            user_message: The message being answered; defaults to the
                latest user message in the Recent Buffer

        Returns:
            The event id, or None on failure
        """
        try:
            if user_message is None:
                last = await self.recent.latest_of_kind(user_id, EventKind.USER_MESSAGE)
                user_message = last.content if last else ""

            importance = self.importance(user_message, text)
            promote = self.should_promote(user_message, text)

            event_id = await self.recent.append(user_id, MemoryEvent(
                kind=EventKind.BOT_RESPONSE,
                content=text,
                thought_trace=thought_trace,
                importance=importance,
                metadata={"promoted": promote},
            ))

            if promote:
                await self.promote(user_id, user_message, text, importance=importance)

            await self.consolidate_if_needed(user_id)
            return event_id
        except Exception as e:
            logger.error("Failed to ingest bot response", user_id=user_id, error=str(e))
            return None

    # Scoring

    def should_promote(self, user_message: str, bot_response: str) -> bool:
        return self.scorer.should_promote(user_message, bot_response)

    def importance(self, user_message: str, bot_response: str) -> float:
        return self.scorer.importance(user_message, bot_response)

    async def promote(
        self,
        user_id: str,
        user_message: str,
        bot_response: str,
        importance: Optional[float] = None
    ) -> Dict[str, bool]:
        """
        Write an exchange to the Durable Store and the Semantic Index.

        The two writes are independent: one failing neither blocks nor
        rolls back the other.

        Returns:
            Which writes succeeded, keyed "long_term" and "rag"
        """
        if importance is None:
            importance = self.importance(user_message, bot_response)
        timestamp = utcnow()
        outcome = {"long_term": False, "rag": False}

        try:
            await self.durable.store(
                user_id,
                user_message=user_message,
                bot_response=bot_response,
                importance=importance,
                metadata={"type": "conversation"},
                timestamp=timestamp,
            )
            outcome["long_term"] = True
        except Exception as e:
            logger.error("Promotion to durable store failed", user_id=user_id, error=str(e))

        try:
            await self.semantic.add_document(
                f"User: {user_message}\nBot: {bot_response}",
                {
                    "user_id": user_id,
                    "timestamp": timestamp.isoformat(),
                    "type": "conversation",
                },
            )
            outcome["rag"] = True
        except Exception as e:
            logger.error("Promotion to semantic index failed", user_id=user_id, error=str(e))

        if outcome["long_term"] != outcome["rag"]:
            logger.warning("Partial promotion", user_id=user_id, **outcome)
        else:
            logger.debug("Promoted exchange", user_id=user_id, importance=importance, **outcome)
        return outcome

    # Consolidation

    async def consolidate_if_needed(self, user_id: str) -> bool:
        """Consolidate when the user's buffer exceeds the threshold."""
        count = await self.recent.count(user_id)
        if count <= self.config.consolidation_threshold:
            return False

        await self.consolidate(user_id)
        return True

    async def consolidate(self, user_id: str) -> int:
        """
        Move important old events to the Durable Store and trim the buffer.

        The oldest ``consolidation_batch_size`` events are inspected; those
        with a precomputed importance above ``consolidation_min_importance``
        are stored as-is (no re-scoring). Events already promoted at
        response time are skipped. The buffer is then trimmed to
        ``consolidation_threshold * consolidation_trim_ratio``.

        Returns:
            Number of events written to the Durable Store
        """
        logger.info("Consolidating memory", user_id=user_id)
        stored = 0

        for event in await self.recent.oldest(user_id, self.config.consolidation_batch_size):
            if event.metadata.get("promoted"):
                continue
            if event.importance is None or event.importance <= self.config.consolidation_min_importance:
                continue

            is_user = event.kind == EventKind.USER_MESSAGE
            try:
                await self.durable.store(
                    user_id,
                    user_message=event.content if is_user else None,
                    bot_response=None if is_user else event.content,
                    importance=event.importance,
                    metadata={
                        "type": "consolidated",
                        "event_id": event.id,
                        "kind": EventKind(event.kind).value,
                        "platform": event.platform,
                    },
                    timestamp=event.timestamp,
                )
                stored += 1
            except Exception as e:
                logger.error("Failed to consolidate event", user_id=user_id, event_id=event.id, error=str(e))

        await self.recent.evict_down(user_id, self.config.consolidation_keep_count)

        logger.info(
            "Consolidated memory",
            user_id=user_id,
            stored=stored,
            kept=self.config.consolidation_keep_count,
        )
        return stored

    # Retrieval

    async def get_context(self, user_id: str, query: str) -> ContextBundle:
        """Fan out to all tiers concurrently and merge the results."""
        short_term, long_term, rag = await asyncio.gather(
            self._call_tier(
                "short_term", "recent",
                self.recent.recent(user_id, self.config.context_short_term_limit),
            ),
            self._call_tier(
                "long_term", "get_relevant",
                self.durable.get_relevant(user_id, query, self.config.context_long_term_limit),
            ),
            self._call_tier(
                "rag", "search",
                self.semantic.search(query, self.config.context_rag_limit),
            ),
        )
        return ContextBundle(short_term=short_term, long_term=long_term, rag=rag)

    async def search_across_tiers(
        self,
        user_id: str,
        query: str,
        include_short_term: bool = True,
        include_long_term: bool = True,
        include_rag: bool = True,
        rag_limit: int = 5
    ) -> ContextBundle:
        """Keyword/semantic search over the selected tiers."""
        short_term, long_term, rag = await asyncio.gather(
            self._call_tier("short_term", "search", self.recent.search(user_id, query))
            if include_short_term else _nothing(),
            self._call_tier("long_term", "search", self.durable.search(user_id, query))
            if include_long_term else _nothing(),
            self._call_tier("rag", "search", self.semantic.search(query, rag_limit))
            if include_rag else _nothing(),
        )
        return ContextBundle(short_term=short_term, long_term=long_term, rag=rag)

    # Administration

    async def clear_user_memory(self, user_id: str, scope: str = "all") -> Dict[str, Any]:
        """
        Clear one user's memory. The shared Semantic Index is never touched.

        Raises:
            ValueError: If scope is not one of "all", "short", "long"
        """
        scope = MemoryScope(scope)
        result: Dict[str, Any] = {"scope": scope.value, "short_term_cleared": False, "long_term_removed": 0}

        if scope in (MemoryScope.ALL, MemoryScope.SHORT):
            try:
                await self.recent.clear(user_id)
                result["short_term_cleared"] = True
            except Exception as e:
                logger.error("Failed to clear recent buffer", user_id=user_id, error=str(e))

        if scope in (MemoryScope.ALL, MemoryScope.LONG):
            try:
                result["long_term_removed"] = await self.durable.clear(user_id)
            except Exception as e:
                logger.error("Failed to clear durable store", user_id=user_id, error=str(e))

        logger.info("Cleared user memory", user_id=user_id, **result)
        return result

    async def status(self) -> Dict[str, Any]:
        short_term, long_term, rag = await asyncio.gather(
            self.recent.status(),
            self.durable.status(),
            self.semantic.status(),
            return_exceptions=True,
        )
        return {
            "short_term": _status_or_error(short_term),
            "long_term": _status_or_error(long_term),
            "rag": _status_or_error(rag),
        }

    async def run_cleanup(
        self,
        max_age_days: Optional[int] = None,
        min_importance: Optional[float] = None,
        max_records: Optional[int] = None
    ) -> Dict[str, int]:
        """Age/importance sweep of the Durable Store plus age sweep of the Semantic Index."""
        max_age_days = self.config.cleanup_max_age_days if max_age_days is None else max_age_days
        min_importance = self.config.cleanup_min_importance if min_importance is None else min_importance
        max_records = self.config.cleanup_max_records if max_records is None else max_records

        removed = {"long_term": 0, "rag": 0}
        try:
            removed["long_term"] = await self.durable.cleanup(max_age_days, min_importance, max_records)
        except Exception as e:
            logger.error("Durable store cleanup failed", error=str(e))
        try:
            removed["rag"] = await self.semantic.cleanup(max_age_days)
        except Exception as e:
            logger.error("Semantic index cleanup failed", error=str(e))
        return removed

    # Private methods

    async def _call_tier(self, tier: str, operation: str, call: Awaitable[List[Any]]) -> List[Any]:
        """Await one tier call; failures degrade to an empty list."""
        started = time.perf_counter()
        try:
            results = await call
        except Exception as e:
            logger.tier_call(tier, operation, (time.perf_counter() - started) * 1000, False, error=str(e))
            return []

        logger.tier_call(tier, operation, (time.perf_counter() - started) * 1000, True, results=len(results))
        return results


async def _nothing() -> List[Any]:
    return []


def _status_or_error(value: Any) -> Dict[str, Any]:
    if isinstance(value, Exception):
        logger.error("Failed to get tier status", error=str(value))
        return {"error": str(value)}
    return value
