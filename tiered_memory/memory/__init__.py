"""
3-Tier Memory System.

Implements a hierarchical memory system for conversational context:
- Tier 1: Recent Buffer (last N events per user, in process)
- Tier 2: Durable Store (important exchanges, SQL-backed)
- Tier 3: Semantic Index (similarity search over promoted exchanges)
"""

from tiered_memory.memory.tier1_recent import EventKind, MemoryEvent, RecentBuffer
from tiered_memory.memory.tier2_durable import DurableStore, LongTermRecord
from tiered_memory.memory.tier3_semantic import ScoredDocument, SemanticDocument, SemanticIndex
from tiered_memory.memory.scoring import KeywordTurnScorer, TurnScorer
from tiered_memory.memory.manager import ContextBundle, MemoryOrchestrator, MemoryScope

__all__ = [
    "EventKind",
    "MemoryEvent",
    "RecentBuffer",
    "DurableStore",
    "LongTermRecord",
    "SemanticDocument",
    "ScoredDocument",
    "SemanticIndex",
    "TurnScorer",
    "KeywordTurnScorer",
    "ContextBundle",
    "MemoryOrchestrator",
    "MemoryScope",
]
