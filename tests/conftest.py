# Pytest configuration and fixtures
import pytest
import pytest_asyncio

from tiered_memory.config.settings import MemorySettings
from tiered_memory.memory.manager import MemoryOrchestrator
from tiered_memory.memory.tier1_recent import RecentBuffer
from tiered_memory.memory.tier2_durable import DurableStore
from tiered_memory.memory.tier3_semantic import SemanticIndex


@pytest.fixture
def database_url(tmp_path):
    """File-backed SQLite database, one per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'memory.db'}"


@pytest.fixture
def memory_settings(database_url):
    """Settings with embeddings disabled so the semantic index runs offline."""
    return MemorySettings(
        database_url=database_url,
        enable_embeddings=False,
        short_term_max_items=150,
        consolidation_threshold=100,
        rag_storage_path=None,
    )


@pytest.fixture
def recent_buffer():
    return RecentBuffer(max_items=150)


@pytest_asyncio.fixture
async def durable_store(database_url):
    store = DurableStore(database_url)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def semantic_index():
    return SemanticIndex()


@pytest_asyncio.fixture
async def orchestrator(memory_settings):
    memory = MemoryOrchestrator.from_settings(memory_settings)
    await memory.initialize()
    yield memory
    await memory.close()
