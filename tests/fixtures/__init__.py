"""
Test Fixtures Package.
Provides deterministic test doubles for external services.
"""

from tests.fixtures.mocks import FakeEmbeddingProvider

__all__ = [
    "FakeEmbeddingProvider",
]
