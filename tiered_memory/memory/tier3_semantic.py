"""
Tier 3 Memory - Semantic Index.

Content-addressed store of free-text documents shared by all users.
Retrieval goes through a backend chosen once at construction:

- EmbeddingBackend: vectors computed at insertion, cosine-similarity ranking
- SubstringBackend: case-insensitive containment with a nominal score,
  used whenever no embedding provider is available
"""

import asyncio
import hashlib
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from tiered_memory.config.settings import MemorySettings
from tiered_memory.database.models import utcnow
from tiered_memory.utils.embedding_client import EmbeddingProvider, cosine_similarity
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("tier3_memory")

# Score given to every substring hit
NOMINAL_SIMILARITY = 0.8


def document_id(content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
    """Stable id derived from content and caller metadata."""
    digest = hashlib.sha256()
    digest.update(content.encode("utf-8"))
    digest.update(json.dumps(metadata or {}, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()[:16]


@dataclass
class SemanticDocument:
    """A stored document with optional embedding."""

    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata,
            "embedding": self.embedding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticDocument":
        return cls(
            id=data["id"],
            content=data["content"],
            metadata=data.get("metadata") or {},
            embedding=data.get("embedding"),
        )


@dataclass(frozen=True)
class ScoredDocument:
    """A search hit."""

    id: str
    content: str
    similarity: float
    distance: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "similarity": self.similarity,
            "distance": self.distance,
            "metadata": self.metadata,
        }


class SemanticBackend(ABC):
    """Retrieval strategy used by the SemanticIndex."""

    @abstractmethod
    async def prepare(self, contents: List[str]) -> List[Optional[List[float]]]:
        """Compute whatever per-document data ranking needs, at insertion time."""

    @abstractmethod
    async def rank(
        self,
        query: str,
        documents: Iterable[SemanticDocument],
        limit: int,
        min_similarity: float
    ) -> List[ScoredDocument]:
        """Return up to ``limit`` hits for ``query``."""

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Status fields identifying the backend."""

    async def close(self) -> None:
        return None


class EmbeddingBackend(SemanticBackend):
    """Ranks documents by cosine similarity of provider embeddings."""

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider

    async def prepare(self, contents: List[str]) -> List[Optional[List[float]]]:
        if len(contents) == 1:
            return [await self.provider.embed(contents[0])]
        return await self.provider.embed_batch(contents)

    async def rank(
        self,
        query: str,
        documents: Iterable[SemanticDocument],
        limit: int,
        min_similarity: float
    ) -> List[ScoredDocument]:
        query_embedding = await self.provider.embed(query)

        hits = []
        for doc in documents:
            # Documents written while running without a provider have no vector
            if doc.embedding is None:
                continue
            similarity = cosine_similarity(query_embedding, doc.embedding)
            if similarity >= min_similarity:
                hits.append(ScoredDocument(
                    id=doc.id,
                    content=doc.content,
                    similarity=similarity,
                    distance=1.0 - similarity,
                    metadata=doc.metadata,
                ))

        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    def describe(self) -> Dict[str, Any]:
        return {"embedding_model": self.provider.model}

    async def close(self) -> None:
        await self.provider.close()


class SubstringBackend(SemanticBackend):
    """Literal containment search; needs no external service."""

    async def prepare(self, contents: List[str]) -> List[Optional[List[float]]]:
        return [None] * len(contents)

    async def rank(
        self,
        query: str,
        documents: Iterable[SemanticDocument],
        limit: int,
        min_similarity: float
    ) -> List[ScoredDocument]:
        needle = query.lower()
        hits = []
        for doc in documents:
            if len(hits) >= limit:
                break
            if needle in doc.content.lower():
                hits.append(ScoredDocument(
                    id=doc.id,
                    content=doc.content,
                    similarity=NOMINAL_SIMILARITY,
                    distance=1.0 - NOMINAL_SIMILARITY,
                    metadata=doc.metadata,
                ))
        return hits

    def describe(self) -> Dict[str, Any]:
        return {"storage_mode": "substring"}


class SemanticIndex:
    """
    Tier 3 Memory - shared semantic document store.

    Features:
    - Content-addressed ids (re-adding identical input is a no-op)
    - Embedding or substring retrieval, fixed for the instance lifetime
    - Metadata filtering and age-based cleanup
    - Optional JSON persistence of the document set
    """

    def __init__(
        self,
        backend: Optional[SemanticBackend] = None,
        min_similarity: float = 0.7,
        storage_path: Optional[Path] = None,
        collection_name: str = "memory_rag"
    ):
        """
        Initialize Tier 3 memory.

        Args:
            backend: Retrieval strategy (substring matching when omitted)
            min_similarity: Default similarity floor for embedding search
            storage_path: JSON file to persist documents to (optional)
            collection_name: Label reported by status()
        """
        self.backend = backend or SubstringBackend()
        self.min_similarity = min_similarity
        self.storage_path = Path(storage_path) if storage_path else None
        self.collection_name = collection_name

        self._documents: Dict[str, SemanticDocument] = {}
        if self.storage_path:
            self._load()

        logger.info(
            "Semantic index initialized",
            mode=self.mode,
            documents=len(self._documents),
        )

    @classmethod
    def from_settings(
        cls,
        config: MemorySettings,
        provider: Optional[EmbeddingProvider] = None
    ) -> "SemanticIndex":
        """Embedding mode when a provider is given, substring mode otherwise."""
        backend = EmbeddingBackend(provider) if provider else SubstringBackend()
        return cls(
            backend=backend,
            min_similarity=config.rag_min_similarity,
            storage_path=config.rag_storage_path,
        )

    @property
    def mode(self) -> str:
        return "embedding" if isinstance(self.backend, EmbeddingBackend) else "substring"

    # Writes

    async def add_document(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Add one document and return its id.

        Raises:
            ValueError: If content is empty
            Any embedding-provider error, unchanged
        """
        if not content or not content.strip():
            raise ValueError("Document content cannot be empty")

        doc_id = document_id(content, metadata)
        if doc_id in self._documents:
            return doc_id

        [embedding] = await self.backend.prepare([content])
        self._documents[doc_id] = SemanticDocument(
            id=doc_id,
            content=content,
            metadata=self._stamp(content, metadata),
            embedding=embedding,
        )
        await self._save()

        logger.debug("Added document to semantic index", document_id=doc_id)
        return doc_id

    async def add_bulk_documents(self, documents: List[Dict[str, Any]]) -> List[str]:
        """Add many documents; entries with empty content are skipped."""
        ids: List[str] = []
        pending: Dict[str, Dict[str, Any]] = {}

        for doc in documents:
            content = doc.get("content") or ""
            if not content.strip():
                continue
            metadata = doc.get("metadata") or {}
            doc_id = document_id(content, metadata)
            ids.append(doc_id)
            if doc_id not in self._documents:
                pending[doc_id] = {"content": content, "metadata": metadata}

        if pending:
            embeddings = await self.backend.prepare([p["content"] for p in pending.values()])
            for (doc_id, item), embedding in zip(pending.items(), embeddings):
                self._documents[doc_id] = SemanticDocument(
                    id=doc_id,
                    content=item["content"],
                    metadata=self._stamp(item["content"], item["metadata"]),
                    embedding=embedding,
                )
            await self._save()
            logger.info("Added documents to semantic index", count=len(pending))

        return ids

    async def update_document(
        self,
        doc_id: str,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Replace content and/or merge metadata. The id is kept as is.
        """
        doc = self._documents.get(doc_id)
        if doc is None:
            return False

        try:
            if content:
                [doc.embedding] = await self.backend.prepare([content])
                doc.content = content
                doc.metadata["content_length"] = len(content)
            if metadata:
                doc.metadata.update(metadata)
            doc.metadata["updated_at"] = utcnow().isoformat()
        except Exception as e:
            logger.error("Failed to update document", document_id=doc_id, error=str(e))
            return False

        await self._save()
        logger.debug("Updated document in semantic index", document_id=doc_id)
        return True

    async def delete_document(self, doc_id: str) -> bool:
        if self._documents.pop(doc_id, None) is None:
            return False
        await self._save()
        logger.debug("Deleted document from semantic index", document_id=doc_id)
        return True

    async def cleanup(self, max_age_days: int = 365) -> int:
        """Remove documents added more than ``max_age_days`` ago."""
        cutoff = utcnow() - timedelta(days=max_age_days)

        expired = []
        for doc_id, doc in self._documents.items():
            added_at = self._added_at(doc)
            if added_at is not None and added_at < cutoff:
                expired.append(doc_id)

        for doc_id in expired:
            del self._documents[doc_id]

        if expired:
            await self._save()
        logger.info("Cleaned up semantic index", removed=len(expired))
        return len(expired)

    # Reads

    async def search(
        self,
        query: str,
        limit: int = 5,
        min_similarity: Optional[float] = None,
        filter_metadata: Optional[Dict[str, Any]] = None
    ) -> List[ScoredDocument]:
        """
        Find documents for a query, best match first.

        Provider failures are logged and yield no results.
        """
        if not query or not query.strip() or limit <= 0:
            return []

        candidates = [
            doc for doc in self._documents.values()
            if self._metadata_matches(doc, filter_metadata)
        ]
        threshold = self.min_similarity if min_similarity is None else min_similarity

        try:
            return await self.backend.rank(query, candidates, limit, threshold)
        except Exception as e:
            logger.error("Semantic search failed", mode=self.mode, error=str(e))
            return []

    async def get_document(self, doc_id: str) -> Optional[SemanticDocument]:
        return self._documents.get(doc_id)

    async def search_similar(self, doc_id: str, limit: int = 5) -> List[ScoredDocument]:
        """Documents similar to a stored one, excluding the document itself."""
        doc = self._documents.get(doc_id)
        if doc is None:
            logger.warning("Document not found for similarity search", document_id=doc_id)
            return []

        hits = await self.search(doc.content, limit + 1)
        return [hit for hit in hits if hit.id != doc_id][:limit]

    async def count(self) -> int:
        return len(self._documents)

    async def status(self) -> Dict[str, Any]:
        return {
            "type": "rag",
            "total_documents": len(self._documents),
            "collection_name": self.collection_name,
            "storage": str(self.storage_path) if self.storage_path else "in-memory",
            **self.backend.describe(),
        }

    async def close(self) -> None:
        await self.backend.close()

    # Private methods

    @staticmethod
    def _stamp(content: str, metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            **(metadata or {}),
            "added_at": utcnow().isoformat(),
            "content_length": len(content),
        }

    @staticmethod
    def _added_at(doc: SemanticDocument) -> Optional[datetime]:
        value = doc.metadata.get("added_at")
        if not isinstance(value, str):
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None

    @staticmethod
    def _metadata_matches(doc: SemanticDocument, filter_metadata: Optional[Dict[str, Any]]) -> bool:
        if not filter_metadata:
            return True
        return all(doc.metadata.get(key) == value for key, value in filter_metadata.items())

    def _load(self) -> None:
        """Read the persisted document set, if any."""
        if not self.storage_path.exists():
            return
        try:
            with open(self.storage_path, encoding="utf-8") as f:
                data = json.load(f)
            for item in data:
                doc = SemanticDocument.from_dict(item)
                self._documents[doc.id] = doc
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load semantic index", path=str(self.storage_path), error=str(e))

    async def _save(self) -> None:
        """
        Rewrite the persisted document set off the event loop.

        Write failures are logged; the in-memory set stays authoritative.
        """
        if not self.storage_path:
            return
        # Serialized here so the worker thread never sees a dict mid-mutation
        payload = json.dumps([doc.to_dict() for doc in self._documents.values()], default=str)
        try:
            await asyncio.to_thread(_write_atomically, self.storage_path, payload)
        except OSError as e:
            logger.error("Failed to persist semantic index", path=str(self.storage_path), error=str(e))


def _write_atomically(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(payload)
    os.replace(tmp_path, path)
