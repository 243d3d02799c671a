"""
Retrieval Engine Module

Finds the knowledge relevant to a question vector within one tenant:
- Up to max_faq_matches active FAQ entries
- Up to max_chunk_matches chunks of COMPLETED documents

Only matches whose cosine distance is strictly below max_distance are kept.
Results are cached per (tenant, vector content hash); the tenant's entries
are invalidated whenever its FAQ or document embeddings change.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from config.settings import get_settings, RetrievalConfig
from support_rag.cache import create_cache
from support_rag.embeddings import vector_hash
from support_rag.models import DocumentChunk, DocumentStatus, FaqEntry, SimilarityMatch
from support_rag.repositories import FaqRepository
from support_rag.vector_store import (
    BaseVectorStore,
    CHUNK_COLLECTION,
    FAQ_COLLECTION,
    SearchResult,
)

logger = logging.getLogger(__name__)

ACTIVE_FAQ_FILTER = {"is_active": True}
COMPLETED_CHUNK_FILTER = {"document_status": DocumentStatus.COMPLETED.value}


class RetrievalResult(NamedTuple):
    """Ranked FAQ and chunk matches, each ordered by ascending distance."""

    faqs: List[SimilarityMatch]
    chunks: List[SimilarityMatch]

    @property
    def is_empty(self) -> bool:
        return not self.faqs and not self.chunks

    @property
    def best_faq(self) -> Optional[FaqEntry]:
        return self.faqs[0].item if self.faqs else None

    @property
    def best_distance(self) -> Optional[float]:
        distances = [m.distance for m in self.faqs + self.chunks]
        return min(distances) if distances else None

    @property
    def matches(self) -> List[SimilarityMatch]:
        """FAQ matches followed by chunk matches."""
        return self.faqs + self.chunks


def faq_payload(entry: FaqEntry) -> Dict[str, Any]:
    return {
        "faq_id": entry.id,
        "is_active": entry.is_active,
        "question": entry.question,
        "answer": entry.answer,
        "tags": sorted(entry.tags),
    }


def chunk_payload(chunk: DocumentChunk, status: DocumentStatus) -> Dict[str, Any]:
    return {
        "document_id": chunk.document_id,
        "chunk_index": chunk.chunk_index,
        "content": chunk.content,
        "document_title": chunk.document_title,
        "source_url": chunk.source_url,
        "token_count": chunk.token_count,
        "document_status": status.value,
    }


class RetrievalEngine:
    """
    Queries both knowledge collections for a tenant.

    Example:
        engine = RetrievalEngine(vector_store, faq_repository)
        faqs, chunks = engine.retrieve("acme", question_vector)
    """

    def __init__(
        self,
        vector_store: BaseVectorStore,
        faq_repository: Optional[FaqRepository] = None,
        config: Optional[RetrievalConfig] = None,
        cache=None,
    ):
        """
        Initialize the retrieval engine.

        Args:
            vector_store: Store holding FAQ and chunk vectors
            faq_repository: Source of live FAQ records (usage counters)
            config: Optional RetrievalConfig
            cache: Result cache (default built from CacheConfig)
        """
        settings = get_settings()
        self.vector_store = vector_store
        self.faq_repository = faq_repository
        self.config = config or settings.retrieval
        self._cache = cache if cache is not None else create_cache(settings.cache)

        logger.info(
            f"RetrievalEngine initialized: faqs={self.config.max_faq_matches}, "
            f"chunks={self.config.max_chunk_matches}, "
            f"max_distance={self.config.max_distance}"
        )

    def retrieve(self, tenant_id: str, question_vector: Sequence[float]) -> RetrievalResult:
        """
        Find the tenant's FAQs and document chunks closest to the vector.

        Args:
            tenant_id: Tenant whose knowledge is searched
            question_vector: Embedding of the question

        Returns:
            RetrievalResult(faqs, chunks)
        """
        if not question_vector:
            return RetrievalResult([], [])

        key = (tenant_id, vector_hash(question_vector))
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Retrieval cache hit for tenant {tenant_id}")
            return cached

        faq_hits = self.vector_store.query(
            tenant_id,
            FAQ_COLLECTION,
            question_vector,
            k=self.config.max_faq_matches,
            max_distance=self.config.max_distance,
            filter_dict=ACTIVE_FAQ_FILTER,
        )
        chunk_hits = self.vector_store.query(
            tenant_id,
            CHUNK_COLLECTION,
            question_vector,
            k=self.config.max_chunk_matches,
            max_distance=self.config.max_distance,
            filter_dict=COMPLETED_CHUNK_FILTER,
        )

        faqs = [
            SimilarityMatch(entry, hit.distance)
            for hit in faq_hits
            if (entry := self._resolve_faq(tenant_id, hit)) is not None
        ]
        chunks = [
            SimilarityMatch(self._resolve_chunk(tenant_id, hit), hit.distance)
            for hit in chunk_hits
        ]

        result = RetrievalResult(faqs, chunks)
        self._cache.set(key, result)

        logger.info(
            f"Retrieved {len(faqs)} FAQs and {len(chunks)} chunks for tenant {tenant_id}"
        )
        return result

    def invalidate(self, tenant_id: str) -> int:
        """Drop cached results for a tenant after its knowledge changed."""
        return self._cache.invalidate_partition(tenant_id)

    def _resolve_faq(self, tenant_id: str, hit: SearchResult) -> Optional[FaqEntry]:
        faq_id = hit.payload.get("faq_id", hit.item_id)

        if self.faq_repository is not None:
            entry = self.faq_repository.find(tenant_id, int(faq_id))
            if entry is not None:
                return entry if entry.is_active else None

        # Vector without a live record (e.g. persisted index after a restart)
        if "question" not in hit.payload:
            logger.warning(f"FAQ {faq_id} has a vector but no record; skipping")
            return None
        return FaqEntry(
            tenant_id=tenant_id,
            id=int(faq_id),
            question=hit.payload["question"],
            answer=hit.payload.get("answer", ""),
            tags=set(hit.payload.get("tags", [])),
        )

    @staticmethod
    def _resolve_chunk(tenant_id: str, hit: SearchResult) -> DocumentChunk:
        payload = hit.payload
        return DocumentChunk(
            tenant_id=tenant_id,
            document_id=payload["document_id"],
            chunk_index=payload["chunk_index"],
            content=payload["content"],
            document_title=payload.get("document_title", ""),
            source_url=payload.get("source_url"),
            token_count=payload.get("token_count", 0),
        )
