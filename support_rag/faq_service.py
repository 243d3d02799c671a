"""
FAQ Service Module

Authoring operations for FAQ entries. Every change to question, answer or
tags regenerates the entry's embedding and rewrites its vector; every change
invalidates the tenant's retrieval cache.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from support_rag.embeddings import EmbeddingService
from support_rag.exceptions import ValidationError
from support_rag.models import FaqEntry
from support_rag.repositories import FaqRepository
from support_rag.retrieval import RetrievalEngine, faq_payload
from support_rag.vector_store import BaseVectorStore, FAQ_COLLECTION

logger = logging.getLogger(__name__)


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


class FaqService:
    """
    Create, update and delete FAQ entries together with their vectors.

    Example:
        service = FaqService(embedding_service, vector_store, repository)
        faq = service.create_faq("acme", "What are your opening hours?", "9-17 Mon-Fri")
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: BaseVectorStore,
        repository: Optional[FaqRepository] = None,
        retrieval_engine: Optional[RetrievalEngine] = None,
    ):
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.repository = repository or FaqRepository()
        self.retrieval_engine = retrieval_engine

    def _index(self, entry: FaqEntry) -> None:
        self.vector_store.upsert(
            entry.tenant_id,
            FAQ_COLLECTION,
            str(entry.id),
            entry.embedding,
            faq_payload(entry),
        )

    def _invalidate(self, tenant_id: str) -> None:
        if self.retrieval_engine is not None:
            self.retrieval_engine.invalidate(tenant_id)

    def _build_entry(
        self,
        tenant_id: str,
        question: str,
        answer: str,
        tags: Optional[Iterable[str]] = None,
        is_active: bool = True,
        display_order: Optional[int] = None,
    ) -> FaqEntry:
        return FaqEntry(
            tenant_id=tenant_id,
            question=_require_text(question, "question"),
            answer=_require_text(answer, "answer"),
            tags=set(tags or []),
            is_active=is_active,
            display_order=display_order,
        )

    def create_faq(
        self,
        tenant_id: str,
        question: str,
        answer: str,
        tags: Optional[Iterable[str]] = None,
        is_active: bool = True,
        display_order: Optional[int] = None,
    ) -> FaqEntry:
        """
        Create an FAQ entry and index its embedding.

        Raises:
            ValidationError: If question or answer is blank
            ProviderError: If the embedding cannot be generated
        """
        entry = self._build_entry(tenant_id, question, answer, tags, is_active, display_order)
        entry.embedding = self.embedding_service.embed_faq(entry.question, entry.answer, entry.tags)

        self.repository.save(entry)
        self._index(entry)
        self._invalidate(tenant_id)

        logger.info(f"Created FAQ {entry.id} for tenant {tenant_id}")
        return entry

    def create_faqs_batch(self, tenant_id: str, items: List[Dict[str, Any]]) -> List[FaqEntry]:
        """
        Create several FAQ entries.

        All items are validated and embedded before anything is stored, so a
        bad item or a provider failure leaves the tenant unchanged.
        """
        logger.info(f"Batch creating {len(items)} FAQs for tenant: {tenant_id}")

        entries = [
            self._build_entry(
                tenant_id,
                item.get("question"),
                item.get("answer"),
                item.get("tags"),
                item.get("is_active", True),
                item.get("display_order"),
            )
            for item in items
        ]
        for entry in entries:
            entry.embedding = self.embedding_service.embed_faq(
                entry.question, entry.answer, entry.tags
            )

        for entry in entries:
            self.repository.save(entry)
            self._index(entry)
        self._invalidate(tenant_id)

        logger.info(f"Successfully created {len(entries)} FAQs in batch")
        return entries

    def update_faq(
        self,
        tenant_id: str,
        faq_id: int,
        question: Optional[str] = None,
        answer: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        is_active: Optional[bool] = None,
        display_order: Optional[int] = None,
    ) -> FaqEntry:
        """
        Update fields of an FAQ entry; omitted fields are left unchanged.

        Raises:
            NotFoundError: If the tenant has no such FAQ
            ValidationError: If question or answer is set to blank
        """
        entry = self.repository.get(tenant_id, faq_id)

        new_question = _require_text(question, "question") if question is not None else entry.question
        new_answer = _require_text(answer, "answer") if answer is not None else entry.answer
        new_tags = set(tags) if tags is not None else entry.tags

        text_changed = (
            new_question != entry.question
            or new_answer != entry.answer
            or new_tags != entry.tags
        )
        if text_changed or entry.embedding is None:
            entry.embedding = self.embedding_service.embed_faq(new_question, new_answer, new_tags)

        entry.question = new_question
        entry.answer = new_answer
        entry.tags = new_tags
        if is_active is not None:
            entry.is_active = is_active
        if display_order is not None:
            entry.display_order = display_order

        self.repository.save(entry)
        self._index(entry)
        self._invalidate(tenant_id)

        logger.info(f"Updated FAQ {faq_id} for tenant {tenant_id}")
        return entry

    def delete_faq(self, tenant_id: str, faq_id: int) -> None:
        """
        Delete an FAQ entry and its vector.

        Raises:
            NotFoundError: If the tenant has no such FAQ
        """
        self.repository.get(tenant_id, faq_id)
        self.repository.delete(tenant_id, faq_id)
        self.vector_store.delete(tenant_id, FAQ_COLLECTION, [str(faq_id)])
        self._invalidate(tenant_id)

        logger.info(f"Deleted FAQ {faq_id} for tenant {tenant_id}")

    def get_faq(self, tenant_id: str, faq_id: int) -> FaqEntry:
        return self.repository.get(tenant_id, faq_id)

    def list_faqs(self, tenant_id: str, active_only: bool = False) -> List[FaqEntry]:
        return self.repository.list(tenant_id, active_only=active_only)

    def record_usage(self, tenant_id: str, faq_id: int) -> int:
        """Count one more answer grounded on this FAQ."""
        return self.repository.increment_usage(tenant_id, faq_id)
