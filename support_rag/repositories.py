"""
Knowledge Repositories

Tenant-scoped, thread-safe in-process stores for FAQ entries and documents.
Vectors live in the vector store; these hold the authoritative records.
"""

import logging
import threading
from itertools import count
from typing import Dict, List, Optional, Tuple

from support_rag.exceptions import NotFoundError
from support_rag.models import Document, DocumentStatus, FaqEntry, utcnow

logger = logging.getLogger(__name__)


class FaqRepository:
    """FAQ entries keyed by (tenant_id, id)."""

    def __init__(self):
        self._entries: Dict[Tuple[str, int], FaqEntry] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    def save(self, entry: FaqEntry) -> FaqEntry:
        with self._lock:
            if entry.id is None:
                entry.id = next(self._ids)
            entry.updated_at = utcnow()
            self._entries[(entry.tenant_id, entry.id)] = entry
        return entry

    def find(self, tenant_id: str, faq_id: int) -> Optional[FaqEntry]:
        with self._lock:
            return self._entries.get((tenant_id, faq_id))

    def get(self, tenant_id: str, faq_id: int) -> FaqEntry:
        entry = self.find(tenant_id, faq_id)
        if entry is None:
            raise NotFoundError("FAQ", faq_id)
        return entry

    def list(self, tenant_id: str, active_only: bool = False) -> List[FaqEntry]:
        """Tenant's FAQs ordered by display order (unset last), then id."""
        with self._lock:
            entries = [
                e for (t, _), e in self._entries.items()
                if t == tenant_id and (e.is_active or not active_only)
            ]
        return sorted(
            entries,
            key=lambda e: (e.display_order is None, e.display_order or 0, e.id),
        )

    def delete(self, tenant_id: str, faq_id: int) -> bool:
        with self._lock:
            return self._entries.pop((tenant_id, faq_id), None) is not None

    def increment_usage(self, tenant_id: str, faq_id: int) -> int:
        """Atomically add one to the usage counter and return the new value."""
        with self._lock:
            entry = self._entries.get((tenant_id, faq_id))
            if entry is None:
                raise NotFoundError("FAQ", faq_id)
            entry.usage_count += 1
            return entry.usage_count


class DocumentRepository:
    """Documents keyed by (tenant_id, id)."""

    def __init__(self):
        self._documents: Dict[Tuple[str, int], Document] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    def save(self, document: Document) -> Document:
        with self._lock:
            if document.id is None:
                document.id = next(self._ids)
            document.updated_at = utcnow()
            self._documents[(document.tenant_id, document.id)] = document
        return document

    def find(self, tenant_id: str, document_id: int) -> Optional[Document]:
        with self._lock:
            return self._documents.get((tenant_id, document_id))

    def get(self, tenant_id: str, document_id: int) -> Document:
        document = self.find(tenant_id, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    def list(self, tenant_id: str) -> List[Document]:
        """Tenant's documents, newest first."""
        with self._lock:
            documents = [d for (t, _), d in self._documents.items() if t == tenant_id]
        return sorted(documents, key=lambda d: d.id, reverse=True)

    def delete(self, tenant_id: str, document_id: int) -> bool:
        with self._lock:
            return self._documents.pop((tenant_id, document_id), None) is not None

    def update_status(
        self,
        document: Document,
        status: DocumentStatus,
        chunk_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> Document:
        """
        Move a document to a new ingestion status.

        Raises:
            ValueError: If the document is already in a terminal state
        """
        with self._lock:
            if document.status.is_terminal:
                raise ValueError(
                    f"Document {document.id} is {document.status.value}; "
                    f"cannot move to {status.value}"
                )
            document.status = status
            if chunk_count is not None:
                document.chunk_count = chunk_count
            if error_message is not None:
                document.error_message = error_message
            document.updated_at = utcnow()

        logger.debug(f"Document {document.id} -> {status.value}")
        return document
