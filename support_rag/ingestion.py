"""
Document Ingestion Module

Turns uploaded files and web pages into searchable document chunks.

Pipeline (per document, on a worker thread):
1. PENDING -> PROCESSING
2. Extract text (stored file or URL fetch)
3. Split into overlapping chunks
4. Embed each chunk (one provider call per chunk) and write it to the
   vector store with document_status=PROCESSING
5. Flip the chunks' document_status to COMPLETED, then mark the document
   COMPLETED with its chunk count

Any failure deletes the chunks already written and marks the document
FAILED with the error message. Deleting a document mid-ingestion stops
the worker at its next chunk and discards what it wrote. Failures are never
raised to the caller; status is polled with get_document() or awaited with wait().
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import urlparse

from config.settings import get_settings, IngestionConfig
from support_rag.chunker import DocumentChunker
from support_rag.embeddings import EmbeddingService
from support_rag.exceptions import IngestionError, ValidationError
from support_rag.models import Document, DocumentStatus, DocumentType
from support_rag.repositories import DocumentRepository
from support_rag.retrieval import RetrievalEngine, chunk_payload
from support_rag.vector_store import BaseVectorStore, CHUNK_COLLECTION

# Configure logging
logger = logging.getLogger(__name__)

FILE_TYPES = (DocumentType.PDF, DocumentType.DOCX, DocumentType.TXT)


def _coerce_document_type(value: Union[str, DocumentType]) -> DocumentType:
    try:
        return DocumentType(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"Unsupported document type: {value}")


class DocumentIngestionService:
    """
    Asynchronous document ingestion.

    Example:
        service = DocumentIngestionService(embedding_service, vector_store)
        document = service.upload_document("acme", data, "guide.pdf", "User Guide", "PDF")
        document = service.wait("acme", document.id, timeout=60)
        print(document.status, document.chunk_count)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: BaseVectorStore,
        repository: Optional[DocumentRepository] = None,
        chunker: Optional[DocumentChunker] = None,
        retrieval_engine: Optional[RetrievalEngine] = None,
        config: Optional[IngestionConfig] = None,
    ):
        """
        Initialize the ingestion service.

        Args:
            embedding_service: Embeds each chunk
            vector_store: Destination of chunk vectors
            repository: Document records (default: new in-memory repository)
            chunker: Text extraction and splitting (default from config)
            retrieval_engine: Its cache is invalidated when a document completes
            config: Optional IngestionConfig
        """
        self.config = config or get_settings().ingestion
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.repository = repository or DocumentRepository()
        self.chunker = chunker or DocumentChunker()
        self.retrieval_engine = retrieval_engine

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="ingestion",
        )
        self._futures: Dict[int, Future] = {}

        logger.info(
            f"DocumentIngestionService initialized: workers={self.config.max_workers}, "
            f"storage={self.config.storage_path}"
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def upload_document(
        self,
        tenant_id: str,
        file_bytes: bytes,
        filename: str,
        title: str,
        document_type: Union[str, DocumentType],
        mime_type: Optional[str] = None,
    ) -> Document:
        """
        Store an uploaded file and schedule its ingestion.

        Returns:
            The new Document (PENDING, or FAILED if the file could not be stored)

        Raises:
            ValidationError: Empty file, blank title or unsupported type
        """
        if not file_bytes:
            raise ValidationError("File is empty")
        if not title or not title.strip():
            raise ValidationError("title is required")
        document_type = _coerce_document_type(document_type)
        if document_type not in FILE_TYPES:
            raise ValidationError(f"Unsupported document type for upload: {document_type.value}")

        logger.info(
            f"Uploading document: {title} (type: {document_type.value}, "
            f"size: {len(file_bytes)} bytes) for tenant: {tenant_id}"
        )

        document = self.repository.save(Document(
            tenant_id=tenant_id,
            title=title.strip(),
            document_type=document_type,
            file_size=len(file_bytes),
            mime_type=mime_type,
        ))

        try:
            document.file_path = self._store_file(tenant_id, document.id, filename, file_bytes)
        except OSError as e:
            logger.error(f"Failed to store document {document.id}: {e}")
            self.repository.update_status(
                document, DocumentStatus.FAILED, error_message=f"Upload failed: {e}"
            )
            return document

        self.repository.save(document)
        self._submit(document)
        return document

    def ingest_url(self, tenant_id: str, source_url: str, title: str) -> Document:
        """
        Schedule ingestion of a web page.

        Raises:
            ValidationError: Non-http(s) URL or blank title
        """
        parsed = urlparse(source_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Invalid URL: {source_url}")
        if not title or not title.strip():
            raise ValidationError("title is required")

        logger.info(f"Ingesting document from URL: {source_url} for tenant: {tenant_id}")

        document = self.repository.save(Document(
            tenant_id=tenant_id,
            title=title.strip(),
            document_type=DocumentType.URL,
            source_url=source_url,
        ))
        self._submit(document)
        return document

    # ------------------------------------------------------------------
    # Status and lifecycle
    # ------------------------------------------------------------------

    def get_document(self, tenant_id: str, document_id: int) -> Document:
        return self.repository.get(tenant_id, document_id)

    def list_documents(self, tenant_id: str) -> List[Document]:
        return self.repository.list(tenant_id)

    def wait(self, tenant_id: str, document_id: int, timeout: Optional[float] = None) -> Document:
        """
        Block until the document's ingestion finishes.

        Returns immediately for a document already in a terminal state.

        Raises:
            NotFoundError: If the tenant has no such document
            IngestionError: If the document is not terminal and nothing is scheduled
            concurrent.futures.TimeoutError: If it does not finish in time
        """
        document = self.repository.get(tenant_id, document_id)

        future = self._futures.get(document_id)
        if future is not None:
            future.result(timeout=timeout)
        elif not document.status.is_terminal:
            raise IngestionError(f"No ingestion scheduled for document {document_id}")
        return document

    def delete_document(self, tenant_id: str, document_id: int) -> None:
        """
        Delete a document, its stored file and all of its chunks.

        An ingestion still running for the document stops at its next chunk
        and removes whatever it wrote.

        Raises:
            NotFoundError: If the tenant has no such document
        """
        document = self.repository.get(tenant_id, document_id)

        # Record goes first; a running ingestion checks it after every write
        self.repository.delete(tenant_id, document_id)
        future = self._futures.pop(document_id, None)
        if future is not None:
            future.cancel()

        if document.file_path:
            try:
                Path(document.file_path).unlink(missing_ok=True)
                logger.info(f"Deleted file: {document.file_path}")
            except OSError as e:
                logger.warning(f"Failed to delete file {document.file_path}: {e}")

        removed = self.vector_store.delete_where(
            tenant_id, CHUNK_COLLECTION, {"document_id": document_id}
        )
        self._invalidate(tenant_id)

        logger.info(f"Deleted document {document_id} ({removed} chunks)")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for running ingestions."""
        self._executor.shutdown(wait=wait)
        logger.info("DocumentIngestionService shut down")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store_file(self, tenant_id: str, document_id: int, filename: str, data: bytes) -> str:
        """Write to <storage>/<tenant>/<document_id>/<uuid><ext>."""
        directory = Path(self.config.storage_path) / tenant_id / str(document_id)
        directory.mkdir(parents=True, exist_ok=True)

        extension = Path(filename or "").suffix
        path = directory / f"{uuid.uuid4()}{extension}"
        path.write_bytes(data)

        logger.info(f"Stored file: {path}")
        return str(path)

    def _submit(self, document: Document) -> None:
        document_id = document.id
        future = self._executor.submit(self._process, document)
        self._futures[document_id] = future
        future.add_done_callback(lambda f: self._forget(document_id, f))

    def _forget(self, document_id: int, future: Future) -> None:
        if self._futures.get(document_id) is future:
            self._futures.pop(document_id, None)

    def _ensure_not_deleted(self, document: Document) -> None:
        if self.repository.find(document.tenant_id, document.id) is None:
            raise _DocumentDeleted(document.id)

    def _invalidate(self, tenant_id: str) -> None:
        if self.retrieval_engine is not None:
            self.retrieval_engine.invalidate(tenant_id)

    def _extract(self, document: Document) -> str:
        if document.document_type == DocumentType.URL:
            return self.chunker.fetch_url_text(
                document.source_url,
                timeout=self.config.url_timeout,
                user_agent=self.config.user_agent,
            )
        if not document.file_path:
            raise IngestionError("Document file path is missing")
        return self.chunker.extract_text(document.file_path, document.document_type)

    def _process(self, document: Document) -> Document:
        """Run the full pipeline for one document; never raises."""
        tenant_id = document.tenant_id

        try:
            self._ensure_not_deleted(document)
            logger.info(
                f"Processing document: {document.title} "
                f"(type: {document.document_type.value})"
            )
            self.repository.update_status(document, DocumentStatus.PROCESSING)

            text = self._extract(document)
            chunks = self.chunker.build_chunks(document, text)
            logger.info(f"Split document into {len(chunks)} chunks")

            for chunk in chunks:
                vector = self.embedding_service.embed(chunk.content)
                if not vector:
                    raise IngestionError(f"Empty embedding for chunk {chunk.chunk_index}")
                chunk.embedding = vector
                self.vector_store.upsert(
                    tenant_id,
                    CHUNK_COLLECTION,
                    chunk.item_id,
                    vector,
                    chunk_payload(chunk, DocumentStatus.PROCESSING),
                )
                self._ensure_not_deleted(document)

            self.vector_store.update_payload(
                tenant_id,
                CHUNK_COLLECTION,
                {"document_id": document.id},
                {"document_status": DocumentStatus.COMPLETED.value},
            )
            self._ensure_not_deleted(document)
            self.repository.update_status(
                document, DocumentStatus.COMPLETED, chunk_count=len(chunks)
            )
            self._invalidate(tenant_id)

            logger.info(
                f"Successfully processed document: {document.title} ({len(chunks)} chunks)"
            )

        except _DocumentDeleted:
            logger.info(f"Document {document.id} was deleted during processing; discarding its chunks")
            self._fail(document, "Document was deleted during processing")

        except Exception as e:
            logger.error(f"Failed to process document {document.id} ({document.title}): {e}")
            self._fail(document, f"Processing failed: {e}")

        return document

    def _fail(self, document: Document, message: str) -> None:
        try:
            self.vector_store.delete_where(
                document.tenant_id, CHUNK_COLLECTION, {"document_id": document.id}
            )
        except Exception as e:
            logger.error(f"Failed to roll back chunks of document {document.id}: {e}")

        if not document.status.is_terminal:
            self.repository.update_status(
                document, DocumentStatus.FAILED, chunk_count=0, error_message=message
            )


class _DocumentDeleted(Exception):
    """Raised inside a worker when its document was deleted mid-ingestion."""
