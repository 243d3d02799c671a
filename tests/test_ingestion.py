"""
Tests for Document Ingestion Module

Ingestion runs on worker threads; tests block on wait() for the outcome.
"""

import threading
from pathlib import Path

import pytest
from unittest.mock import patch

from support_rag.exceptions import IngestionError, NotFoundError, ValidationError
from support_rag.chunker import DocumentChunker
from support_rag.models import Document, DocumentStatus, DocumentType
from support_rag.vector_store import CHUNK_COLLECTION

SHIPPING_TEXT = (
    "Standard shipping takes three to five business days. "
    "Express shipping arrives the next business day when ordered before noon. "
    "International parcels are shipped with tracking to every EU country. "
    "Customs fees for orders outside the EU are paid by the recipient. "
    "Returns are free within thirty days of delivery. "
    "Refunds are issued to the original payment method within a week."
)


def gate_embedding(backend, on_call):
    """
    Make the embedding backend block on its Nth call until released.

    Returns (reached, release, texts, original_embed).
    """
    original = backend.embed_text
    reached = threading.Event()
    release = threading.Event()
    texts = []

    def gated(text):
        texts.append(text)
        if len(texts) == on_call:
            reached.set()
            release.wait(10)
        return original(text)

    backend.embed_text = gated
    return reached, release, texts, original


class TestUploadDocument:
    """Tests for file uploads."""

    def test_upload_completes(self, ingestion_service, vector_store):
        """Test PENDING -> COMPLETED with chunks indexed."""
        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping Policy", "TXT",
            mime_type="text/plain",
        )

        assert document.id is not None
        assert document.file_size == len(SHIPPING_TEXT.encode("utf-8"))

        document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.COMPLETED
        assert document.chunk_count > 1
        assert document.error_message is None
        assert vector_store.count("acme", CHUNK_COLLECTION) == document.chunk_count

    def test_chunks_are_completed_and_searchable(self, ingestion_service, vector_store, embedding_service):
        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping Policy", DocumentType.TXT,
        )
        ingestion_service.wait("acme", document.id, timeout=10)

        query = embedding_service.embed("Returns are free within thirty days of delivery.")
        hits = vector_store.query(
            "acme", CHUNK_COLLECTION, query, k=5, max_distance=2.0,
            filter_dict={"document_status": "COMPLETED"},
        )

        assert hits
        assert all(h.payload["document_id"] == document.id for h in hits)
        assert all(h.payload["document_title"] == "Shipping Policy" for h in hits)

    def test_file_is_stored_under_tenant(self, ingestion_service, settings):
        document = ingestion_service.upload_document(
            "acme", b"Hello there.", "hello.txt", "Hello", "txt",
        )
        ingestion_service.wait("acme", document.id, timeout=10)

        path = Path(document.file_path)
        assert path.exists()
        assert path.suffix == ".txt"
        assert path.parent == Path(settings.ingestion.storage_path) / "acme" / str(document.id)

    @pytest.mark.parametrize("data,title,doc_type", [
        (b"", "Title", "TXT"),
        (b"data", "  ", "TXT"),
        (b"data", "Title", "XLSX"),
        (b"data", "Title", "URL"),
    ])
    def test_validation(self, ingestion_service, data, title, doc_type):
        """Test that invalid uploads are rejected synchronously."""
        with pytest.raises(ValidationError):
            ingestion_service.upload_document("acme", data, "f.txt", title, doc_type)

        assert ingestion_service.list_documents("acme") == []

    def test_embedding_failure_marks_failed_and_rolls_back(
        self, ingestion_service, vector_store, embedding_backend
    ):
        """Test that a failure leaves no chunks and a FAILED document."""
        original = embedding_backend.embed_text
        calls = {"n": 0}

        def flaky(text):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("quota exceeded")
            return original(text)

        embedding_backend.embed_text = flaky

        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping Policy", "TXT",
        )
        document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.FAILED
        assert document.chunk_count == 0
        assert document.error_message.startswith("Processing failed:")
        assert vector_store.count("acme", CHUNK_COLLECTION) == 0

    def test_unreadable_file_marks_failed(self, ingestion_service):
        document = ingestion_service.upload_document(
            "acme", b"not really a pdf", "broken.pdf", "Broken", "PDF",
        )
        document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.FAILED
        assert document.error_message

    def test_storage_failure_is_recorded(self, ingestion_service):
        with patch.object(ingestion_service, "_store_file", side_effect=OSError("disk full")):
            document = ingestion_service.upload_document(
                "acme", b"Hello.", "hello.txt", "Hello", "TXT",
            )

        assert document.status == DocumentStatus.FAILED
        assert document.error_message == "Upload failed: disk full"
        assert ingestion_service.wait("acme", document.id) is document


class TestIngestUrl:
    """Tests for URL ingestion with a mocked fetch."""

    def test_url_completes(self, ingestion_service, vector_store):
        with patch.object(
            ingestion_service.chunker, "fetch_url_text", return_value=SHIPPING_TEXT
        ) as mock_fetch:
            document = ingestion_service.ingest_url("acme", "https://acme.test/shipping", "Shipping")
            document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.COMPLETED
        assert document.document_type == DocumentType.URL
        assert mock_fetch.call_args[0][0] == "https://acme.test/shipping"

        hits = vector_store.query(
            "acme", CHUNK_COLLECTION, [1.0] * vector_store.dimension, k=10, max_distance=2.0,
        )
        assert all(h.payload["source_url"] == "https://acme.test/shipping" for h in hits)

    def test_fetch_failure_marks_failed(self, ingestion_service):
        with patch.object(
            ingestion_service.chunker, "fetch_url_text", side_effect=ConnectionError("timed out")
        ):
            document = ingestion_service.ingest_url("acme", "https://acme.test/down", "Down")
            document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.FAILED
        assert "timed out" in document.error_message

    @pytest.mark.parametrize("url", ["ftp://acme.test/file", "not a url", "", "https://"])
    def test_invalid_url(self, ingestion_service, url):
        with pytest.raises(ValidationError):
            ingestion_service.ingest_url("acme", url, "Title")

    def test_blank_page_completes_with_zero_chunks(self, ingestion_service):
        with patch.object(ingestion_service.chunker, "fetch_url_text", return_value="   "):
            document = ingestion_service.ingest_url("acme", "https://acme.test/empty", "Empty")
            document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.COMPLETED
        assert document.chunk_count == 0


class TestDocumentLifecycle:
    """Tests for listing and deleting documents."""

    def test_tenant_scoping(self, ingestion_service):
        document = ingestion_service.upload_document("acme", b"Hello.", "a.txt", "A", "TXT")
        ingestion_service.wait("acme", document.id, timeout=10)

        assert [d.id for d in ingestion_service.list_documents("acme")] == [document.id]
        assert ingestion_service.list_documents("globex") == []
        with pytest.raises(NotFoundError):
            ingestion_service.get_document("globex", document.id)

    def test_delete_document(self, ingestion_service, vector_store):
        """Test that deletion removes the file, the chunks and the record."""
        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping", "TXT",
        )
        ingestion_service.wait("acme", document.id, timeout=10)
        path = Path(document.file_path)

        ingestion_service.delete_document("acme", document.id)

        assert not path.exists()
        assert vector_store.count("acme", CHUNK_COLLECTION) == 0
        with pytest.raises(NotFoundError):
            ingestion_service.get_document("acme", document.id)

    def test_delete_unknown(self, ingestion_service):
        with pytest.raises(NotFoundError):
            ingestion_service.delete_document("acme", 404)

    def test_wait_is_tenant_scoped(self, ingestion_service):
        document = ingestion_service.upload_document("acme", b"Secret pricing.", "s.txt", "Secret", "TXT")

        with pytest.raises(NotFoundError):
            ingestion_service.wait("globex", document.id, timeout=10)

        assert ingestion_service.wait("acme", document.id, timeout=10).status == DocumentStatus.COMPLETED

    def test_finished_ingestions_are_forgotten(self, ingestion_service):
        document = ingestion_service.upload_document("acme", b"Hello.", "a.txt", "A", "TXT")
        ingestion_service.wait("acme", document.id, timeout=10)
        ingestion_service.shutdown(wait=True)

        assert document.id not in ingestion_service._futures
        assert ingestion_service.wait("acme", document.id).status == DocumentStatus.COMPLETED

    def test_wait_without_scheduled_ingestion(self, ingestion_service):
        document = ingestion_service.repository.save(
            Document(tenant_id="acme", title="Orphan", document_type=DocumentType.TXT)
        )

        with pytest.raises(IngestionError):
            ingestion_service.wait("acme", document.id)


class TestIngestionInProgress:
    """Tests that hold ingestion mid-loop by blocking the embedding backend."""

    def test_chunks_hidden_until_completed(
        self, ingestion_service, vector_store, retrieval_engine, embedding_backend
    ):
        """Test that a half-ingested document is neither COMPLETED nor retrievable."""
        reached, release, texts, embed = gate_embedding(embedding_backend, on_call=2)

        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping", "TXT",
        )
        assert reached.wait(10)

        try:
            query = embed(texts[0])
            assert ingestion_service.get_document("acme", document.id).status == DocumentStatus.PROCESSING
            assert vector_store.count("acme", CHUNK_COLLECTION) == 1
            assert vector_store.query("acme", CHUNK_COLLECTION, query, k=5, max_distance=2.0)
            assert retrieval_engine.retrieve("acme", query).chunks == []
        finally:
            release.set()

        document = ingestion_service.wait("acme", document.id, timeout=10)

        assert document.status == DocumentStatus.COMPLETED
        chunks = retrieval_engine.retrieve("acme", query).chunks
        assert [m.item.document_id for m in chunks][:1] == [document.id]

    def test_delete_during_ingestion(
        self, ingestion_service, vector_store, retrieval_engine, embedding_backend
    ):
        """Test that deleting a document mid-ingestion leaves nothing behind."""
        reached, release, texts, embed = gate_embedding(embedding_backend, on_call=2)

        document = ingestion_service.upload_document(
            "acme", SHIPPING_TEXT.encode("utf-8"), "shipping.txt", "Shipping", "TXT",
        )
        assert reached.wait(10)

        try:
            ingestion_service.delete_document("acme", document.id)
        finally:
            release.set()
        ingestion_service.shutdown(wait=True)

        assert document.status == DocumentStatus.FAILED
        assert vector_store.count("acme", CHUNK_COLLECTION) == 0
        assert retrieval_engine.retrieve("acme", embed(texts[0])).chunks == []
        assert ingestion_service.list_documents("acme") == []

    def test_status_sequence_for_5000_char_document(self, ingestion_service):
        """Test PENDING -> PROCESSING -> COMPLETED and six chunks at 1000/200."""
        ingestion_service.chunker = DocumentChunker(chunk_size=1000, chunk_overlap=200)
        text = ("lorem ipsum dolor sit amet " * 200)[:5000]
        repository = ingestion_service.repository
        saved, transitions = [], []
        real_save, real_update = repository.save, repository.update_status

        def recording_save(document):
            saved.append(document.status)
            return real_save(document)

        def recording_update(document, status, **kwargs):
            transitions.append(status)
            return real_update(document, status, **kwargs)

        with patch.object(repository, "save", side_effect=recording_save), \
                patch.object(repository, "update_status", side_effect=recording_update):
            document = ingestion_service.upload_document(
                "acme", text.encode("utf-8"), "long.txt", "Long", "TXT",
            )
            document = ingestion_service.wait("acme", document.id, timeout=10)

        assert saved[0] == DocumentStatus.PENDING
        assert transitions == [DocumentStatus.PROCESSING, DocumentStatus.COMPLETED]
        assert document.chunk_count == 6
