"""
Tests for FAQ Service Module

Uses the fake embedding provider and the in-memory vector store.
"""

import pytest
from unittest.mock import Mock

from support_rag.exceptions import NotFoundError, ProviderError, ValidationError
from support_rag.vector_store import FAQ_COLLECTION


class TestFaqService:
    """Tests for FaqService class."""

    def test_create_faq_indexes_vector(self, faq_service, vector_store):
        """Test that a created FAQ is stored and searchable."""
        entry = faq_service.create_faq(
            "acme", "  What are your opening hours?  ", "Mon-Fri 9-17.", tags=["hours"]
        )

        assert entry.id is not None
        assert entry.question == "What are your opening hours?"
        assert entry.embedding is not None
        assert vector_store.count("acme", FAQ_COLLECTION) == 1

        hits = vector_store.query("acme", FAQ_COLLECTION, entry.embedding, k=1, max_distance=0.1)
        assert hits[0].payload["faq_id"] == entry.id
        assert hits[0].payload["is_active"] is True
        assert hits[0].payload["tags"] == ["hours"]

    @pytest.mark.parametrize("question,answer", [("", "A."), ("Q?", "   "), (None, "A.")])
    def test_blank_fields_rejected(self, faq_service, vector_store, embedding_backend, question, answer):
        """Test that blank question or answer is rejected before embedding."""
        with pytest.raises(ValidationError):
            faq_service.create_faq("acme", question, answer)

        assert embedding_backend.calls == []
        assert vector_store.count("acme", FAQ_COLLECTION) == 0

    def test_embedding_failure_stores_nothing(self, faq_service, faq_repository, embedding_backend):
        embedding_backend.fail = True

        with pytest.raises(ProviderError):
            faq_service.create_faq("acme", "Q?", "A.")

        assert faq_repository.list("acme") == []

    def test_batch_is_all_or_nothing(self, faq_service, faq_repository, vector_store):
        """Test that one invalid item prevents the whole batch."""
        with pytest.raises(ValidationError):
            faq_service.create_faqs_batch("acme", [
                {"question": "Q1?", "answer": "A1."},
                {"question": "Q2?", "answer": ""},
            ])

        assert faq_repository.list("acme") == []
        assert vector_store.count("acme", FAQ_COLLECTION) == 0

    def test_batch_creates_all(self, faq_service, vector_store):
        entries = faq_service.create_faqs_batch("acme", [
            {"question": "Q1?", "answer": "A1.", "display_order": 2},
            {"question": "Q2?", "answer": "A2.", "tags": ["x"]},
        ])

        assert len(entries) == 2
        assert entries[0].display_order == 2
        assert vector_store.count("acme", FAQ_COLLECTION) == 2

    def test_update_text_reembeds(self, faq_service, embedding_backend):
        """Test that changing the answer regenerates the embedding."""
        entry = faq_service.create_faq("acme", "Do you ship abroad?", "No.")
        calls_before = len(embedding_backend.calls)

        updated = faq_service.update_faq("acme", entry.id, answer="Yes, to the EU.")

        assert updated.answer == "Yes, to the EU."
        assert len(embedding_backend.calls) == calls_before + 1
        assert embedding_backend.calls[-1].endswith("Answer: Yes, to the EU.")

    def test_update_flags_does_not_reembed(self, faq_service, embedding_backend, vector_store):
        entry = faq_service.create_faq("acme", "Do you ship abroad?", "No.")
        calls_before = len(embedding_backend.calls)

        faq_service.update_faq("acme", entry.id, is_active=False, display_order=5)

        assert len(embedding_backend.calls) == calls_before
        hits = vector_store.query(
            "acme", FAQ_COLLECTION, entry.embedding, k=1, max_distance=0.1,
            filter_dict={"is_active": True},
        )
        assert hits == []

    def test_update_unknown(self, faq_service):
        with pytest.raises(NotFoundError):
            faq_service.update_faq("acme", 404, answer="x")

    def test_update_blank_answer(self, faq_service):
        entry = faq_service.create_faq("acme", "Q?", "A.")

        with pytest.raises(ValidationError):
            faq_service.update_faq("acme", entry.id, answer=" ")

    def test_delete_removes_vector(self, faq_service, vector_store):
        entry = faq_service.create_faq("acme", "Q?", "A.")

        faq_service.delete_faq("acme", entry.id)

        assert vector_store.count("acme", FAQ_COLLECTION) == 0
        with pytest.raises(NotFoundError):
            faq_service.get_faq("acme", entry.id)

    def test_delete_other_tenant(self, faq_service):
        entry = faq_service.create_faq("acme", "Q?", "A.")

        with pytest.raises(NotFoundError):
            faq_service.delete_faq("globex", entry.id)

    def test_changes_invalidate_retrieval_cache(self, faq_service):
        engine = Mock()
        faq_service.retrieval_engine = engine

        entry = faq_service.create_faq("acme", "Q?", "A.")
        faq_service.update_faq("acme", entry.id, answer="B.")
        faq_service.delete_faq("acme", entry.id)

        assert engine.invalidate.call_count == 3
        engine.invalidate.assert_called_with("acme")

    def test_record_usage(self, faq_service):
        entry = faq_service.create_faq("acme", "Q?", "A.")

        assert faq_service.record_usage("acme", entry.id) == 1
        assert faq_service.list_faqs("acme")[0].usage_count == 1
