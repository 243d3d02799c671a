"""
Tests for Chat Orchestrator Module

End-to-end chat turns over the fake embedding and LLM providers.
"""

import threading
import time

import pytest
from unittest.mock import patch

from support_rag.exceptions import NotFoundError, ValidationError
from support_rag.models import ChatRequest, ConversationStatus, MessageRole

OPENING_QUESTION = "What are your opening hours?"
OPENING_ANSWER = "We are open Monday to Friday, 9 to 17."
UNRELATED_QUESTION = "Can pets travel inside the cabin?"


@pytest.fixture
def opening_faq(faq_service):
    return faq_service.create_faq("acme", OPENING_QUESTION, OPENING_ANSWER)


class TestBatchChat:
    """Tests for ChatOrchestrator.chat."""

    def test_matching_faq_is_answered(self, orchestrator, opening_faq, llm_backend, faq_repository):
        """Test the answered path: one generation, one FAQ source, usage +1."""
        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is False
        assert response.answer == OPENING_ANSWER
        assert response.confidence_score == 0.8
        assert [s.id for s in response.sources] == [opening_faq.id]
        assert response.sources[0].type.value == "FAQ"
        assert llm_backend.call_count == 1
        assert faq_repository.get("acme", opening_faq.id).usage_count == 1
        assert OPENING_ANSWER in llm_backend.prompts[0]

    def test_no_knowledge_hands_off(self, orchestrator, llm_backend, conversation_store, settings):
        """Test that a tenant without knowledge gets the fallback answer."""
        response = orchestrator.chat("fresh-tenant", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is True
        assert response.answer == settings.chat.fallback_message
        assert response.handoff_message == settings.chat.handoff_message
        assert response.confidence_score == 0.0
        assert response.sources == []
        assert llm_backend.call_count == 0

        conversation = conversation_store.find("fresh-tenant", response.session_id)
        assert conversation.status == ConversationStatus.HANDED_OFF

    def test_unrelated_question_hands_off(self, orchestrator, opening_faq, llm_backend, faq_repository):
        response = orchestrator.chat("acme", ChatRequest(UNRELATED_QUESTION))

        assert response.handoff_triggered is True
        assert llm_backend.call_count == 0
        assert faq_repository.get("acme", opening_faq.id).usage_count == 0

    def test_other_tenant_knowledge_is_invisible(self, orchestrator, opening_faq, llm_backend):
        response = orchestrator.chat("globex", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is True
        assert llm_backend.call_count == 0

    def test_turns_are_persisted(self, orchestrator, opening_faq, conversation_store):
        """Test that both the question and the answer are stored in order."""
        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION, user_email="c@x.test"))

        messages = conversation_store.get_messages("acme", response.session_id)

        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert messages[0].content == OPENING_QUESTION
        assert messages[1].content == OPENING_ANSWER
        assert messages[1].confidence_score == 0.8
        assert messages[1].faq_entry_id == opening_faq.id
        assert response.message_id == messages[1].id

    def test_session_is_reused(self, orchestrator, opening_faq, llm_backend, conversation_store):
        """Test that a follow-up sees the previous turns in its prompt."""
        first = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))
        second = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION, session_id=first.session_id))

        assert second.session_id == first.session_id
        assert len(conversation_store.get_messages("acme", first.session_id)) == 4
        assert "Previous conversation:" not in llm_backend.prompts[0]
        assert f"Customer: {OPENING_QUESTION}" in llm_backend.prompts[1]
        assert f"Assistant: {OPENING_ANSWER}" in llm_backend.prompts[1]

    def test_concurrent_turns_on_one_session_are_serialized(
        self, orchestrator, opening_faq, llm_backend, conversation_store
    ):
        """Test that parallel requests on one session never interleave their turns."""
        active, overlaps = [], []
        guard = threading.Lock()
        real_generate = llm_backend.generate

        def slow_generate(*args, **kwargs):
            with guard:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
            time.sleep(0.05)
            with guard:
                active.pop()
            return real_generate(*args, **kwargs)

        llm_backend.generate = slow_generate
        conversation_store.get_or_create("acme", "shared")

        threads = [
            threading.Thread(
                target=orchestrator.chat,
                args=("acme", ChatRequest(OPENING_QUESTION, session_id="shared")),
            )
            for _ in range(3)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        roles = [m.role for m in conversation_store.get_messages("acme", "shared")]
        assert overlaps == []
        assert roles == [MessageRole.USER, MessageRole.ASSISTANT] * 3
        assert llm_backend.call_count == 3

    def test_supplied_session_id_is_kept(self, orchestrator, opening_faq):
        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION, session_id="web-123"))

        assert response.session_id == "web-123"

    @pytest.mark.parametrize("tenant,question", [("acme", ""), ("acme", "   "), ("", "Hello?")])
    def test_validation(self, orchestrator, conversation_store, tenant, question):
        with pytest.raises(ValidationError):
            orchestrator.chat(tenant, ChatRequest(question))

        assert len(conversation_store) == 0

    def test_generation_failure_hands_off(self, orchestrator, opening_faq, llm_backend, faq_repository):
        """Test that a failing model falls back to handoff without counting usage."""
        llm_backend.fail = True

        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is True
        assert response.confidence_score == 0.0
        assert faq_repository.get("acme", opening_faq.id).usage_count == 0

    def test_embedding_failure_hands_off(self, orchestrator, opening_faq, embedding_backend, llm_backend):
        embedding_backend.fail = True

        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is True
        assert llm_backend.call_count == 0

    def test_vector_query_failure_hands_off(self, orchestrator, opening_faq, retrieval_engine):
        with patch.object(retrieval_engine.vector_store, "query", side_effect=RuntimeError("down")):
            response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        assert response.handoff_triggered is True

    def test_distance_confidence(self, orchestrator, opening_faq, settings):
        settings.chat.confidence_mode = "distance"

        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        assert response.confidence_score == pytest.approx(1.0, abs=1e-4)


class TestStreamingChat:
    """Tests for ChatOrchestrator.chat_stream."""

    def test_tokens_concatenate_to_answer(self, orchestrator, opening_faq, drain, llm_backend, faq_repository):
        """Test that streamed tokens equal the answer in the metadata event."""
        events = drain(orchestrator.chat_stream("acme", ChatRequest(OPENING_QUESTION)))

        assert "".join(events["token"]) == OPENING_ANSWER
        metadata = events["metadata"][0]
        assert metadata["answer"] == OPENING_ANSWER
        assert metadata["confidence_score"] == 0.8
        assert metadata["handoff_triggered"] is False
        assert metadata["sources"] == [{"type": "FAQ", "title": OPENING_QUESTION, "id": opening_faq.id}]
        assert isinstance(events["message_id"][0]["message_id"], int)
        assert "error" not in events
        assert llm_backend.call_count == 1
        assert faq_repository.get("acme", opening_faq.id).usage_count == 1

    def test_no_match_streams_fallback(self, orchestrator, drain, llm_backend, settings):
        events = drain(orchestrator.chat_stream("acme", ChatRequest(UNRELATED_QUESTION)))

        assert events["message"] == [settings.chat.fallback_message]
        assert events["metadata"][0]["handoff_triggered"] is True
        assert events["metadata"][0]["confidence_score"] == 0.0
        assert "token" not in events
        assert "message_id" not in events
        assert llm_backend.call_count == 0

    def test_generation_failure_emits_error(self, orchestrator, opening_faq, drain, llm_backend, conversation_store, settings):
        """Test that a mid-stream failure ends with one error event."""
        llm_backend.fail_after = 2

        events = drain(orchestrator.chat_stream("acme", ChatRequest(OPENING_QUESTION, session_id="s1")))

        assert events["error"] == [settings.chat.error_message]
        assert len(events["token"]) == 2
        assert "metadata" not in events

        messages = conversation_store.get_messages("acme", "s1")
        assert [m.role for m in messages] == [MessageRole.USER]

    def test_persists_answer(self, orchestrator, opening_faq, drain, conversation_store):
        events = drain(orchestrator.chat_stream("acme", ChatRequest(OPENING_QUESTION)))

        session_id = events["metadata"][0]["session_id"]
        messages = conversation_store.get_messages("acme", session_id)
        assert messages[-1].content == OPENING_ANSWER
        assert messages[-1].id == events["message_id"][0]["message_id"]

    def test_validation_is_synchronous(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.chat_stream("acme", ChatRequest(" "))


class TestHistory:
    """Tests for ChatOrchestrator.get_history."""

    def test_history(self, orchestrator, opening_faq):
        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        history = orchestrator.get_history("acme", response.session_id)

        assert [m["role"] for m in history] == ["USER", "ASSISTANT"]
        assert history[1]["faq_entry_id"] == opening_faq.id

    def test_unknown_session(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_history("acme", "does-not-exist")

    def test_other_tenant_session(self, orchestrator, opening_faq):
        response = orchestrator.chat("acme", ChatRequest(OPENING_QUESTION))

        with pytest.raises(NotFoundError):
            orchestrator.get_history("globex", response.session_id)
