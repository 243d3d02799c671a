"""
Chat Orchestrator Module

Coordinates one customer turn end to end:

    receive -> persist user turn -> embed -> retrieve
        -> no match: handoff
        -> match: synthesize
    -> persist assistant turn -> respond

Routing:
- No FAQ and no chunk under the distance cutoff: the fixed fallback answer is
  returned with confidence 0, handoff_triggered=True, and the conversation
  moves to HANDED_OFF. No generation call is made.
- Otherwise the answer is generated once, and the best-matching FAQ (if any)
  has its usage counter incremented by exactly one.

Failures in the retrieval stage (embedding or vector query) fall back to the
handoff path. Generation failures fall back to handoff in the batch path and
become an "error" event in the streaming path. Internal details are logged,
never returned to the customer.
"""

import logging
from typing import Any, Dict, List, Optional

from config.settings import get_settings, ChatConfig
from support_rag.embeddings import EmbeddingService
from support_rag.exceptions import GenerationError, ValidationError
from support_rag.memory import ConversationStore
from support_rag.models import (
    ChatRequest,
    ChatResponse,
    Conversation,
    ConversationStatus,
    MessageRole,
)
from support_rag.repositories import FaqRepository
from support_rag.retrieval import RetrievalEngine, RetrievalResult
from support_rag.streaming import ResponseChannel, StreamEvent
from support_rag.synthesizer import AnswerSynthesizer, SynthesisResult

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """
    Top-level coordinator for batch and streaming chat.

    Example:
        orchestrator = ChatOrchestrator(embeddings, retrieval, synthesizer, store, faqs)
        response = orchestrator.chat("acme", ChatRequest("What are your opening hours?"))

        for event in orchestrator.chat_stream("acme", ChatRequest("Do you ship abroad?")):
            print(event.to_sse(), end="")
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        retrieval_engine: RetrievalEngine,
        synthesizer: AnswerSynthesizer,
        conversation_store: Optional[ConversationStore] = None,
        faq_repository: Optional[FaqRepository] = None,
        config: Optional[ChatConfig] = None,
    ):
        self.embedding_service = embedding_service
        self.retrieval_engine = retrieval_engine
        self.synthesizer = synthesizer
        self.conversation_store = conversation_store or ConversationStore()
        self.faq_repository = faq_repository
        self.config = config or get_settings().chat

        logger.info("ChatOrchestrator initialized")

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def chat(self, tenant_id: str, request: ChatRequest) -> ChatResponse:
        """
        Answer a question synchronously.

        Raises:
            ValidationError: If the tenant or question is missing
        """
        question = self._validate(tenant_id, request)
        logger.info(f"Processing chat request for tenant: {tenant_id}, question: {question}")

        conversation, _ = self.conversation_store.get_or_create(
            tenant_id, request.session_id, request.user_email
        )

        with self.conversation_store.session_lock(tenant_id, conversation.session_id):
            self.conversation_store.add_message(conversation, MessageRole.USER, question)

            retrieval = self._retrieve(tenant_id, question)
            if retrieval is None or retrieval.is_empty:
                return self._handoff(conversation, question)

            history = self.conversation_store.recent_messages(
                conversation, self.config.history_turns
            )

            try:
                result = self.synthesizer.synthesize(question, retrieval, history)
            except GenerationError as e:
                logger.error(f"Answer generation failed for session {conversation.session_id}: {e}")
                return self._handoff(conversation, question)

            message_id = self._record_answer(conversation, retrieval, result)

        logger.info(
            f"Chat response generated - sessionId: {conversation.session_id}, "
            f"confidence: {result.confidence}, handoff: False, sources: {len(result.sources)}"
        )

        return ChatResponse(
            session_id=conversation.session_id,
            answer=result.answer,
            confidence_score=result.confidence,
            sources=result.sources,
            handoff_triggered=False,
            message_id=message_id,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def chat_stream(self, tenant_id: str, request: ChatRequest) -> ResponseChannel:
        """
        Answer a question as a stream of events.

        Events: zero or more "token", one "metadata" and one "message_id";
        on no match a "message" and a "metadata"; on failure one "error".

        Raises:
            ValidationError: If the tenant or question is missing
        """
        question = self._validate(tenant_id, request)
        logger.info(f"Processing streaming chat request for tenant: {tenant_id}, question: {question}")

        channel = ResponseChannel(
            timeout=self.config.stream_timeout,
            error_message=self.config.error_message,
        )
        return channel.start(lambda ch: self._produce_stream(ch, tenant_id, question, request))

    def _produce_stream(
        self,
        channel: ResponseChannel,
        tenant_id: str,
        question: str,
        request: ChatRequest,
    ) -> None:
        conversation, _ = self.conversation_store.get_or_create(
            tenant_id, request.session_id, request.user_email
        )

        with self.conversation_store.session_lock(tenant_id, conversation.session_id):
            self.conversation_store.add_message(conversation, MessageRole.USER, question)

            retrieval = self._retrieve(tenant_id, question)
            if retrieval is None or retrieval.is_empty:
                response = self._handoff(conversation, question)
                channel.send(StreamEvent("message", response.answer))
                channel.send(StreamEvent("metadata", {
                    "session_id": response.session_id,
                    "handoff_triggered": True,
                    "confidence_score": 0.0,
                    "sources": [],
                    "answer": response.answer,
                }))
                return

            history = self.conversation_store.recent_messages(
                conversation, self.config.history_turns
            )

            result = None
            stream = self.synthesizer.synthesize_stream(question, retrieval, history)
            try:
                for item in stream:
                    if isinstance(item, SynthesisResult):
                        result = item
                    elif not channel.send(StreamEvent("token", item)):
                        logger.info(f"Stream for session {conversation.session_id} was closed by the client")
                        return
            except GenerationError as e:
                logger.error(f"Streaming generation failed for session {conversation.session_id}: {e}")
                channel.send(StreamEvent("error", self.config.error_message))
                return
            finally:
                stream.close()

            message_id = self._record_answer(conversation, retrieval, result)

        channel.send(StreamEvent("metadata", {
            "session_id": conversation.session_id,
            "confidence_score": result.confidence,
            "sources": [s.to_dict() for s in result.sources],
            "handoff_triggered": False,
            "answer": result.answer,
        }))
        channel.send(StreamEvent("message_id", {"message_id": message_id}))

        logger.info(f"Streaming chat completed for session: {conversation.session_id}")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, tenant_id: str, session_id: str) -> List[Dict[str, Any]]:
        """
        Ordered messages of a session.

        Raises:
            NotFoundError: If the tenant has no such session
        """
        logger.info(f"Fetching conversation history for sessionId: {session_id}, tenant: {tenant_id}")
        messages = self.conversation_store.get_messages(tenant_id, session_id)
        return [m.to_dict() for m in messages]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(tenant_id: str, request: ChatRequest) -> str:
        if not tenant_id or not tenant_id.strip():
            raise ValidationError("tenant_id is required")
        if request is None or not request.question or not request.question.strip():
            raise ValidationError("question is required")
        return request.question.strip()

    def _retrieve(self, tenant_id: str, question: str) -> Optional[RetrievalResult]:
        """Embed and retrieve; None when either step fails."""
        try:
            vector = self.embedding_service.embed_query(question)
        except Exception as e:
            logger.error(f"Embedding failed during retrieval for tenant {tenant_id}: {e}")
            return None

        try:
            return self.retrieval_engine.retrieve(tenant_id, vector)
        except Exception as e:
            logger.error(f"Vector query failed during retrieval for tenant {tenant_id}: {e}")
            return None

    def _handoff(self, conversation: Conversation, question: str) -> ChatResponse:
        logger.warning(f"No matching knowledge found for question: {question}")

        message = self.conversation_store.add_message(
            conversation,
            MessageRole.ASSISTANT,
            self.config.fallback_message,
            confidence_score=0.0,
        )
        self.conversation_store.set_status(conversation, ConversationStatus.HANDED_OFF)
        self.conversation_store.touch(conversation)

        return ChatResponse(
            session_id=conversation.session_id,
            answer=self.config.fallback_message,
            confidence_score=0.0,
            sources=[],
            handoff_triggered=True,
            handoff_message=self.config.handoff_message,
            message_id=message.id,
        )

    def _record_answer(
        self,
        conversation: Conversation,
        retrieval: RetrievalResult,
        result: SynthesisResult,
    ) -> int:
        """Count FAQ usage and persist the assistant turn."""
        best_faq = retrieval.best_faq

        if best_faq is not None:
            if self.faq_repository is not None and self.faq_repository.find(
                conversation.tenant_id, best_faq.id
            ):
                self.faq_repository.increment_usage(conversation.tenant_id, best_faq.id)
            else:
                logger.warning(f"Best-matching FAQ {best_faq.id} has no record; usage not counted")

        message = self.conversation_store.add_message(
            conversation,
            MessageRole.ASSISTANT,
            result.answer,
            confidence_score=result.confidence,
            faq_entry_id=best_faq.id if best_faq else None,
        )
        self.conversation_store.touch(conversation)
        return message.id
