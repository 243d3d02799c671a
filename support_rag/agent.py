"""
Support Agent Module

The public entry point for backend code: wires every component from settings
and exposes chat, history and knowledge-management operations.

API Contract:
    class SupportAgent:
        def chat(self, tenant_id, question, session_id=None, user_email=None) -> dict
        def chat_stream(self, tenant_id, question, ...) -> ResponseChannel
        def get_history(self, tenant_id, session_id) -> list[dict]
        def submit_feedback(self, tenant_id, message_id, feedback_type, comment=None) -> dict
        def create_faq(self, tenant_id, question, answer, ...) -> dict
        def upload_document(self, tenant_id, file_bytes, filename, title, document_type) -> dict
        def ingest_url(self, tenant_id, source_url, title) -> dict

Knowledge-management operations accept an optional Actor; when given, the
role/tenant policy in support_rag.authorization is enforced.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from config.settings import get_settings, Settings
from support_rag.authorization import Action, Actor, authorize
from support_rag.cache import create_cache
from support_rag.chunker import DocumentChunker
from support_rag.embeddings import BaseEmbeddingProvider, EmbeddingService
from support_rag.faq_service import FaqService
from support_rag.feedback import FeedbackService
from support_rag.ingestion import DocumentIngestionService
from support_rag.llm_service import BaseLLMProvider, LLMService
from support_rag.memory import ConversationStore
from support_rag.models import ChatRequest
from support_rag.orchestrator import ChatOrchestrator
from support_rag.repositories import DocumentRepository, FaqRepository
from support_rag.retrieval import RetrievalEngine
from support_rag.streaming import ResponseChannel
from support_rag.synthesizer import AnswerSynthesizer
from support_rag.vector_store import CHUNK_COLLECTION, FAQ_COLLECTION, VectorStore

logger = logging.getLogger(__name__)


class SupportAgent:
    """
    Main Support Agent - the public API of the support assistant.

    Example:
        agent = SupportAgent()

        agent.create_faq("acme", "What are your opening hours?", "Mon-Fri 9-17.")
        result = agent.chat("acme", "When are you open?")
        print(result["answer"], result["confidence_score"])

        # Continue the conversation
        result = agent.chat("acme", "And on weekends?", session_id=result["session_id"])
    """

    def __init__(
        self,
        embedding_provider: Optional[str] = None,
        llm_provider: Optional[str] = None,
        vector_store_provider: Optional[str] = None,
        settings: Optional[Settings] = None,
        embedding_backend: Optional[BaseEmbeddingProvider] = None,
        llm_backend: Optional[BaseLLMProvider] = None,
    ):
        """
        Initialize the Support Agent.

        Args:
            embedding_provider: "local" or "openai" (default from config)
            llm_provider: "ollama", "openai", "gemini" or "mistral" (default from config)
            vector_store_provider: "memory", "faiss" or "mongodb" (default from config)
            settings: Settings to use instead of the environment
            embedding_backend: Pre-built embedding provider
            llm_backend: Pre-built LLM provider
        """
        settings = settings or get_settings()
        self.settings = settings

        logger.info("Initializing Support Agent...")

        self._embedding_service = EmbeddingService(
            provider=embedding_provider,
            config=settings.embedding,
            backend=embedding_backend,
            cache=create_cache(settings.cache),
        )

        self._vector_store = VectorStore(
            dimension=self._embedding_service.dimension,
            provider=vector_store_provider,
            config=settings.vector_store,
        )

        self._llm_service = LLMService(
            provider=llm_provider,
            config=settings.llm,
            backend=llm_backend,
        )

        self._faq_repository = FaqRepository()
        self._document_repository = DocumentRepository()
        self._conversation_store = ConversationStore()
        self._feedback_service = FeedbackService(self._conversation_store)

        self._retrieval_engine = RetrievalEngine(
            vector_store=self._vector_store,
            faq_repository=self._faq_repository,
            config=settings.retrieval,
            cache=create_cache(settings.cache),
        )

        self._faq_service = FaqService(
            embedding_service=self._embedding_service,
            vector_store=self._vector_store,
            repository=self._faq_repository,
            retrieval_engine=self._retrieval_engine,
        )

        self._ingestion_service = DocumentIngestionService(
            embedding_service=self._embedding_service,
            vector_store=self._vector_store,
            repository=self._document_repository,
            chunker=DocumentChunker(config=settings.chunking),
            retrieval_engine=self._retrieval_engine,
            config=settings.ingestion,
        )

        self._orchestrator = ChatOrchestrator(
            embedding_service=self._embedding_service,
            retrieval_engine=self._retrieval_engine,
            synthesizer=AnswerSynthesizer(self._llm_service, config=settings.chat),
            conversation_store=self._conversation_store,
            faq_repository=self._faq_repository,
            config=settings.chat,
        )

        logger.info(
            f"Support Agent initialized: "
            f"embedding={self._embedding_service.provider_name}, "
            f"llm={self._llm_service.provider_name}, "
            f"vector_store={self._vector_store.provider}"
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat(
        self,
        tenant_id: str,
        question: str,
        session_id: Optional[str] = None,
        user_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Answer a customer question.

        Returns:
            Dictionary with:
            - session_id: str
            - answer: str
            - confidence_score: float
            - sources: list[dict] ({type, title, id, url?})
            - handoff_triggered: bool
            - handoff_message: str (only when handed off)

        Raises:
            ValidationError: If the question is blank
        """
        response = self._orchestrator.chat(
            tenant_id, ChatRequest(question, session_id, user_email)
        )
        return response.to_dict()

    def chat_stream(
        self,
        tenant_id: str,
        question: str,
        session_id: Optional[str] = None,
        user_email: Optional[str] = None,
    ) -> ResponseChannel:
        """Answer a customer question as a stream of StreamEvents."""
        return self._orchestrator.chat_stream(
            tenant_id, ChatRequest(question, session_id, user_email)
        )

    def get_history(
        self,
        tenant_id: str,
        session_id: str,
        actor: Optional[Actor] = None,
    ) -> List[Dict[str, Any]]:
        """Ordered messages of a session (NotFoundError when unknown)."""
        authorize(actor, Action.VIEW_CONVERSATIONS, tenant_id)
        return self._orchestrator.get_history(tenant_id, session_id)

    def submit_feedback(
        self,
        tenant_id: str,
        message_id: int,
        feedback_type: str,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Rate an assistant answer ("HELPFUL" or "NOT_HELPFUL").

        Rating the same message again replaces the earlier rating.

        Raises:
            NotFoundError: If the tenant has no such message
        """
        feedback = self._feedback_service.submit_feedback(
            tenant_id, message_id, feedback_type, comment
        )
        return feedback.to_dict()

    def get_feedback(
        self,
        tenant_id: str,
        message_id: int,
        actor: Optional[Actor] = None,
    ) -> Optional[Dict[str, Any]]:
        authorize(actor, Action.VIEW_CONVERSATIONS, tenant_id)
        feedback = self._feedback_service.get_feedback(tenant_id, message_id)
        return feedback.to_dict() if feedback else None

    # ------------------------------------------------------------------
    # FAQs
    # ------------------------------------------------------------------

    def create_faq(
        self,
        tenant_id: str,
        question: str,
        answer: str,
        tags: Optional[Iterable[str]] = None,
        is_active: bool = True,
        display_order: Optional[int] = None,
        actor: Optional[Actor] = None,
    ) -> Dict[str, Any]:
        authorize(actor, Action.MANAGE_FAQS, tenant_id)
        entry = self._faq_service.create_faq(
            tenant_id, question, answer, tags, is_active, display_order
        )
        return entry.to_dict()

    def create_faqs_batch(
        self,
        tenant_id: str,
        items: List[Dict[str, Any]],
        actor: Optional[Actor] = None,
    ) -> List[Dict[str, Any]]:
        authorize(actor, Action.MANAGE_FAQS, tenant_id)
        return [e.to_dict() for e in self._faq_service.create_faqs_batch(tenant_id, items)]

    def update_faq(
        self,
        tenant_id: str,
        faq_id: int,
        actor: Optional[Actor] = None,
        **changes,
    ) -> Dict[str, Any]:
        """Update an FAQ; accepts question, answer, tags, is_active, display_order."""
        authorize(actor, Action.MANAGE_FAQS, tenant_id)
        return self._faq_service.update_faq(tenant_id, faq_id, **changes).to_dict()

    def delete_faq(self, tenant_id: str, faq_id: int, actor: Optional[Actor] = None) -> None:
        authorize(actor, Action.MANAGE_FAQS, tenant_id)
        self._faq_service.delete_faq(tenant_id, faq_id)

    def list_faqs(self, tenant_id: str, actor: Optional[Actor] = None) -> List[Dict[str, Any]]:
        authorize(actor, Action.READ_KNOWLEDGE, tenant_id)
        return [e.to_dict() for e in self._faq_service.list_faqs(tenant_id)]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upload_document(
        self,
        tenant_id: str,
        file_bytes: bytes,
        filename: str,
        title: str,
        document_type: str,
        mime_type: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> Dict[str, Any]:
        """
        Store a file and schedule its ingestion.

        Returns:
            The document as a dict; "status" is PENDING until processed
        """
        authorize(actor, Action.MANAGE_DOCUMENTS, tenant_id)
        document = self._ingestion_service.upload_document(
            tenant_id, file_bytes, filename, title, document_type, mime_type
        )
        return document.to_dict()

    def ingest_url(
        self,
        tenant_id: str,
        source_url: str,
        title: str,
        actor: Optional[Actor] = None,
    ) -> Dict[str, Any]:
        authorize(actor, Action.MANAGE_DOCUMENTS, tenant_id)
        return self._ingestion_service.ingest_url(tenant_id, source_url, title).to_dict()

    def get_document(
        self,
        tenant_id: str,
        document_id: int,
        actor: Optional[Actor] = None,
    ) -> Dict[str, Any]:
        authorize(actor, Action.READ_KNOWLEDGE, tenant_id)
        return self._ingestion_service.get_document(tenant_id, document_id).to_dict()

    def list_documents(self, tenant_id: str, actor: Optional[Actor] = None) -> List[Dict[str, Any]]:
        authorize(actor, Action.READ_KNOWLEDGE, tenant_id)
        return [d.to_dict() for d in self._ingestion_service.list_documents(tenant_id)]

    def delete_document(
        self,
        tenant_id: str,
        document_id: int,
        actor: Optional[Actor] = None,
    ) -> None:
        authorize(actor, Action.MANAGE_DOCUMENTS, tenant_id)
        self._ingestion_service.delete_document(tenant_id, document_id)

    def wait_for_document(
        self,
        tenant_id: str,
        document_id: int,
        timeout: Optional[float] = None,
        actor: Optional[Actor] = None,
    ) -> Dict[str, Any]:
        """Block until a scheduled ingestion finishes and return the document."""
        authorize(actor, Action.READ_KNOWLEDGE, tenant_id)
        return self._ingestion_service.wait(tenant_id, document_id, timeout=timeout).to_dict()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_stats(self, tenant_id: str) -> Dict[str, Any]:
        """
        Get statistics about a tenant's knowledge and the configured stack.

        Returns:
            Dictionary with system statistics
        """
        return {
            "knowledge_base": {
                "faq_vectors": self._vector_store.count(tenant_id, FAQ_COLLECTION),
                "chunk_vectors": self._vector_store.count(tenant_id, CHUNK_COLLECTION),
                "documents": len(self._document_repository.list(tenant_id)),
                "provider": self._vector_store.provider,
            },
            "embedding": {
                "provider": self._embedding_service.provider_name,
                "model": self._embedding_service.model_name,
                "dimension": self._embedding_service.dimension,
            },
            "llm": {
                "provider": self._llm_service.provider_name,
                "model": self._llm_service.model_name,
            },
            "conversations": {
                "active": len(self._conversation_store.list_conversations(tenant_id)),
            },
        }

    def shutdown(self) -> None:
        """Wait for running ingestions and release worker threads."""
        self._ingestion_service.shutdown(wait=True)


# Convenience function for quick initialization
def create_agent(**kwargs) -> SupportAgent:
    """
    Create a Support Agent from environment settings.

    Args:
        **kwargs: Arguments for SupportAgent

    Returns:
        Configured SupportAgent instance
    """
    return SupportAgent(**kwargs)
