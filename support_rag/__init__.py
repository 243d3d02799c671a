"""
Multi-tenant Support Assistant - Core Module

This module contains the answering pipeline components:
- EmbeddingService: Embedding generation (local vs cloud)
- VectorStore: Tenant-partitioned vector search (memory/FAISS/MongoDB)
- DocumentIngestionService: Asynchronous file and URL ingestion
- RetrievalEngine: FAQ and document-chunk retrieval with caching
- AnswerSynthesizer: Grounded prompt construction and generation
- ConversationStore: Per-session dialogue history
- FeedbackService: Customer ratings of assistant answers
- ChatOrchestrator: Batch and streaming chat coordination
- SupportAgent: API interface for backend code
"""

from .agent import SupportAgent, create_agent
from .embeddings import EmbeddingService
from .exceptions import (
    AuthorizationError,
    GenerationError,
    IngestionError,
    NotFoundError,
    ProviderError,
    SupportRAGError,
    ValidationError,
)
from .faq_service import FaqService
from .feedback import FeedbackService
from .ingestion import DocumentIngestionService
from .llm_service import LLMService, LLMResponse
from .memory import ConversationStore
from .orchestrator import ChatOrchestrator
from .retrieval import RetrievalEngine, RetrievalResult
from .streaming import ResponseChannel, StreamEvent
from .synthesizer import AnswerSynthesizer, SynthesisResult
from .vector_store import VectorStore, SearchResult

__all__ = [
    # Pipeline components
    "EmbeddingService",
    "VectorStore",
    "SearchResult",
    "DocumentIngestionService",
    "FaqService",
    "FeedbackService",
    "RetrievalEngine",
    "RetrievalResult",
    "LLMService",
    "LLMResponse",
    "AnswerSynthesizer",
    "SynthesisResult",
    "ConversationStore",
    "ChatOrchestrator",
    "ResponseChannel",
    "StreamEvent",
    "SupportAgent",
    # Errors
    "SupportRAGError",
    "ValidationError",
    "ProviderError",
    "GenerationError",
    "NotFoundError",
    "IngestionError",
    "AuthorizationError",
    # Factory functions
    "create_agent",
]
