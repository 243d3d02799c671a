"""
Shared fixtures for the support assistant tests.

Provides deterministic embedding and LLM providers so the pipeline can be
exercised end to end without models, API keys or network access.
"""

import hashlib
import re
from typing import Dict, List, Optional

import pytest

from config.settings import (
    CacheConfig,
    ChatConfig,
    ChunkingConfig,
    IngestionConfig,
    RetrievalConfig,
    Settings,
    VectorStoreConfig,
)
from support_rag.cache import NullCache
from support_rag.chunker import DocumentChunker
from support_rag.embeddings import BaseEmbeddingProvider, EmbeddingService
from support_rag.faq_service import FaqService
from support_rag.ingestion import DocumentIngestionService
from support_rag.llm_service import BaseLLMProvider, LLMResponse, LLMService
from support_rag.memory import ConversationStore
from support_rag.orchestrator import ChatOrchestrator
from support_rag.repositories import DocumentRepository, FaqRepository
from support_rag.retrieval import RetrievalEngine
from support_rag.synthesizer import AnswerSynthesizer
from support_rag.vector_store import InMemoryVectorStore

FAKE_DIMENSION = 64


class FakeEmbeddingProvider(BaseEmbeddingProvider):
    """
    Bag-of-words embeddings over hashed buckets.

    Texts sharing no words are (almost always) orthogonal. An FAQ-formatted
    text ("Question: ...\\nAnswer: ...") embeds like its question line, so a
    customer asking the exact FAQ question matches it at distance 0.
    """

    def __init__(self, dimension: int = FAKE_DIMENSION, fail: bool = False):
        self._dimension = dimension
        self.fail = fail
        self.calls: List[str] = []

    def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend unavailable")

        if text.startswith("Question: "):
            text = text[len("Question: "):].split("\n", 1)[0]

        vector = [0.0] * self._dimension
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_text(t) for t in texts]

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return "fake-bag-of-words"


class FakeLLMProvider(BaseLLMProvider):
    """Returns a canned answer and records every prompt it receives."""

    def __init__(self, answer: str = "We are open Monday to Friday, 9 to 17.", fail: bool = False):
        self.answer = answer
        self.fail = fail
        self.prompts: List[str] = []
        self.fail_after: Optional[int] = None

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model overloaded")
        return LLMResponse(content=self.answer, model=self.model_name)

    def generate_stream(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model overloaded")
        words = self.answer.split(" ")
        for i, word in enumerate(words):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("stream interrupted")
            yield word if i == len(words) - 1 else word + " "

    @property
    def model_name(self) -> str:
        return "fake-llm"

    @property
    def call_count(self) -> int:
        return len(self.prompts)


@pytest.fixture
def embedding_backend():
    return FakeEmbeddingProvider()


@pytest.fixture
def llm_backend():
    return FakeLLMProvider()


@pytest.fixture
def settings(tmp_path):
    """Settings with an in-memory store and uploads under tmp_path."""
    return Settings(
        vector_store=VectorStoreConfig(provider="memory"),
        chunking=ChunkingConfig(chunk_size=200, chunk_overlap=40),
        retrieval=RetrievalConfig(),
        cache=CacheConfig(enabled=True, max_size=100, ttl_seconds=60),
        chat=ChatConfig(stream_timeout=5.0),
        ingestion=IngestionConfig(storage_path=str(tmp_path / "uploads"), max_workers=1),
    )


@pytest.fixture
def embedding_service(embedding_backend, settings):
    return EmbeddingService(config=settings.embedding, backend=embedding_backend, cache=NullCache())


@pytest.fixture
def vector_store():
    return InMemoryVectorStore(dimension=FAKE_DIMENSION)


@pytest.fixture
def faq_repository():
    return FaqRepository()


@pytest.fixture
def retrieval_engine(vector_store, faq_repository, settings):
    return RetrievalEngine(vector_store, faq_repository, config=settings.retrieval, cache=NullCache())


@pytest.fixture
def faq_service(embedding_service, vector_store, faq_repository, retrieval_engine):
    return FaqService(embedding_service, vector_store, faq_repository, retrieval_engine)


@pytest.fixture
def ingestion_service(embedding_service, vector_store, retrieval_engine, settings):
    service = DocumentIngestionService(
        embedding_service,
        vector_store,
        repository=DocumentRepository(),
        chunker=DocumentChunker(config=settings.chunking),
        retrieval_engine=retrieval_engine,
        config=settings.ingestion,
    )
    yield service
    service.shutdown(wait=True)


@pytest.fixture
def llm_service(llm_backend, settings):
    return LLMService(config=settings.llm, backend=llm_backend)


@pytest.fixture
def synthesizer(llm_service, settings):
    return AnswerSynthesizer(llm_service, config=settings.chat)


@pytest.fixture
def conversation_store():
    return ConversationStore()


@pytest.fixture
def orchestrator(embedding_service, retrieval_engine, synthesizer, conversation_store, faq_repository, settings):
    return ChatOrchestrator(
        embedding_service,
        retrieval_engine,
        synthesizer,
        conversation_store=conversation_store,
        faq_repository=faq_repository,
        config=settings.chat,
    )


@pytest.fixture
def drain():
    """Drain a ResponseChannel into {event name: [data, ...]}."""
    def collect(channel) -> Dict[str, list]:
        events: Dict[str, list] = {}
        for event in channel:
            events.setdefault(event.name, []).append(event.data)
        return events
    return collect
