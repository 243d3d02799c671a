"""
Configuration settings for the multi-tenant support assistant.

This module handles all configuration management using environment variables.
No hardcoded values - everything is configurable via .env file.
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class EmbeddingConfig:
    """Configuration for embedding models."""

    provider: Literal["local", "openai"] = "openai"
    local_model: str = "all-MiniLM-L6-v2"
    openai_model: str = "text-embedding-3-small"
    openai_api_key: Optional[str] = None

    # Embedding dimensions (depends on model)
    # all-MiniLM-L6-v2: 384
    # text-embedding-3-small: 1536
    @property
    def dimension(self) -> int:
        """Return embedding dimension based on selected model."""
        if self.provider == "local":
            model_dimensions = {
                "all-MiniLM-L6-v2": 384,
                "all-mpnet-base-v2": 768,
                "paraphrase-MiniLM-L6-v2": 384,
            }
            return model_dimensions.get(self.local_model, 384)
        else:
            model_dimensions = {
                "text-embedding-3-small": 1536,
                "text-embedding-3-large": 3072,
                "text-embedding-ada-002": 1536,
            }
            return model_dimensions.get(self.openai_model, 1536)


@dataclass
class LLMConfig:
    """Configuration for LLM providers."""

    provider: Literal["ollama", "openai", "gemini", "mistral"] = "openai"

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    # OpenAI settings
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Gemini settings
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"

    # Mistral settings
    mistral_api_key: Optional[str] = None
    mistral_model: str = "mistral-small-latest"

    temperature: float = 0.3
    request_timeout: float = 60.0  # Seconds


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""

    provider: Literal["memory", "faiss", "mongodb"] = "memory"

    # MongoDB settings
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "support_rag"
    mongodb_collection: str = "knowledge_vectors"
    mongodb_vector_index: str = "vector_index"

    # FAISS settings
    faiss_index_dir: str = "./data/faiss"


@dataclass
class ChunkingConfig:
    """Configuration for document chunking."""

    chunk_size: int = 1000  # Characters per chunk
    chunk_overlap: int = 200  # Overlapping characters between chunks


@dataclass
class RetrievalConfig:
    """Configuration for retrieval settings."""

    max_faq_matches: int = 3
    max_chunk_matches: int = 5
    # Cosine distance cutoff (0 = identical, 2 = opposite). A match is kept
    # only when its distance is strictly below this value.
    max_distance: float = 0.25


@dataclass
class CacheConfig:
    """Configuration for the embedding and retrieval caches."""

    enabled: bool = True
    max_size: int = 10_000
    ttl_seconds: float = 24 * 60 * 60


@dataclass
class ChatConfig:
    """Configuration for the chat orchestrator."""

    history_turns: int = 5  # Previous turns included in the prompt
    confidence_mode: Literal["fixed", "distance"] = "fixed"
    fixed_confidence: float = 0.8
    stream_timeout: float = 60.0  # Overall deadline for a streamed answer
    fallback_message: str = (
        "Sorry, I couldn't find a matching answer in our knowledge base. "
        "I'd be happy to connect you with one of our team members who can help."
    )
    handoff_message: str = (
        "No matching answer found. A team member will get back to you."
    )
    error_message: str = (
        "Sorry, something went wrong while generating the answer. "
        "Please try again or ask to speak with a team member."
    )


@dataclass
class IngestionConfig:
    """Configuration for asynchronous document ingestion."""

    storage_path: str = "./uploads"
    max_workers: int = 2
    url_timeout: float = 10.0
    user_agent: str = "Mozilla/5.0 (compatible; SupportRAG/1.0)"


@dataclass
class Settings:
    """
    Main settings class that aggregates all configurations.

    Usage:
        settings = get_settings()
        print(settings.embedding.provider)
        print(settings.retrieval.max_distance)
    """

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)

    # Paths
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create Settings instance from environment variables.

        This is the primary way to instantiate Settings.
        """
        embedding = EmbeddingConfig(
            provider=os.getenv("EMBEDDING_PROVIDER", "openai"),  # type: ignore
            local_model=os.getenv("LOCAL_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
            openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
        )

        llm = LLMConfig(
            provider=os.getenv("LLM_PROVIDER", "openai"),  # type: ignore
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            mistral_api_key=os.getenv("MISTRAL_API_KEY"),
            mistral_model=os.getenv("MISTRAL_MODEL", "mistral-small-latest"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
            request_timeout=float(os.getenv("LLM_REQUEST_TIMEOUT", "60")),
        )

        vector_store = VectorStoreConfig(
            provider=os.getenv("VECTOR_STORE_PROVIDER", "memory"),  # type: ignore
            mongodb_uri=os.getenv("MONGODB_URI"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "support_rag"),
            mongodb_collection=os.getenv("MONGODB_COLLECTION", "knowledge_vectors"),
            mongodb_vector_index=os.getenv("MONGODB_VECTOR_INDEX", "vector_index"),
            faiss_index_dir=os.getenv("FAISS_INDEX_DIR", "./data/faiss"),
        )

        chunking = ChunkingConfig(
            chunk_size=int(os.getenv("CHUNK_SIZE", "1000")),
            chunk_overlap=int(os.getenv("CHUNK_OVERLAP", "200")),
        )

        retrieval = RetrievalConfig(
            max_faq_matches=int(os.getenv("MAX_FAQ_MATCHES", "3")),
            max_chunk_matches=int(os.getenv("MAX_CHUNK_MATCHES", "5")),
            max_distance=float(os.getenv("MAX_DISTANCE", "0.25")),
        )

        cache = CacheConfig(
            enabled=os.getenv("CACHE_ENABLED", "true").lower() in ("1", "true", "yes"),
            max_size=int(os.getenv("CACHE_MAX_SIZE", "10000")),
            ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", str(24 * 60 * 60))),
        )

        chat = ChatConfig(
            history_turns=int(os.getenv("CHAT_HISTORY_TURNS", "5")),
            confidence_mode=os.getenv("CONFIDENCE_MODE", "fixed"),  # type: ignore
            fixed_confidence=float(os.getenv("FIXED_CONFIDENCE", "0.8")),
            stream_timeout=float(os.getenv("STREAM_TIMEOUT", "60")),
        )

        ingestion = IngestionConfig(
            storage_path=os.getenv("DOCUMENT_STORAGE_PATH", "./uploads"),
            max_workers=int(os.getenv("INGESTION_WORKERS", "2")),
            url_timeout=float(os.getenv("URL_FETCH_TIMEOUT", "10")),
        )

        return cls(
            embedding=embedding,
            llm=llm,
            vector_store=vector_store,
            chunking=chunking,
            retrieval=retrieval,
            cache=cache,
            chat=chat,
            ingestion=ingestion,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Singleton pattern for settings
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the singleton Settings instance.

    Returns:
        Settings: The application settings loaded from environment.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment (useful for testing).

    Returns:
        Settings: Fresh settings instance.
    """
    global _settings
    load_dotenv(override=True)
    _settings = Settings.from_env()
    return _settings
