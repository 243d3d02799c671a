"""
Embedding Service Module

Provides an abstraction layer for embedding generation, supporting both:
- Local: Sentence Transformers (all-MiniLM-L6-v2) - Free, no API key needed
- Cloud: OpenAI (text-embedding-3-small) - Requires API key

Contract:
- embed(text) returns a vector of the configured dimension
- Blank text returns an empty vector without calling the provider
- Provider failures surface as ProviderError
- Identical text yields identical vectors, so results are cached

Embedding Dimensions:
- all-MiniLM-L6-v2: 384 dimensions
- all-mpnet-base-v2: 768 dimensions
- text-embedding-3-small: 1536 dimensions

Wire format:
    Vectors crossing a text boundary are written as "[v0,v1,...,vn]".
"""

import hashlib
import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

import numpy as np

from config.settings import get_settings, EmbeddingConfig
from support_rag.cache import create_cache
from support_rag.exceptions import ProviderError, ValidationError

# Configure logging
logger = logging.getLogger(__name__)


class BaseEmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    All embedding providers must implement:
    - embed_text: Embed a single text string
    - embed_batch: Embed multiple texts efficiently
    - dimension: Return the embedding dimension
    """

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts efficiently.

        Args:
            texts: List of input texts

        Returns:
            List of embedding vectors
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""
        pass


class LocalEmbeddingProvider(BaseEmbeddingProvider):
    """
    Local embedding provider using Sentence Transformers.

    Models:
    - all-MiniLM-L6-v2: Fast, 384 dims (default)
    - all-mpnet-base-v2: Better quality, 768 dims
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """
        Initialize the local embedding provider.

        Args:
            model_name: Name of the sentence-transformers model
        """
        self._model_name = model_name
        self._model = None
        self._dimension = None

        logger.info(f"Initializing LocalEmbeddingProvider with model: {model_name}")

    def _load_model(self):
        """Lazy load the model (only when first needed)."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers is required for local embeddings. "
                    "Install with: pip install sentence-transformers"
                )

            if hf_token := os.getenv("HF_TOKEN"):
                from huggingface_hub import login
                login(token=hf_token)

            logger.info(f"Loading sentence-transformers model: {self._model_name}")
            self._model = SentenceTransformer(self._model_name)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Model loaded. Embedding dimension: {self._dimension}")

    def embed_text(self, text: str) -> List[float]:
        self._load_model()

        # Sentence transformers returns numpy array
        embedding = self._model.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self._load_model()

        if not texts:
            return []

        logger.debug(f"Embedding batch of {len(texts)} texts")

        embeddings = self._model.encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=len(texts) > 10,
            batch_size=32,
        )

        return embeddings.tolist()

    @property
    def dimension(self) -> int:
        """Return embedding dimension."""
        self._load_model()
        return self._dimension

    @property
    def model_name(self) -> str:
        """Return model name."""
        return self._model_name


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """
    OpenAI embedding provider using the embeddings API.

    Models:
    - text-embedding-3-small: 1536 dims (cheaper)
    - text-embedding-3-large: 3072 dims (better quality)
    - text-embedding-ada-002: 1536 dims (legacy)
    """

    # Model dimensions mapping
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the OpenAI embedding provider.

        Args:
            model_name: Name of the OpenAI embedding model
            api_key: OpenAI API key (or from environment)
            timeout: Request timeout in seconds
        """
        self._model_name = model_name
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        if model_name not in self.MODEL_DIMENSIONS:
            logger.warning(
                f"Unknown model {model_name}, assuming 1536 dimensions. "
                f"Known models: {list(self.MODEL_DIMENSIONS.keys())}"
            )

        logger.info(f"Initializing OpenAIEmbeddingProvider with model: {model_name}")

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise ImportError(
                    "openai package is required for OpenAI embeddings. "
                    "Install with: pip install openai"
                )

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ProviderError(
                    "OpenAI API key not found. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )

            self._client = OpenAI(api_key=api_key, timeout=self._timeout)
            logger.info("OpenAI client initialized")

        return self._client

    def embed_text(self, text: str) -> List[float]:
        client = self._get_client()

        response = client.embeddings.create(
            input=text,
            model=self._model_name,
        )

        return response.data[0].embedding

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        client = self._get_client()

        logger.debug(f"Embedding batch of {len(texts)} texts via OpenAI")

        # OpenAI supports up to 2048 inputs per request
        batch_size = 100
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]

            response = client.embeddings.create(
                input=batch,
                model=self._model_name,
            )

            # Sort by index to maintain order
            sorted_data = sorted(response.data, key=lambda x: x.index)
            all_embeddings.extend(item.embedding for item in sorted_data)

        return all_embeddings

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self._model_name, 1536)

    @property
    def model_name(self) -> str:
        return self._model_name


class EmbeddingService:
    """
    Main embedding service that provides a unified interface.

    This is the class that other components should use.
    It handles provider selection, caching and error translation.

    Example:
        service = EmbeddingService()  # Uses config
        vector = service.embed("What are your opening hours?")

        # Or inject a provider explicitly
        service = EmbeddingService(backend=MyProvider(), cache=NullCache())
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[EmbeddingConfig] = None,
        backend: Optional[BaseEmbeddingProvider] = None,
        cache=None,
    ):
        """
        Initialize the embedding service.

        Args:
            provider: "local" or "openai" (default from config)
            config: Optional EmbeddingConfig instance
            backend: Pre-built provider (overrides provider/config selection)
            cache: Cache for text -> vector (default built from CacheConfig)
        """
        settings = get_settings()
        self.config = config or settings.embedding
        self._cache = cache if cache is not None else create_cache(settings.cache)

        provider = provider or self.config.provider
        self._provider_name = provider

        if backend is not None:
            self._provider = backend
            self._provider_name = type(backend).__name__
        elif provider == "local":
            self._provider = LocalEmbeddingProvider(
                model_name=self.config.local_model
            )
        elif provider == "openai":
            self._provider = OpenAIEmbeddingProvider(
                model_name=self.config.openai_model,
                api_key=self.config.openai_api_key,
            )
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")

        self._dimension = backend.dimension if backend is not None else self.config.dimension

        logger.info(
            f"EmbeddingService initialized with {self._provider_name} provider, "
            f"dimension={self._dimension}"
        )

    def embed(self, text: Optional[str]) -> List[float]:
        """
        Generate an embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Embedding vector, or [] for blank input (no provider call)

        Raises:
            ProviderError: If the provider call fails or returns a vector
                of the wrong dimension
        """
        if not text or not text.strip():
            logger.warning("Attempted to generate embedding for empty text")
            return []

        key = ("embedding", text_hash(text))
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Embedding cache hit")
            return list(cached)

        try:
            logger.debug(f"Generating embedding for text: {text[:50]}")
            vector = self._provider.embed_text(text)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e}")
            raise ProviderError("Failed to generate embedding") from e

        vector = [float(v) for v in vector]
        self._check_dimension(vector)

        self._cache.set(key, tuple(vector))
        return vector

    def embed_query(self, query: str) -> List[float]:
        """Semantic alias for embed(), used when embedding user questions."""
        return self.embed(query)

    def embed_faq(
        self,
        question: str,
        answer: str,
        tags: Optional[Iterable[str]] = None,
    ) -> List[float]:
        """
        Embed an FAQ entry.

        Question, answer and tags are combined for a richer semantic
        representation than the question alone.
        """
        return self.embed(faq_embedding_text(question, answer, tags))

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, one cached call per text."""
        return [self.embed(text) for text in texts]

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self._dimension:
            raise ProviderError(
                f"Provider returned {len(vector)}-dim vector, "
                f"expected {self._dimension}"
            )

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        return self._provider_name


def faq_embedding_text(
    question: str,
    answer: str,
    tags: Optional[Iterable[str]] = None,
) -> str:
    text = f"Question: {question}\nAnswer: {answer}"
    tags = sorted(tags or [])
    if tags:
        text += "\nTags: " + ", ".join(tags)
    return text


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def vector_hash(vector: Sequence[float]) -> str:
    """Content hash of a vector, stable for equal float32 values."""
    data = np.asarray(vector, dtype=np.float32).tobytes()
    return hashlib.sha256(data).hexdigest()


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Returns:
        Similarity score between -1 and 1 (1 = identical)
    """
    arr1 = np.asarray(vec1, dtype=np.float64)
    arr2 = np.asarray(vec2, dtype=np.float64)

    norm1 = np.linalg.norm(arr1)
    norm2 = np.linalg.norm(arr2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(arr1, arr2) / (norm1 * norm2))


def cosine_distance(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine distance in [0, 2] (0 = same direction, 2 = opposite).
    """
    distance = 1.0 - cosine_similarity(vec1, vec2)
    return min(max(distance, 0.0), 2.0)


def format_vector(vector: Sequence[float]) -> str:
    """Serialize a vector as "[v0,v1,...,vn]"."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def parse_vector(text: str) -> List[float]:
    """
    Parse the "[v0,v1,...,vn]" wire representation.

    Raises:
        ValidationError: If the text is not a bracketed number list
    """
    text = text.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ValidationError(f"Malformed vector literal: {text[:40]!r}")

    body = text[1:-1].strip()
    if not body:
        return []

    try:
        return [float(part) for part in body.split(",")]
    except ValueError as e:
        raise ValidationError(f"Malformed vector literal: {text[:40]!r}") from e
