"""
LLM Service Module

Provides an abstraction layer for Large Language Model providers:
- Local: Ollama (Llama 3, Mistral, etc.) - Free, runs locally
- Cloud: OpenAI (GPT-4o family) - Requires API key
- Cloud: Google Gemini - Requires API key
- Cloud: Mistral AI - Requires API key

Every provider supports two modes:
- generate: blocks until the full answer is produced
- generate_stream: yields text fragments as the provider produces them

Usage:
    llm = LLMService(provider="ollama")
    response = llm.generate("What are your opening hours?")

    for fragment in llm.generate_stream("What are your opening hours?"):
        print(fragment, end="")
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

# google-genai SDK
from google import genai
from google.genai import types

from config.settings import get_settings, LLMConfig
from support_rag.exceptions import GenerationError

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """
    Standardized response from LLM providers.

    Attributes:
        content: The generated text response
        model: Model name used for generation
        usage: Token usage statistics (if available)
        finish_reason: Why generation stopped
    """
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    def __str__(self) -> str:
        return self.content


def _build_messages(prompt: str, system_prompt: Optional[str]) -> list:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    All providers must implement:
    - generate: Generate text from a prompt
    - generate_stream: Yield text fragments as they arrive
    """

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: User prompt/question
            system_prompt: Optional system instructions
            temperature: Creativity (0-1, lower = more deterministic)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse object
        """
        pass

    @abstractmethod
    def generate_stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """Yield non-empty text fragments in generation order."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name."""
        pass


class OllamaProvider(BaseLLMProvider):
    """
    Ollama provider for local LLM inference.

    Requirements:
    - Ollama installed: https://ollama.ai
    - Model pulled: ollama pull llama3
    """

    def __init__(
        self,
        model: str = "llama3",
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
    ):
        """
        Initialize Ollama provider.

        Args:
            model: Ollama model name
            base_url: Ollama server URL
            timeout: Request timeout in seconds
        """
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OllamaProvider: model={model}, url={base_url}")

    def _get_client(self):
        """Get or create Ollama client."""
        if self._client is None:
            try:
                import ollama
                self._client = ollama.Client(host=self._base_url, timeout=self._timeout)
                logger.info("Ollama client initialized")
            except ImportError:
                raise ImportError(
                    "ollama package required. Install with: pip install ollama"
                )
        return self._client

    @staticmethod
    def _options(temperature: float, max_tokens: Optional[int]) -> dict:
        options = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens
        return options

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None) -> LLMResponse:
        """Generate response using Ollama."""
        client = self._get_client()

        try:
            response = client.chat(
                model=self._model,
                messages=_build_messages(prompt, system_prompt),
                options=self._options(temperature, max_tokens),
            )

            return LLMResponse(
                content=response["message"]["content"],
                model=self._model,
                usage={
                    "prompt_tokens": response.get("prompt_eval_count", 0),
                    "completion_tokens": response.get("eval_count", 0),
                },
                finish_reason="stop",
            )
        except Exception as e:
            logger.error(f"Ollama generation error: {e}")
            raise

    def generate_stream(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        client = self._get_client()

        stream = client.chat(
            model=self._model,
            messages=_build_messages(prompt, system_prompt),
            options=self._options(temperature, max_tokens),
            stream=True,
        )
        for chunk in stream:
            content = chunk["message"]["content"]
            if content:
                yield content

    @property
    def model_name(self) -> str:
        return self._model


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI provider for GPT models.

    Models:
    - gpt-4o-mini: Fast, cost-effective (default)
    - gpt-4o: Most capable
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize OpenAI provider.

        Args:
            model: OpenAI model name
            api_key: API key (or from environment)
            timeout: Request timeout in seconds
        """
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OpenAIProvider: model={model}")

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import OpenAI

                api_key = self._api_key or os.getenv("OPENAI_API_KEY")
                if not api_key:
                    settings = get_settings()
                    api_key = settings.llm.openai_api_key

                if not api_key:
                    raise ValueError(
                        "OpenAI API key not found. Set OPENAI_API_KEY environment variable."
                    )

                self._client = OpenAI(api_key=api_key, timeout=self._timeout)
                logger.info("OpenAI client initialized")

            except ImportError:
                raise ImportError(
                    "openai package required. Install with: pip install openai"
                )
        return self._client

    def _request(self, prompt, system_prompt, temperature, max_tokens) -> dict:
        kwargs = {
            "model": self._model,
            "messages": _build_messages(prompt, system_prompt),
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        return kwargs

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None) -> LLMResponse:
        """Generate response using OpenAI."""
        client = self._get_client()

        try:
            response = client.chat.completions.create(
                **self._request(prompt, system_prompt, temperature, max_tokens)
            )

            choice = response.choices[0]
            return LLMResponse(
                content=choice.message.content,
                model=response.model,
                usage={
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                } if response.usage else None,
                finish_reason=choice.finish_reason,
            )
        except Exception as e:
            logger.error(f"OpenAI generation error: {e}")
            raise

    def generate_stream(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        client = self._get_client()

        stream = client.chat.completions.create(
            stream=True,
            **self._request(prompt, system_prompt, temperature, max_tokens),
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content

    @property
    def model_name(self) -> str:
        return self._model


class GeminiProvider(BaseLLMProvider):
    """
    Google Gemini provider using the google-genai package.

    Models:
    - gemini-2.0-flash: Latest, fastest, recommended
    - gemini-1.5-pro: More capable, longer context
    """

    def __init__(
        self,
        model: str = "gemini-2.0-flash",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Gemini provider.

        Args:
            model: Gemini model name (e.g., gemini-2.0-flash)
            api_key: API key (or from environment)
            timeout: Request timeout in seconds
        """
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing GeminiProvider: model={model}")

    def _get_client(self):
        """Get or create Gemini client."""
        if self._client is None:
            api_key = self._api_key or os.getenv("GEMINI_API_KEY")
            if not api_key:
                settings = get_settings()
                api_key = settings.llm.gemini_api_key

            if not api_key:
                raise ValueError(
                    "Gemini API key not found. Set GEMINI_API_KEY environment variable."
                )

            self._client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(self._timeout * 1000)),
            )
            logger.info(f"Gemini client initialized with model: {self._model}")
        return self._client

    @staticmethod
    def _config(system_prompt, temperature, max_tokens) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(
            temperature=temperature,
            system_instruction=system_prompt if system_prompt else None,
        )
        if max_tokens:
            config.max_output_tokens = max_tokens
        return config

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None) -> LLMResponse:
        """Generate response using Gemini."""
        client = self._get_client()

        try:
            response = client.models.generate_content(
                model=self._model,
                contents=prompt,
                config=self._config(system_prompt, temperature, max_tokens),
            )

            return LLMResponse(
                content=response.text,
                model=self._model,
                finish_reason="stop",
            )
        except Exception as e:
            logger.error(f"Gemini generation error: {e}")
            raise

    def generate_stream(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        client = self._get_client()

        response_stream = client.models.generate_content_stream(
            model=self._model,
            contents=prompt,
            config=self._config(system_prompt, temperature, max_tokens),
        )
        for chunk in response_stream:
            if chunk.text:
                yield chunk.text

    @property
    def model_name(self) -> str:
        return self._model


class MistralProvider(BaseLLMProvider):
    """
    Mistral AI cloud provider.

    Models:
    - mistral-small-latest: Fast, efficient (recommended for FAQ)
    - mistral-large-latest: Most capable
    """

    def __init__(
        self,
        model: str = "mistral-small-latest",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Mistral provider.

        Args:
            model: Mistral model name
            api_key: API key (or from environment)
            timeout: Request timeout in seconds
        """
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing MistralProvider: model={model}")

    def _get_client(self):
        """Get or create Mistral client."""
        if self._client is None:
            try:
                from mistralai import Mistral

                api_key = self._api_key or os.getenv("MISTRAL_API_KEY")
                if not api_key:
                    settings = get_settings()
                    api_key = settings.llm.mistral_api_key

                if not api_key:
                    raise ValueError(
                        "Mistral API key not found. Set MISTRAL_API_KEY environment variable."
                    )

                self._client = Mistral(api_key=api_key, timeout_ms=int(self._timeout * 1000))
                logger.info(f"Mistral client initialized with model: {self._model}")

            except ImportError:
                raise ImportError(
                    "mistralai package required. "
                    "Install with: pip install mistralai"
                )
        return self._client

    def generate(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None) -> LLMResponse:
        """Generate response using Mistral."""
        client = self._get_client()

        try:
            response = client.chat.complete(
                model=self._model,
                messages=_build_messages(prompt, system_prompt),
                temperature=temperature,
                max_tokens=max_tokens,
            )

            choice = response.choices[0]
            return LLMResponse(
                content=choice.message.content,
                model=self._model,
                usage={
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                } if response.usage else None,
                finish_reason=choice.finish_reason,
            )
        except Exception as e:
            logger.error(f"Mistral generation error: {e}")
            raise

    def generate_stream(self, prompt, system_prompt=None, temperature=0.3, max_tokens=None):
        client = self._get_client()

        stream = client.chat.stream(
            model=self._model,
            messages=_build_messages(prompt, system_prompt),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        for event in stream:
            content = event.data.choices[0].delta.content
            if content:
                yield content

    @property
    def model_name(self) -> str:
        return self._model


class LLMService:
    """
    Main LLM Service with unified interface.

    This is the class that other components should use.
    It handles provider selection based on configuration and translates
    provider failures into GenerationError.

    Example:
        # Using default provider from config
        llm = LLMService()
        response = llm.generate("What is your refund policy?")

        # Specify provider
        llm = LLMService(provider="gemini")

        # Inject a provider (tests)
        llm = LLMService(backend=FakeLLMProvider())
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[LLMConfig] = None,
        backend: Optional[BaseLLMProvider] = None,
    ):
        """
        Initialize the LLM service.

        Args:
            provider: "ollama", "openai", "gemini", or "mistral" (default from config)
            config: Optional LLMConfig instance
            backend: Pre-built provider (overrides provider/config selection)
        """
        settings = get_settings()
        self.config = config or settings.llm

        # Determine provider
        provider = provider or self.config.provider
        timeout = self.config.request_timeout

        # Initialize the appropriate provider
        if backend is not None:
            self._provider = backend
            provider = type(backend).__name__
        elif provider == "ollama":
            self._provider = OllamaProvider(
                model=self.config.ollama_model,
                base_url=self.config.ollama_base_url,
                timeout=timeout,
            )
        elif provider == "openai":
            self._provider = OpenAIProvider(
                model=self.config.openai_model,
                api_key=self.config.openai_api_key,
                timeout=timeout,
            )
        elif provider == "gemini":
            self._provider = GeminiProvider(
                model=self.config.gemini_model,
                api_key=self.config.gemini_api_key,
                timeout=timeout,
            )
        elif provider == "mistral":
            self._provider = MistralProvider(
                model=self.config.mistral_model,
                api_key=self.config.mistral_api_key,
                timeout=timeout,
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        self._provider_name = provider
        logger.info(f"LLMService initialized with {provider} provider")

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: User prompt/question
            system_prompt: Optional system instructions
            temperature: Creativity (default from config)
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse object

        Raises:
            GenerationError: If the provider fails or times out
        """
        try:
            return self._provider.generate(
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=self._temperature(temperature),
                max_tokens=max_tokens,
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"{self._provider_name} generation failed") from e

    def generate_stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """
        Stream a response from the LLM, one fragment at a time.

        Raises:
            GenerationError: If the provider fails before or during the stream
        """
        try:
            yield from self._provider.generate_stream(
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=self._temperature(temperature),
                max_tokens=max_tokens,
            )
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"{self._provider_name} streaming error: {e}")
            raise GenerationError(f"{self._provider_name} streaming failed") from e

    def _temperature(self, temperature: Optional[float]) -> float:
        return self.config.temperature if temperature is None else temperature

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return self._provider_name
