"""
Answer Synthesizer Module

Builds the grounded prompt and turns it into an answer.

Prompt layout (fixed order):
    1. System instruction
    2. Context: FAQ question/answer pairs, then document excerpts, each list
       enumerated from 1
    3. The last N conversation turns (excluding the current question)
    4. The current question, followed by the answer cue

Two delivery modes:
- synthesize: one blocking generation call
- synthesize_stream: yields each text fragment as it arrives, then a final
  SynthesisResult carrying the assembled answer, sources and confidence
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from config.settings import get_settings, ChatConfig
from support_rag.llm_service import LLMService
from support_rag.models import Message, MessageRole, SourceReference
from support_rag.retrieval import RetrievalResult

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful customer service assistant. "
    "Answer questions based on the provided FAQ information. "
    "Be friendly, professional and precise. "
    "If the information is not sufficient, say so honestly."
)


@dataclass
class SynthesisResult:
    """
    Generated answer with its grounding.

    Attributes:
        answer: Full answer text
        sources: FAQ sources first, then document sources
        confidence: Confidence estimate for the answer (0-1)
        metadata: Model name, token usage and similar details
    """
    answer: str
    sources: List[SourceReference]
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class AnswerSynthesizer:
    """
    Prompt construction and generation for matched questions.

    Example:
        synthesizer = AnswerSynthesizer(llm_service)
        result = synthesizer.synthesize(question, retrieval, history)
        print(result.answer, result.confidence)
    """

    def __init__(
        self,
        llm_service: LLMService,
        config: Optional[ChatConfig] = None,
        system_prompt: Optional[str] = None,
    ):
        self.llm_service = llm_service
        self.config = config or get_settings().chat
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

        logger.info(
            f"AnswerSynthesizer initialized: history_turns={self.config.history_turns}, "
            f"confidence_mode={self.config.confidence_mode}"
        )

    def build_context(self, retrieval: RetrievalResult) -> str:
        """Render the enumerated FAQ and document context block."""
        parts = []

        if retrieval.faqs:
            parts.append("Relevant FAQ entries from our knowledge base:\n\n")
            for i, match in enumerate(retrieval.faqs, start=1):
                parts.append(f"{i}. Question: {match.item.question}\n")
                parts.append(f"   Answer: {match.item.answer}\n\n")

        if retrieval.chunks:
            parts.append("Relevant information from our documents:\n\n")
            for i, match in enumerate(retrieval.chunks, start=1):
                parts.append(f"{i}. From document '{match.item.document_title}':\n")
                parts.append(f"   {match.item.content}\n\n")

        return "".join(parts)

    def build_prompt(
        self,
        question: str,
        retrieval: RetrievalResult,
        history: Sequence[Message] = (),
    ) -> str:
        """
        Assemble the full prompt.

        Args:
            question: The customer's current question
            retrieval: Matched FAQs and chunks
            history: Earlier turns, oldest first; only the last
                history_turns are used
        """
        prompt = [self.system_prompt, "\n\n", self.build_context(retrieval), "\n"]

        recent = list(history)[-self.config.history_turns:] if self.config.history_turns > 0 else []
        if recent:
            prompt.append("Previous conversation:\n")
            for message in recent:
                speaker = "Customer" if message.role == MessageRole.USER else "Assistant"
                prompt.append(f"{speaker}: {message.content}\n")
            prompt.append("\n")

        prompt.append(f"Current customer question: {question}\n\n")
        prompt.append("Your answer:")
        return "".join(prompt)

    def sources(self, retrieval: RetrievalResult) -> List[SourceReference]:
        return [SourceReference.from_match(m) for m in retrieval.matches]

    def confidence(self, retrieval: RetrievalResult) -> float:
        """
        Confidence for an answered question.

        "fixed" returns the configured constant; "distance" maps the best
        match's cosine distance d to 1 - d / 2.
        """
        if self.config.confidence_mode == "distance" and retrieval.best_distance is not None:
            return round(1.0 - retrieval.best_distance / 2.0, 4)
        return self.config.fixed_confidence

    def synthesize(
        self,
        question: str,
        retrieval: RetrievalResult,
        history: Sequence[Message] = (),
    ) -> SynthesisResult:
        """
        Generate a complete answer.

        Raises:
            GenerationError: If the model fails or times out
        """
        prompt = self.build_prompt(question, retrieval, history)
        logger.debug(f"Sending prompt to LLM: {prompt[:200]}")

        response = self.llm_service.generate(prompt)
        logger.debug(f"Received response from LLM: {response.content[:100]}")

        return SynthesisResult(
            answer=response.content,
            sources=self.sources(retrieval),
            confidence=self.confidence(retrieval),
            metadata={"model": response.model, "usage": response.usage},
        )

    def synthesize_stream(
        self,
        question: str,
        retrieval: RetrievalResult,
        history: Sequence[Message] = (),
    ) -> Iterator[Union[str, SynthesisResult]]:
        """
        Stream an answer.

        Yields each text fragment as a str, then exactly one SynthesisResult
        whose answer is the concatenation of the fragments.

        Raises:
            GenerationError: If the model fails mid-stream
        """
        prompt = self.build_prompt(question, retrieval, history)
        logger.debug(f"Streaming prompt to LLM: {prompt[:200]}")

        fragments = []
        for fragment in self.llm_service.generate_stream(prompt):
            logger.debug(f"Received token from LLM: [{fragment}]")
            fragments.append(fragment)
            yield fragment

        yield SynthesisResult(
            answer="".join(fragments),
            sources=self.sources(retrieval),
            confidence=self.confidence(retrieval),
            metadata={"model": self.llm_service.model_name},
        )
