"""
Exception taxonomy for the support assistant.

- ValidationError: malformed or missing input, raised before any side effect
- ProviderError: embedding or generation provider call failed
- GenerationError: the generative model failed or timed out
- NotFoundError: referenced conversation, message or document does not exist
- IngestionError: extraction, chunking or storage failed while ingesting
- AuthorizationError: actor is not allowed to perform an action
"""


class SupportRAGError(Exception):
    """Base class for all errors raised by the support assistant."""


class ValidationError(SupportRAGError):
    """Input was malformed or a required field is missing."""


class ProviderError(SupportRAGError):
    """An external model provider call failed (network, timeout, quota)."""


class GenerationError(ProviderError):
    """The generative model failed to produce an answer."""


class NotFoundError(SupportRAGError):
    """A referenced conversation, message or document does not exist for the tenant."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class IngestionError(SupportRAGError):
    """Document ingestion failed; recorded on the document, never retried."""


class AuthorizationError(SupportRAGError):
    """The acting user may not perform the requested action."""
