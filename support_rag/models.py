"""
Domain Models

Plain dataclasses for every entity the answering pipeline reads or writes.
Every entity carries a tenant_id; stores never return an entity whose
tenant_id differs from the one the caller asked for.

Entities:
- FaqEntry: authored question/answer pair with a usage counter
- Document / DocumentChunk: ingested source and its embedded fragments
- Conversation / Message: a chat session and its ordered, immutable turns
- MessageFeedback: a customer rating of one assistant message

Derived (never persisted):
- SimilarityMatch: a knowledge item plus its distance to a query vector
- SourceReference: what the caller sees as the grounding of an answer
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class DocumentType(str, Enum):
    PDF = "PDF"
    DOCX = "DOCX"
    TXT = "TXT"
    URL = "URL"


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    HANDED_OFF = "HANDED_OFF"
    CLOSED = "CLOSED"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class SourceType(str, Enum):
    FAQ = "FAQ"
    DOCUMENT = "DOCUMENT"


@dataclass
class FaqEntry:
    """
    An authored FAQ question/answer pair.

    The embedding is derived from question, answer and tags and must be
    regenerated whenever any of them change.
    """

    tenant_id: str
    question: str
    answer: str
    id: Optional[int] = None
    tags: Set[str] = field(default_factory=set)
    is_active: bool = True
    display_order: Optional[int] = None
    usage_count: int = 0
    embedding: Optional[List[float]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "tags": sorted(self.tags),
            "is_active": self.is_active,
            "display_order": self.display_order,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Document:
    """
    An ingested knowledge source (uploaded file or URL).

    chunk_count is only meaningful once status is terminal.
    """

    tenant_id: str
    title: str
    document_type: DocumentType
    id: Optional[int] = None
    status: DocumentStatus = DocumentStatus.PENDING
    source_url: Optional[str] = None
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    chunk_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "source_url": self.source_url,
            "document_type": self.document_type.value,
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class DocumentChunk:
    """A contiguous slice of a document's text with its own embedding."""

    tenant_id: str
    document_id: int
    chunk_index: int
    content: str
    document_title: str = ""
    source_url: Optional[str] = None
    token_count: int = 0
    embedding: Optional[List[float]] = None

    @property
    def item_id(self) -> str:
        return f"{self.document_id}:{self.chunk_index}"


@dataclass
class Conversation:
    """A tenant-scoped chat session."""

    tenant_id: str
    session_id: str
    id: Optional[int] = None
    user_email: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    last_activity_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Message:
    """One immutable turn in a conversation."""

    id: int
    conversation_id: int
    tenant_id: str
    role: MessageRole
    content: str
    confidence_score: Optional[float] = None
    faq_entry_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "confidence_score": self.confidence_score,
            "faq_entry_id": self.faq_entry_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SimilarityMatch:
    """A knowledge item and its cosine distance to the query vector."""

    item: Union[FaqEntry, DocumentChunk]
    distance: float

    @property
    def is_faq(self) -> bool:
        return isinstance(self.item, FaqEntry)


@dataclass
class SourceReference:
    type: SourceType
    title: str
    id: int
    url: Optional[str] = None

    @classmethod
    def from_match(cls, match: SimilarityMatch) -> "SourceReference":
        item = match.item
        if isinstance(item, FaqEntry):
            return cls(type=SourceType.FAQ, title=item.question, id=item.id)
        return cls(
            type=SourceType.DOCUMENT,
            title=f"{item.document_title} (Chunk {item.chunk_index})",
            id=item.document_id,
            url=item.source_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type.value, "title": self.title, "id": self.id}
        if self.url:
            data["url"] = self.url
        return data


@dataclass
class ChatRequest:
    question: str
    session_id: Optional[str] = None
    user_email: Optional[str] = None


@dataclass
class ChatResponse:
    """Answer returned to the caller of a synchronous chat request."""

    session_id: str
    answer: str
    confidence_score: float
    sources: List[SourceReference] = field(default_factory=list)
    handoff_triggered: bool = False
    handoff_message: Optional[str] = None
    message_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "session_id": self.session_id,
            "answer": self.answer,
            "confidence_score": self.confidence_score,
            "sources": [s.to_dict() for s in self.sources],
            "handoff_triggered": self.handoff_triggered,
        }
        if self.handoff_message:
            data["handoff_message"] = self.handoff_message
        if self.message_id is not None:
            data["message_id"] = self.message_id
        return data


class FeedbackType(str, Enum):
    HELPFUL = "HELPFUL"
    NOT_HELPFUL = "NOT_HELPFUL"


@dataclass
class MessageFeedback:
    """A customer's rating of one assistant message; one per message."""

    tenant_id: str
    message_id: int
    feedback_type: FeedbackType
    comment: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "feedback_type": self.feedback_type.value,
            "comment": self.comment,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
