"""
Conversation Memory Module

Persists chat sessions and their turns, scoped per tenant.

Design Rationale:
- A session id is only meaningful inside its tenant; the same id under two
  tenants refers to two unrelated conversations
- Messages are immutable and appended in strict chronological order
- Thread-safe: every store operation runs under the store lock, and a
  per-session lock lets the orchestrator serialize whole turns

Usage:
    store = ConversationStore()
    conversation, created = store.get_or_create("acme", session_id="abc")
    store.add_message(conversation, MessageRole.USER, "What are your opening hours?")

    history = store.recent_messages(conversation, limit=5)
"""

import logging
import threading
import uuid
from datetime import timedelta
from itertools import count
from typing import Dict, List, Optional, Tuple

from support_rag.exceptions import NotFoundError
from support_rag.models import (
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    utcnow,
)

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    In-process store for conversations and their messages.

    Example:
        store = ConversationStore()

        conversation, _ = store.get_or_create("acme", session_id=None)
        store.add_message(conversation, MessageRole.USER, "Hello!")

        # Full history, oldest first
        messages = store.get_messages("acme", conversation.session_id)

        # Clean up idle sessions
        store.cleanup_old_conversations(max_age_hours=24)
    """

    def __init__(self):
        self._conversations: Dict[Tuple[str, str], Conversation] = {}
        self._messages: Dict[int, List[Message]] = {}
        self._messages_by_id: Dict[int, Message] = {}
        self._session_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._conversation_ids = count(1)
        self._message_ids = count(1)
        self._lock = threading.Lock()

        logger.info("ConversationStore initialized")

    def find(self, tenant_id: str, session_id: Optional[str]) -> Optional[Conversation]:
        """Return the tenant's conversation for a session id, if any."""
        if not session_id:
            return None
        with self._lock:
            return self._conversations.get((tenant_id, session_id))

    def get_or_create(
        self,
        tenant_id: str,
        session_id: Optional[str] = None,
        user_email: Optional[str] = None,
    ) -> Tuple[Conversation, bool]:
        """
        Resolve a session to a conversation.

        An existing conversation of the same tenant is reused. Otherwise a new
        ACTIVE conversation is created, keeping the supplied session id or
        minting a fresh one.

        Returns:
            (conversation, created)
        """
        session_id = session_id.strip() if session_id and session_id.strip() else None

        with self._lock:
            if session_id and (tenant_id, session_id) in self._conversations:
                return self._conversations[(tenant_id, session_id)], False

            conversation = Conversation(
                tenant_id=tenant_id,
                session_id=session_id or str(uuid.uuid4()),
                id=next(self._conversation_ids),
                user_email=user_email,
            )
            self._conversations[(tenant_id, conversation.session_id)] = conversation
            self._messages[conversation.id] = []

        logger.debug(f"Created conversation {conversation.session_id} for tenant {tenant_id}")
        return conversation, True

    def add_message(
        self,
        conversation: Conversation,
        role: MessageRole,
        content: str,
        confidence_score: Optional[float] = None,
        faq_entry_id: Optional[int] = None,
    ) -> Message:
        """Append an immutable turn to the conversation."""
        with self._lock:
            message = Message(
                id=next(self._message_ids),
                conversation_id=conversation.id,
                tenant_id=conversation.tenant_id,
                role=role,
                content=content,
                confidence_score=confidence_score,
                faq_entry_id=faq_entry_id,
            )
            self._messages.setdefault(conversation.id, []).append(message)
            self._messages_by_id[message.id] = message

        logger.debug(f"Added {role.value} message to {conversation.session_id}")
        return message

    def get_messages(self, tenant_id: str, session_id: str) -> List[Message]:
        """
        Get every message of a session, oldest first.

        Raises:
            NotFoundError: If the tenant has no such session
        """
        conversation = self.find(tenant_id, session_id)
        if conversation is None:
            raise NotFoundError("Conversation", session_id)
        with self._lock:
            return list(self._messages.get(conversation.id, []))

    def find_message(self, tenant_id: str, message_id: int) -> Optional[Message]:
        """Return one of the tenant's messages by id, if any."""
        with self._lock:
            message = self._messages_by_id.get(message_id)
        if message is None or message.tenant_id != tenant_id:
            return None
        return message

    def recent_messages(
        self,
        conversation: Conversation,
        limit: int,
        exclude_latest: bool = True,
    ) -> List[Message]:
        """
        Get the last `limit` messages, oldest first.

        With exclude_latest the most recent message (the question being
        answered) is left out.
        """
        with self._lock:
            messages = list(self._messages.get(conversation.id, []))

        if exclude_latest and messages:
            messages = messages[:-1]
        if limit <= 0:
            return []
        return messages[-limit:]

    def set_status(self, conversation: Conversation, status: ConversationStatus) -> None:
        with self._lock:
            conversation.status = status
        logger.info(f"Conversation {conversation.session_id} is now {status.value}")

    def touch(self, conversation: Conversation) -> None:
        """Record activity on the conversation."""
        with self._lock:
            conversation.last_activity_at = utcnow()

    def session_lock(self, tenant_id: str, session_id: str) -> threading.Lock:
        """Lock that serializes turns on one session."""
        with self._lock:
            return self._session_locks.setdefault((tenant_id, session_id), threading.Lock())

    def list_conversations(self, tenant_id: str) -> List[Conversation]:
        with self._lock:
            return [c for (t, _), c in self._conversations.items() if t == tenant_id]

    def cleanup_old_conversations(self, max_age_hours: float = 24) -> int:
        """
        Remove conversations with no recent activity.

        Args:
            max_age_hours: Max hours since last activity

        Returns:
            Number of conversations removed
        """
        cutoff = utcnow() - timedelta(hours=max_age_hours)

        with self._lock:
            stale = [
                key for key, conversation in self._conversations.items()
                if conversation.last_activity_at < cutoff
            ]
            for key in stale:
                conversation = self._conversations.pop(key)
                for message in self._messages.pop(conversation.id, []):
                    self._messages_by_id.pop(message.id, None)
                self._session_locks.pop(key, None)

        if stale:
            logger.info(f"Cleaned up {len(stale)} old conversations")

        return len(stale)

    def __len__(self) -> int:
        """Return number of stored conversations."""
        return len(self._conversations)
