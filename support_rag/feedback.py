"""
Feedback Module

Customer ratings of assistant answers. A message carries at most one rating;
rating it again replaces the earlier rating and comment.
"""

import logging
import threading
from itertools import count
from typing import Dict, List, Optional, Tuple, Union

from support_rag.exceptions import NotFoundError, ValidationError
from support_rag.memory import ConversationStore
from support_rag.models import FeedbackType, MessageFeedback, MessageRole, utcnow

logger = logging.getLogger(__name__)


def _coerce_feedback_type(value: Union[str, FeedbackType]) -> FeedbackType:
    try:
        return FeedbackType(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"Unsupported feedback type: {value}")


class FeedbackService:
    """
    Record and look up feedback on assistant messages.

    Example:
        service = FeedbackService(conversation_store)
        service.submit_feedback("acme", message_id, "HELPFUL")
        service.submit_feedback("acme", message_id, "NOT_HELPFUL", comment="Outdated")
    """

    def __init__(self, conversation_store: ConversationStore):
        self.conversation_store = conversation_store
        self._feedback: Dict[Tuple[str, int], MessageFeedback] = {}
        self._ids = count(1)
        self._lock = threading.Lock()

    def submit_feedback(
        self,
        tenant_id: str,
        message_id: int,
        feedback_type: Union[str, FeedbackType],
        comment: Optional[str] = None,
    ) -> MessageFeedback:
        """
        Create or update the rating of an assistant message.

        Raises:
            ValidationError: Unknown feedback type, or the message is a user turn
            NotFoundError: If the tenant has no such message
        """
        feedback_type = _coerce_feedback_type(feedback_type)
        logger.info(
            f"Submitting feedback for messageId: {message_id}, "
            f"type: {feedback_type.value}, tenant: {tenant_id}"
        )

        message = self.conversation_store.find_message(tenant_id, message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        if message.role != MessageRole.ASSISTANT:
            raise ValidationError("Only assistant messages can be rated")

        comment = comment.strip() if comment and comment.strip() else None

        with self._lock:
            feedback = self._feedback.get((tenant_id, message_id))
            if feedback is not None:
                feedback.feedback_type = feedback_type
                feedback.comment = comment
                feedback.updated_at = utcnow()
                logger.info(f"Updated existing feedback id: {feedback.id}")
            else:
                feedback = MessageFeedback(
                    tenant_id=tenant_id,
                    message_id=message_id,
                    feedback_type=feedback_type,
                    comment=comment,
                    id=next(self._ids),
                )
                self._feedback[(tenant_id, message_id)] = feedback
                logger.info(f"Created new feedback for message: {message_id}")

        return feedback

    def get_feedback(self, tenant_id: str, message_id: int) -> Optional[MessageFeedback]:
        with self._lock:
            return self._feedback.get((tenant_id, message_id))

    def has_feedback(self, tenant_id: str, message_id: int) -> bool:
        return self.get_feedback(tenant_id, message_id) is not None

    def list_feedback(self, tenant_id: str) -> List[MessageFeedback]:
        """Tenant's feedback, oldest first."""
        with self._lock:
            items = [f for (t, _), f in self._feedback.items() if t == tenant_id]
        return sorted(items, key=lambda f: f.id)
