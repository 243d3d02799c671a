"""
Authorization Module

Role and tenant policy for knowledge-management operations.

Rules:
- SUPER_ADMIN may do anything in any tenant
- Every other role acts only inside its own tenant
- ADMIN and TENANT_ADMIN may read and change FAQs and documents
- USER and TENANT_USER are read-only
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from support_rag.exceptions import AuthorizationError

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    TENANT_USER = "TENANT_USER"


class Action(str, Enum):
    READ_KNOWLEDGE = "READ_KNOWLEDGE"
    MANAGE_FAQS = "MANAGE_FAQS"
    MANAGE_DOCUMENTS = "MANAGE_DOCUMENTS"
    VIEW_CONVERSATIONS = "VIEW_CONVERSATIONS"


READ_ONLY_ACTIONS = {Action.READ_KNOWLEDGE, Action.VIEW_CONVERSATIONS}
ADMIN_ROLES = {UserRole.ADMIN, UserRole.TENANT_ADMIN}


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""
    role: UserRole
    tenant_id: Optional[str] = None
    email: Optional[str] = None


def is_allowed(
    action: Action,
    actor_role: UserRole,
    actor_tenant: Optional[str],
    target_tenant: str,
) -> bool:
    """Decide whether a role in actor_tenant may perform action on target_tenant."""
    if actor_role == UserRole.SUPER_ADMIN:
        return True

    if actor_tenant is None or actor_tenant != target_tenant:
        return False

    if actor_role in ADMIN_ROLES:
        return True

    return action in READ_ONLY_ACTIONS


def authorize(actor: Optional[Actor], action: Action, target_tenant: str) -> None:
    """
    Enforce the policy for an optional actor.

    A missing actor means a trusted internal caller and is always allowed.

    Raises:
        AuthorizationError: If the actor may not perform the action
    """
    if actor is None:
        return

    if not is_allowed(action, actor.role, actor.tenant_id, target_tenant):
        logger.warning(
            f"Denied {action.value} on tenant {target_tenant} "
            f"for {actor.role.value} of tenant {actor.tenant_id}"
        )
        raise AuthorizationError(
            f"{actor.role.value} may not perform {action.value} on tenant {target_tenant}"
        )
