"""
Access Guard Module

Ownership predicates for ledger operations. Mutations and listings refuse a
non-owner with ForbiddenError; single-transaction lookups hide foreign rows
behind NotFoundError so ids cannot be probed.
"""

from typing import Optional

from .errors import ForbiddenError, NotFoundError


def owns(actor_id: str, owner_id: Optional[str]) -> bool:
    """True when the actor is the owner"""
    return owner_id is not None and actor_id == owner_id


def require_owner(actor_id: str, owner_id: Optional[str], message: str) -> None:
    """
    Raises:
        ForbiddenError: If the actor does not own the resource
    """
    if not owns(actor_id, owner_id):
        raise ForbiddenError(message)


def can_view_transaction(actor_id: str, from_owner_id: Optional[str],
                         to_owner_id: Optional[str]) -> bool:
    """A transaction is visible to the owner of either side"""
    return owns(actor_id, from_owner_id) or owns(actor_id, to_owner_id)


def require_transaction_visible(actor_id: str, from_owner_id: Optional[str],
                                to_owner_id: Optional[str]) -> None:
    """
    Raises:
        NotFoundError: If the actor owns neither side
    """
    if not can_view_transaction(actor_id, from_owner_id, to_owner_id):
        raise NotFoundError("transaction with requested id not found")
