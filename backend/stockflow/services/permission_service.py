# Overview: Actor resolution and capability checks at each operation boundary.

"""
WHY: Every workflow operation is performed by an identified user whose role
allows it. Routes authenticate the bearer token and put the user on flask.g;
services resolve the actor from there (or from an explicit actor_id) and
check one capability before touching any data.

Fail closed: unknown, inactive or missing actors are refused.
"""

from __future__ import annotations

from flask import g

from ..extensions import db
from ..models import User, PurchaseOrder
from ..permissions import Role, OWNER_RESTRICTED, capabilities_for
from ..errors import AuthorizationError


def current_actor_id() -> int:
    """Id of the authenticated user for this request."""
    user = getattr(g, "current_user", None)
    if user is None or user.id is None:
        raise AuthorizationError("No authenticated user")
    return user.id


def load_actor(actor_id: int | None) -> User:
    if actor_id is None:
        raise AuthorizationError("No authenticated user")
    user = db.session.get(User, actor_id)
    if user is None:
        raise AuthorizationError(f"User {actor_id} not found")
    if not user.is_active:
        raise AuthorizationError("User account is inactive")
    return user


def has_capability(user: User, capability: str) -> bool:
    return capability in capabilities_for(user.role)


def require_capability(actor_id: int | None, capability: str) -> User:
    """
    Resolve the actor and check it holds ``capability``.

    actor_id=None means "the user authenticated on this request".
    """
    if actor_id is None:
        actor_id = current_actor_id()
    user = load_actor(actor_id)
    if not has_capability(user, capability):
        raise AuthorizationError(f"Role {user.role} lacks {capability}")
    return user


def require_order_capability(actor_id: int | None, capability: str, order: PurchaseOrder) -> User:
    """Capability check that also enforces creator ownership where the table asks for it."""
    user = require_capability(actor_id, capability)
    if (
        capability in OWNER_RESTRICTED
        and user.role != Role.MANAGER
        and order.created_by_user_id != user.id
    ):
        raise AuthorizationError("Only the order creator or a manager may do this")
    return user
