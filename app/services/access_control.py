"""
Access control for orders

Staff may read every order; their writes are further limited by the order state
machine. Customers may read and cancel orders recorded under any of their identity
keys: owner id, patient email or backup account email. All three are compared
before access is refused.
"""

from typing import FrozenSet

from app.auth.auth_handler import Identity
from app.models.order import Order

# Mutating actions on an order
CANCEL = "cancel"
APPROVE = "approve"
DENY = "deny"
ADVANCE = "advance"
ATTACH_REPORT = "attach_report"

STAFF_ACTIONS = frozenset({APPROVE, DENY, ADVANCE, ATTACH_REPORT})
CUSTOMER_ACTIONS = frozenset({CANCEL})


def order_identity_keys(order: Order) -> FrozenSet[str]:
    """Tagged keys under which the order's owner may be recorded"""
    keys = set()
    if order.owner_user_id:
        keys.add(f"id:{order.owner_user_id}")
    for email in (order.patient_email, order.owner_email):
        if email:
            keys.add(f"email:{email.strip().lower()}")
    return frozenset(keys)


def is_owner(order: Order, actor: Identity) -> bool:
    """True when any of the actor's keys appears among the order's keys"""
    matched = order_identity_keys(order) & actor.identity_keys()
    return bool(matched)


def can_access(order: Order, actor: Identity) -> bool:
    """Whether the actor may read the order"""
    if actor.is_staff:
        return True
    return is_owner(order, actor)


def can_mutate(order: Order, actor: Identity, action: str) -> bool:
    """Whether the actor's role and ownership permit an action on the order

    Status prerequisites are not checked here; the state machine does that.
    """
    if actor.is_staff:
        return action in STAFF_ACTIONS
    if action not in CUSTOMER_ACTIONS:
        return False
    return is_owner(order, actor)
