"""
Role-based permission table.

Pure data plus a lookup; every route checks a permission here before it
reaches a status validator.
"""

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    GUEST = "guest"

    @classmethod
    def from_claim(cls, value) -> "Role":
        """Map a token role claim to a Role; anything unknown is a guest."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.GUEST


class Action(str, Enum):
    VIEW_ORDERS = "can_view_orders"
    CREATE_ORDERS = "can_create_orders"
    UPDATE_ORDERS = "can_update_orders"
    CHANGE_ORDER_STATUS = "can_change_order_status"
    PROCESS_PAYMENTS = "can_process_payments"
    DELETE_ORDERS = "can_delete_orders"
    VIEW_QUOTES = "can_view_quotes"
    MANAGE_QUOTES = "can_manage_quotes"
    DELETE_QUOTES = "can_delete_quotes"
    VIEW_PRODUCTS = "can_view_products"
    CREATE_PRODUCTS = "can_create_products"
    UPDATE_PRODUCTS = "can_update_products"
    DELETE_PRODUCTS = "can_delete_products"


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.ADMIN: frozenset(Action),
    Role.USER: frozenset({
        Action.VIEW_ORDERS,
        Action.CREATE_ORDERS,
        Action.VIEW_PRODUCTS,
    }),
    Role.GUEST: frozenset(),
}


def has_permission(role, action) -> bool:
    """True when ``role`` is allowed to perform ``action``.

    Unknown roles have no permissions. An unknown action is a programming
    error and raises ``ValueError``.
    """
    action = Action(action)
    if isinstance(role, Role):
        resolved = role
    else:
        resolved = Role.from_claim(role)
    return action in ROLE_PERMISSIONS.get(resolved, frozenset())


def allowed_actions(role) -> FrozenSet[Action]:
    return ROLE_PERMISSIONS.get(Role.from_claim(getattr(role, "value", role)), frozenset())
