"""
Order status and payment status validators.

Validators answer yes/no; the order service turns a "no" into an HTTP error.
They raise ``ValueError`` only for values outside the closed enums.
"""

from typing import Dict, FrozenSet, List, Optional

from permissions import Action, Role, has_permission
from schemas import OrderStatus, PaymentMethod, PaymentStatus


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Payment states in which the customer has not been charged yet.
UNSETTLED_PAYMENT = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})

TERMINAL_ORDER_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)


def is_valid_order_transition(current, requested) -> bool:
    current = OrderStatus(current)
    requested = OrderStatus(requested)
    return requested in ORDER_TRANSITIONS[current]


def can_update_order_status(role, current, requested, payment_status=PaymentStatus.PENDING) -> bool:
    """Whether ``role`` may move an order from ``current`` to ``requested``.

    A user may only confirm receipt (ready -> completed) of a paid order;
    roles holding ``can_change_order_status`` may take any valid transition.
    """
    current = OrderStatus(current)
    requested = OrderStatus(requested)
    payment_status = PaymentStatus(payment_status)
    role = Role.from_claim(getattr(role, "value", role))

    if not is_valid_order_transition(current, requested):
        return False
    if has_permission(role, Action.CHANGE_ORDER_STATUS):
        return True
    if role is Role.USER:
        return (
            current is OrderStatus.READY
            and requested is OrderStatus.COMPLETED
            and payment_status is PaymentStatus.PAID
        )
    return False


def get_next_possible_statuses(role, current, payment_status=PaymentStatus.PENDING) -> List[OrderStatus]:
    return [
        status
        for status in OrderStatus
        if can_update_order_status(role, current, status, payment_status)
    ]


def can_update_payment_status(
    role,
    payment_method,
    current_status,
    requested_status=None,
    requested_method=None,
    override: bool = False,
) -> bool:
    """Whether ``role`` may apply the requested payment status/method change.

    ``None`` for a requested value means "leave unchanged".
    """
    payment_method = PaymentMethod(payment_method)
    current_status = PaymentStatus(current_status)
    new_status = PaymentStatus(requested_status) if requested_status is not None else current_status
    new_method = PaymentMethod(requested_method) if requested_method is not None else payment_method

    if not has_permission(getattr(role, "value", role), Action.PROCESS_PAYMENTS):
        return False

    status_changes = new_status is not current_status
    method_changes = new_method is not payment_method
    if not status_changes and not method_changes:
        return False
    if override:
        return True

    if status_changes and new_status not in PAYMENT_TRANSITIONS[current_status]:
        return False
    if method_changes and current_status not in UNSETTLED_PAYMENT:
        return False
    # gateway payments are marked paid by the payment processor
    if new_method is PaymentMethod.ONLINE and new_status is PaymentStatus.PAID and status_changes:
        return False
    return True


def initial_payment_status(method) -> PaymentStatus:
    """Online orders are paid at checkout; cash and mobile money wait for admin confirmation."""
    if PaymentMethod(method) is PaymentMethod.ONLINE:
        return PaymentStatus.PAID
    return PaymentStatus.PENDING


def stage_timestamp_field(status) -> Optional[str]:
    return {
        OrderStatus.CONFIRMED: "confirmed_at",
        OrderStatus.READY: "ready_at",
        OrderStatus.COMPLETED: "completed_at",
        OrderStatus.CANCELLED: "cancelled_at",
    }.get(OrderStatus(status))
