"""
Quotation status rules.

pending -> responded -> accepted | rejected | waiting_customer | negotiation.
Expiry is never written by a sweeper; ``effective_status`` derives it when a
quote is read.
"""

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from permissions import Role
from schemas import QuoteStatus


QUOTE_TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.PENDING: frozenset({QuoteStatus.RESPONDED, QuoteStatus.WAITING_CUSTOMER, QuoteStatus.REJECTED}),
    QuoteStatus.RESPONDED: frozenset({
        QuoteStatus.ACCEPTED,
        QuoteStatus.REJECTED,
        QuoteStatus.WAITING_CUSTOMER,
        QuoteStatus.NEGOTIATION,
    }),
    QuoteStatus.WAITING_CUSTOMER: frozenset({QuoteStatus.RESPONDED, QuoteStatus.NEGOTIATION, QuoteStatus.REJECTED}),
    QuoteStatus.NEGOTIATION: frozenset({QuoteStatus.RESPONDED, QuoteStatus.WAITING_CUSTOMER, QuoteStatus.REJECTED}),
    QuoteStatus.ACCEPTED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
    QuoteStatus.EXPIRED: frozenset(),
}

TERMINAL_QUOTE_STATUSES = frozenset(
    status for status, targets in QUOTE_TRANSITIONS.items() if not targets
)

ADMIN_TARGETS = frozenset({QuoteStatus.RESPONDED, QuoteStatus.WAITING_CUSTOMER, QuoteStatus.NEGOTIATION})
OWNER_TARGETS = frozenset({QuoteStatus.ACCEPTED, QuoteStatus.REJECTED})


def is_valid_quote_transition(current, requested) -> bool:
    return QuoteStatus(requested) in QUOTE_TRANSITIONS[QuoteStatus(current)]


def can_update_quote_status(role, current, requested, is_owner: bool = False) -> bool:
    """Whether the caller may move a quote from ``current`` to ``requested``.

    Only the owning user answers a priced quote (responded -> accepted/rejected).
    Admin moves quotes into responded/waiting_customer/negotiation and may
    decline a request that has not been answered yet.
    """
    current = QuoteStatus(current)
    requested = QuoteStatus(requested)
    role = Role.from_claim(getattr(role, "value", role))

    if not is_valid_quote_transition(current, requested):
        return False
    if role is Role.ADMIN:
        if requested in ADMIN_TARGETS:
            return True
        return requested is QuoteStatus.REJECTED and current is not QuoteStatus.RESPONDED
    if role is Role.USER:
        return is_owner and current is QuoteStatus.RESPONDED and requested in OWNER_TARGETS
    return False


def get_next_possible_quote_statuses(role, current, is_owner: bool = False) -> List[QuoteStatus]:
    return [s for s in QuoteStatus if can_update_quote_status(role, current, s, is_owner)]


def is_expired(quote: dict, now: datetime) -> bool:
    """An open quote past its deadline.

    A priced quote expires at ``valid_until``; an unanswered request at
    ``expiration_date``.
    """
    status = QuoteStatus(quote["status"])
    if status in TERMINAL_QUOTE_STATUSES:
        return status is QuoteStatus.EXPIRED
    if status is QuoteStatus.PENDING:
        deadline: Optional[datetime] = quote.get("expiration_date")
    else:
        deadline = quote.get("valid_until")
    return deadline is not None and deadline <= now


def effective_status(quote: dict, now: datetime) -> QuoteStatus:
    if is_expired(quote, now):
        return QuoteStatus.EXPIRED
    return QuoteStatus(quote["status"])
