"""
In-app notifications.

Lifecycle services emit ``NotificationEvent``s; the ``NotificationDispatcher``
persists them after the response has been sent (FastAPI background tasks).
Delivery failures are logged and dropped so they never undo the order or
quote change that produced them.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks

from auth import RequestContext
from database import DocumentStore, utcnow
from errors import NotFound
from permissions import Role
from schemas import NotificationScope, OrderStatus, PaymentStatus, QuoteStatus

logger = logging.getLogger(__name__)

COLLECTION = "notifications"
ADMIN_RECIPIENT = "admin"


@dataclass
class NotificationEvent:
    recipient_id: str
    recipient_role: str
    type: str
    title: str
    message: str
    url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    scope: str = NotificationScope.PERSONAL.value

    @classmethod
    def for_admin(cls, type: str, title: str, message: str, url: Optional[str] = None, data=None):
        return cls(
            recipient_id=ADMIN_RECIPIENT,
            recipient_role=Role.ADMIN.value,
            type=type,
            title=title,
            message=message,
            url=url,
            data=data,
            scope=NotificationScope.ADMIN.value,
        )

    @classmethod
    def for_user(cls, user_id: str, type: str, title: str, message: str, url: Optional[str] = None, data=None):
        return cls(
            recipient_id=user_id,
            recipient_role=Role.USER.value,
            type=type,
            title=title,
            message=message,
            url=url,
            data=data,
        )


class NotificationDispatcher:
    """Fire-and-forget delivery of notification events."""

    def __init__(self, store: DocumentStore, background_tasks: Optional[BackgroundTasks] = None):
        self.store = store
        self.background_tasks = background_tasks

    def emit(self, event: NotificationEvent) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(self.deliver, event)
        else:
            self.deliver(event)

    def emit_all(self, events: List[NotificationEvent]) -> None:
        for event in events:
            self.emit(event)

    def deliver(self, event: NotificationEvent) -> Optional[str]:
        doc = asdict(event)
        doc.update(is_read=False, read_at=None)
        try:
            notification_id = self.store.create_document(COLLECTION, doc)
        except Exception:
            logger.exception("Failed to deliver %s notification to %s", event.type, event.recipient_id)
            return None
        logger.info("Notification %s (%s) delivered to %s", notification_id, event.type, event.recipient_id)
        return notification_id


# -----------------
# Event builders
# -----------------
def _money(amount: float, currency: str) -> str:
    return f"{currency} {float(amount or 0):.2f}"


def order_created_events(order: dict, currency: str) -> List[NotificationEvent]:
    name = order.get("customer_name") or "Customer"
    total = _money(order["total_amount"], currency)
    return [
        NotificationEvent.for_user(
            order["user_id"],
            "ORDER_CREATED",
            "Order Placed Successfully",
            f"Hi {name}, your order #{order['id']} has been placed successfully. Total: {total}",
            url=f"/account/orders/{order['id']}",
        ),
        NotificationEvent.for_admin(
            "ADMIN_NEW_ORDER",
            "New Order Received",
            f"New order #{order['id']} from {name}. Total: {total}",
            url=f"/dashboard/orders/{order['id']}",
        ),
    ]


_ORDER_STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: ("ORDER_CONFIRMED", "Order Confirmed", "your order #{id} has been confirmed."),
    OrderStatus.READY: ("ORDER_READY", "Order Ready", "your order #{id} is ready for delivery."),
    OrderStatus.COMPLETED: ("ORDER_COMPLETED", "Order Completed", "your order #{id} has been completed. Thank you!"),
    OrderStatus.CANCELLED: ("ORDER_CANCELLED", "Order Cancelled", "your order #{id} has been cancelled."),
}


def order_status_events(order: dict, new_status: OrderStatus, actor: RequestContext) -> List[NotificationEvent]:
    """Notify the counterpart of whoever changed the status."""
    events = []
    url = f"/account/orders/{order['id']}"
    name = order.get("customer_name") or "Customer"
    if actor.is_admin:
        type_, title, text = _ORDER_STATUS_MESSAGES[new_status]
        events.append(
            NotificationEvent.for_user(order["user_id"], type_, title, f"Hi {name}, " + text.format(id=order["id"]), url=url)
        )
    elif new_status is OrderStatus.COMPLETED:
        events.append(
            NotificationEvent.for_admin(
                "ADMIN_ORDER_COMPLETED",
                "Order Completed",
                f"{name} confirmed receipt of order #{order['id']}.",
                url=f"/dashboard/orders/{order['id']}",
            )
        )
    if new_status is OrderStatus.CANCELLED:
        events.append(
            NotificationEvent.for_admin(
                "ADMIN_ORDER_CANCELLED",
                "Order Cancelled",
                f"Order #{order['id']} from {name} was cancelled.",
                url=f"/dashboard/orders/{order['id']}",
            )
        )
    return events


def payment_events(order: dict, new_status: PaymentStatus, currency: str) -> List[NotificationEvent]:
    url = f"/account/orders/{order['id']}"
    total = _money(order["total_amount"], currency)
    if new_status is PaymentStatus.PAID:
        return [NotificationEvent.for_user(
            order["user_id"], "ORDER_PAID", "Payment Received",
            f"Payment of {total} for order #{order['id']} has been confirmed.", url=url,
        )]
    if new_status is PaymentStatus.FAILED:
        return [
            NotificationEvent.for_user(
                order["user_id"], "ORDER_FAILED", "Payment Failed",
                f"Payment for order #{order['id']} could not be confirmed.", url=url,
            ),
            NotificationEvent.for_admin(
                "ADMIN_PAYMENT_FAILED", "Payment Failed",
                f"Payment for order #{order['id']} failed.", url=f"/dashboard/orders/{order['id']}",
            ),
        ]
    if new_status is PaymentStatus.REFUNDED:
        return [NotificationEvent.for_user(
            order["user_id"], "ORDER_REFUNDED", "Order Refunded",
            f"Order #{order['id']} has been refunded ({total}).", url=url,
        )]
    return []


def quote_events(quote: dict, new_status: QuoteStatus, currency: str) -> List[NotificationEvent]:
    quote_id = quote["id"]
    if new_status is QuoteStatus.PENDING:
        return [NotificationEvent.for_admin(
            "QUOTATION_RECEIVED", "New Quotation Request",
            f"New quotation request from {quote['email']}. Quotation ID: {quote_id}",
            url=f"/dashboard/quotes/{quote_id}",
        )]
    if new_status is QuoteStatus.RESPONDED:
        name = quote.get("customer_name") or "Customer"
        return [NotificationEvent.for_user(
            quote["user_id"], "QUOTATION_SENT", "Quotation Response",
            f"Hi {name}, we've prepared a response to your quotation request #{quote_id}. "
            f"Total: {_money(quote['final_amount'], currency)}",
            url=f"/account/quotes/{quote_id}",
        )]
    if new_status in (QuoteStatus.WAITING_CUSTOMER, QuoteStatus.NEGOTIATION):
        return [NotificationEvent.for_user(
            quote["user_id"], "QUOTATION_UPDATED", "Quotation Update",
            f"Your quotation #{quote_id} needs your attention.",
            url=f"/account/quotes/{quote_id}",
        )]
    if new_status in (QuoteStatus.ACCEPTED, QuoteStatus.REJECTED):
        verb = new_status.value
        return [NotificationEvent.for_admin(
            f"QUOTATION_{verb.upper()}", f"Quotation {verb.capitalize()}",
            f"Quotation #{quote_id} was {verb} by {quote['email']}.",
            url=f"/dashboard/quotes/{quote_id}",
        )]
    return []


# -----------------
# Reading and marking
# -----------------
class NotificationService:
    """Notification queries and mutations for their owners."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def _personal_filter(ctx: RequestContext) -> dict:
        return {"recipient_id": {"$in": ctx.recipient_ids}, "scope": NotificationScope.PERSONAL.value}

    @staticmethod
    def _admin_filter() -> dict:
        return {"scope": NotificationScope.ADMIN.value}

    def _owned(self, ctx: RequestContext, notification_id: str) -> dict:
        doc = self.store.get_document(COLLECTION, notification_id)
        if doc is None:
            raise NotFound("Notification not found")
        if doc.get("scope") == NotificationScope.ADMIN.value:
            if not ctx.is_admin:
                raise NotFound("Notification not found")
        elif doc.get("recipient_id") not in ctx.recipient_ids:
            raise NotFound("Notification not found")
        return doc

    def list_personal(self, ctx: RequestContext, unread_only: bool = False, limit: int = 50) -> List[dict]:
        query = self._personal_filter(ctx)
        if unread_only:
            query["is_read"] = False
        return self.store.get_documents(COLLECTION, query, sort=[("created_at", -1)], limit=limit)

    def list_admin(self, unread_only: bool = False, limit: int = 50) -> List[dict]:
        query = self._admin_filter()
        if unread_only:
            query["is_read"] = False
        return self.store.get_documents(COLLECTION, query, sort=[("created_at", -1)], limit=limit)

    def unread_count(self, ctx: RequestContext, scope: NotificationScope = NotificationScope.PERSONAL) -> int:
        query = self._admin_filter() if scope is NotificationScope.ADMIN else self._personal_filter(ctx)
        query["is_read"] = False
        return self.store.count_documents(COLLECTION, query)

    def mark_read(self, ctx: RequestContext, notification_id: str) -> dict:
        self._owned(ctx, notification_id)
        return self.store.update_document(COLLECTION, notification_id, {"is_read": True, "read_at": utcnow()})

    def mark_all_read(self, ctx: RequestContext, scope: NotificationScope = NotificationScope.PERSONAL) -> int:
        query = self._admin_filter() if scope is NotificationScope.ADMIN else self._personal_filter(ctx)
        query["is_read"] = False
        return self.store.update_many(COLLECTION, query, {"is_read": True, "read_at": utcnow()})

    def delete(self, ctx: RequestContext, notification_id: str) -> None:
        self._owned(ctx, notification_id)
        self.store.delete_document(COLLECTION, notification_id)
