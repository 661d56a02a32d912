"""
Order lifecycle: checkout, status changes, payment reconciliation.

Status and payment rules live in ``order_status``; this module applies them,
appends to the status history and emits notifications.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional

from auth import RequestContext
from config import Settings
from database import DocumentStore, new_id, utcnow
from errors import Forbidden, NotFound, ValidationError
from notifications import NotificationDispatcher, order_created_events, order_status_events, payment_events
from order_status import (
    can_update_order_status,
    can_update_payment_status,
    get_next_possible_statuses,
    initial_payment_status,
    stage_timestamp_field,
)
from permissions import Action
from pricing import calculate_totals
from quotes import QuoteService
from schemas import CheckoutRequest, OrderStatus, OrderStatusUpdate, PaymentStatus, PaymentUpdate

logger = logging.getLogger(__name__)

COLLECTION = "orders"
PRODUCTS = "products"


def history_entry(ctx: RequestContext, status, previous_status=None, note: Optional[str] = None) -> dict:
    return {
        "status": OrderStatus(status).value,
        "previous_status": OrderStatus(previous_status).value if previous_status is not None else None,
        "changed_by": ctx.email or ctx.user_id,
        "changed_by_role": ctx.role.value,
        "timestamp": utcnow(),
        "note": note,
    }


class OrderService:
    """Order creation, retrieval and lifecycle changes backed by the document store."""

    def __init__(self, store: DocumentStore, dispatcher: NotificationDispatcher, settings: Settings):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings

    def _load_visible(self, ctx: RequestContext, order_id: str) -> dict:
        order = self.store.get_document(COLLECTION, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.get("user_id") != ctx.user_id and not ctx.can(Action.UPDATE_ORDERS):
            raise NotFound("Order not found")
        return order

    # -----------------
    # checkout
    # -----------------
    def _catalog_items(self, payload: CheckoutRequest) -> List[dict]:
        if not payload.items:
            raise ValidationError("Cart is empty")
        quantities: Dict[str, int] = {}
        for line in payload.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        items = []
        for product_id, quantity in quantities.items():
            product = self.store.get_document(PRODUCTS, product_id)
            if product is None:
                raise ValidationError(f"Product not found: {product_id}")
            items.append({
                "product_id": product_id,
                "title": product["title"],
                "price": float(product["price"]),
                "quantity": quantity,
                "thumbnail": product.get("thumbnail"),
                "sku": product.get("sku"),
            })
        return items

    def _check_stock(self, items: List[dict]) -> None:
        for item in items:
            if not item.get("product_id"):
                continue
            product = self.store.get_document(PRODUCTS, item["product_id"])
            if product is None:
                raise ValidationError(f"Product not found: {item['product_id']}")
            if product.get("stock", 0) < item["quantity"]:
                raise ValidationError(f"Insufficient stock for {product['title']}")

    def _restock(self, items: List[dict]) -> None:
        """Return the quantities of a cancelled order to the catalog."""
        for item in items:
            if item.get("product_id"):
                self.store.update_document(PRODUCTS, item["product_id"], inc={"stock": item["quantity"]})

    def create_order(self, ctx: RequestContext, payload: CheckoutRequest) -> dict:
        ctx.require(Action.CREATE_ORDERS)
        quotes = QuoteService(self.store, self.dispatcher, self.settings)
        if payload.quote_id:
            if payload.items:
                raise ValidationError("Send either cart items or a quote id, not both")
            items = quotes.cart_lines(ctx, payload.quote_id)
        else:
            items = self._catalog_items(payload)
        self._check_stock(items)

        total = calculate_totals(items).subtotal
        order_id = new_id()
        doc = {
            "user_id": ctx.user_id,
            "customer_name": payload.customer_name,
            "customer_email": ctx.email,
            "items": items,
            "total_amount": total,
            "order_address": payload.order_address.model_dump(),
            "payment_method": payload.payment_method.value,
            "payment_status": initial_payment_status(payload.payment_method).value,
            "status": OrderStatus.PENDING.value,
            "status_history": [history_entry(ctx, OrderStatus.PENDING, note="Order placed")],
            "quote_id": payload.quote_id,
            "notes": payload.notes,
        }
        self.store.create_document(COLLECTION, doc, doc_id=order_id)

        for item in items:
            if item.get("product_id"):
                self.store.update_document(PRODUCTS, item["product_id"], inc={"stock": -item["quantity"]})
        if payload.quote_id:
            quotes.mark_ordered(payload.quote_id, order_id)

        order = self.store.get_document(COLLECTION, order_id)
        logger.info("Order %s created: %d items, total %.2f", order_id, len(items), total)
        self.dispatcher.emit_all(order_created_events(order, self.settings.CURRENCY))
        return order

    # -----------------
    # reads
    # -----------------
    def get_order(self, ctx: RequestContext, order_id: str) -> dict:
        ctx.require(Action.VIEW_ORDERS)
        return self._load_visible(ctx, order_id)

    def list_own(self, ctx: RequestContext, status: Optional[OrderStatus] = None, limit: int = 50) -> List[dict]:
        ctx.require(Action.VIEW_ORDERS)
        query = {"user_id": ctx.user_id}
        if status is not None:
            query["status"] = status.value
        return self.store.get_documents(COLLECTION, query, sort=[("created_at", -1)], limit=limit)

    def list_all(
        self,
        ctx: RequestContext,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[dict]:
        ctx.require(Action.UPDATE_ORDERS)
        query = {}
        if status is not None:
            query["status"] = status.value
        if payment_status is not None:
            query["payment_status"] = payment_status.value
        return self.store.get_documents(COLLECTION, query, sort=[("created_at", -1)], limit=limit, skip=offset)

    def next_statuses(self, ctx: RequestContext, order_id: str) -> List[OrderStatus]:
        order = self.get_order(ctx, order_id)
        return get_next_possible_statuses(ctx.role, order["status"], order["payment_status"])

    # -----------------
    # lifecycle
    # -----------------
    def update_status(self, ctx: RequestContext, order_id: str, payload: OrderStatusUpdate) -> dict:
        order = self.get_order(ctx, order_id)
        current = OrderStatus(order["status"])
        requested = payload.status
        if not can_update_order_status(ctx.role, current, requested, order["payment_status"]):
            raise Forbidden(f"Order cannot move from {current.value} to {requested.value}")

        changes = {"status": requested.value, "updated_by": ctx.email or ctx.user_id}
        stage_field = stage_timestamp_field(requested)
        if stage_field:
            changes[stage_field] = utcnow()
        note = payload.note or f"Status updated to {requested.value}"
        updated = self.store.update_document(
            COLLECTION,
            order_id,
            changes,
            push={"status_history": history_entry(ctx, requested, current, note)},
        )
        if requested is OrderStatus.CANCELLED:
            self._restock(order["items"])
        logger.info("Order %s: %s -> %s by %s", order_id, current.value, requested.value, ctx.role.value)
        self.dispatcher.emit_all(order_status_events(updated, requested, ctx))
        return updated

    def update_payment(self, ctx: RequestContext, order_id: str, payload: PaymentUpdate) -> dict:
        ctx.require(Action.PROCESS_PAYMENTS)
        if payload.payment_status is None and payload.payment_method is None:
            raise ValidationError("Nothing to update")
        order = self._load_visible(ctx, order_id)
        if not can_update_payment_status(
            ctx.role,
            order["payment_method"],
            order["payment_status"],
            payload.payment_status,
            payload.payment_method,
            override=payload.override,
        ):
            raise Forbidden("Payment update not allowed for this order")

        changes = {"updated_by": ctx.email or ctx.user_id}
        push = None
        status_changed = (
            payload.payment_status is not None
            and payload.payment_status.value != order["payment_status"]
        )
        if payload.payment_method is not None:
            changes["payment_method"] = payload.payment_method.value
        if status_changed:
            changes["payment_status"] = payload.payment_status.value
            if payload.payment_status is PaymentStatus.PAID:
                changes["paid_at"] = utcnow()
            note = payload.note or f"Payment status updated to {payload.payment_status.value}"
            push = {"status_history": history_entry(ctx, order["status"], order["status"], note)}

        updated = self.store.update_document(COLLECTION, order_id, changes, push=push)
        if status_changed:
            logger.info(
                "Order %s payment: %s -> %s", order_id, order["payment_status"], payload.payment_status.value
            )
            self.dispatcher.emit_all(payment_events(updated, payload.payment_status, self.settings.CURRENCY))
        return updated

    # -----------------
    # admin
    # -----------------
    def bulk_delete(self, ctx: RequestContext, ids: List[str]) -> int:
        ctx.require(Action.DELETE_ORDERS)
        deleted = self.store.delete_documents(COLLECTION, ids)
        logger.info("Bulk deleted %d orders", deleted)
        return deleted

    def stats(self, ctx: RequestContext) -> dict:
        ctx.require(Action.UPDATE_ORDERS)
        orders = self.store.get_documents(COLLECTION)
        by_status = Counter(o["status"] for o in orders)
        by_payment = Counter(o["payment_status"] for o in orders)
        revenue = sum(
            o["total_amount"]
            for o in orders
            if o["payment_status"] == PaymentStatus.PAID.value and o["status"] != OrderStatus.CANCELLED.value
        )
        return {
            "total_orders": len(orders),
            "by_status": {s.value: by_status.get(s.value, 0) for s in OrderStatus},
            "by_payment_status": {s.value: by_payment.get(s.value, 0) for s in PaymentStatus},
            "revenue": revenue,
            "currency": self.settings.CURRENCY,
            "open_quotes": self.store.count_documents(
                "quotes", {"status": {"$in": ["pending", "responded", "waiting_customer", "negotiation"]}}
            ),
        }
