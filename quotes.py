"""
Quotation lifecycle: request, admin pricing, customer answer, ordering.

Every pricing edit goes through ``pricing.calculate_totals`` before it is
written, so stored totals always match the stored lines.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from auth import RequestContext, guest_user_id
from config import Settings
from database import DocumentStore, utcnow
from errors import Forbidden, NotFound, ValidationError
from notifications import NotificationDispatcher, NotificationEvent, quote_events
from permissions import Action
from pricing import calculate_totals, clamp_quantity, find_duplicate_lines, with_line_totals
from quote_status import TERMINAL_QUOTE_STATUSES, can_update_quote_status, effective_status
from schemas import QuoteCreateRequest, QuoteEditRequest, QuoteStatus

logger = logging.getLogger(__name__)

COLLECTION = "quotes"
PRODUCTS = "products"

# Statuses from which a pricing edit answers the customer.
_ANSWERABLE = frozenset({QuoteStatus.PENDING, QuoteStatus.WAITING_CUSTOMER, QuoteStatus.NEGOTIATION})


class QuoteService:
    def __init__(self, store: DocumentStore, dispatcher: NotificationDispatcher, settings: Settings):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings

    # -----------------
    # helpers
    # -----------------
    def _new_quote_id(self, now: datetime) -> str:
        for _ in range(5):
            quote_id = f"QT-{now.year}-{secrets.randbelow(10 ** 6):06d}"
            if self.store.get_document(COLLECTION, quote_id) is None:
                return quote_id
        raise RuntimeError("could not allocate a quotation id")

    @staticmethod
    def is_owner(ctx: Optional[RequestContext], quote: dict) -> bool:
        if ctx is None:
            return False
        if quote.get("user_id") == ctx.user_id:
            return True
        return bool(ctx.email) and quote.get("email") == ctx.email.lower()

    def _load(self, quote_id: str) -> dict:
        quote = self.store.get_document(COLLECTION, quote_id)
        if quote is None:
            raise NotFound("Quote not found")
        return quote

    def _load_visible(self, ctx: RequestContext, quote_id: str) -> dict:
        quote = self._load(quote_id)
        if not (ctx.can(Action.VIEW_QUOTES) or self.is_owner(ctx, quote)):
            raise NotFound("Quote not found")
        return quote

    def view(self, quote: dict, ctx: Optional[RequestContext], now: Optional[datetime] = None) -> dict:
        """Quote as the caller may see it, with expiry applied."""
        out = dict(quote)
        out["status"] = effective_status(quote, now or utcnow()).value
        if ctx is None or not ctx.can(Action.MANAGE_QUOTES):
            out.pop("admin_note", None)
        return out

    # -----------------
    # customer side
    # -----------------
    def create_quote(self, ctx: Optional[RequestContext], payload: QuoteCreateRequest) -> dict:
        duplicates = find_duplicate_lines(payload.products)
        if duplicates:
            raise ValidationError(
                "Duplicate products in quote request",
                errors={"duplicate_indices": sorted(duplicates)},
            )
        for line in payload.products:
            if line.product_id is not None and self.store.get_document(PRODUCTS, line.product_id) is None:
                raise ValidationError(f"Product not found: {line.product_id}")

        now = utcnow()
        email = str(payload.email).lower()
        quote_id = self._new_quote_id(now)
        doc = {
            "user_id": ctx.user_id if ctx else guest_user_id(email),
            "email": email,
            "phone": payload.phone,
            "customer_name": payload.customer_name,
            "products": [
                {
                    "product_id": line.product_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "unit_price": None,
                    "total_price": None,
                    "note": None,
                }
                for line in payload.products
            ],
            "subtotal": 0.0,
            "discount": 0.0,
            "delivery_fee": 0.0,
            "final_amount": 0.0,
            "status": QuoteStatus.PENDING.value,
            "notes": payload.notes,
            "admin_note": None,
            "expiration_date": now + timedelta(days=self.settings.QUOTE_REQUEST_TTL_DAYS),
            "valid_until": None,
            "notified": False,
            "viewed": False,
            "attachments": list(payload.attachments),
            "messages": [],
            "created_at": now,
            "updated_at": now,
        }
        self.store.create_document(COLLECTION, doc, doc_id=quote_id)
        quote = self._load(quote_id)
        logger.info("Quote %s requested with %d lines", quote_id, len(doc["products"]))
        self.dispatcher.emit_all(quote_events(quote, QuoteStatus.PENDING, self.settings.CURRENCY))
        return self.view(quote, ctx, now)

    def list_own(self, ctx: RequestContext) -> List[dict]:
        query = {"$or": [{"user_id": ctx.user_id}]}
        if ctx.email:
            query["$or"].append({"email": ctx.email.lower()})
        docs = self.store.get_documents(COLLECTION, query, sort=[("created_at", -1)])
        now = utcnow()
        return [self.view(d, ctx, now) for d in docs]

    def get_quote(self, ctx: RequestContext, quote_id: str) -> dict:
        quote = self._load_visible(ctx, quote_id)
        if ctx.can(Action.MANAGE_QUOTES) and not quote.get("viewed"):
            quote = self.store.update_document(COLLECTION, quote_id, {"viewed": True})
        return self.view(quote, ctx)

    def accept(self, ctx: RequestContext, quote_id: str) -> dict:
        return self._answer(ctx, quote_id, QuoteStatus.ACCEPTED)

    def reject(self, ctx: RequestContext, quote_id: str) -> dict:
        return self._answer(ctx, quote_id, QuoteStatus.REJECTED)

    def _answer(self, ctx: RequestContext, quote_id: str, target: QuoteStatus) -> dict:
        quote = self._load_visible(ctx, quote_id)
        now = utcnow()
        current = effective_status(quote, now)
        if not can_update_quote_status(ctx.role, current, target, self.is_owner(ctx, quote)):
            raise Forbidden(f"Quote cannot be {target.value} at this status")
        updated = self.store.update_document(
            COLLECTION,
            quote_id,
            {"status": target.value, f"{target.value}_at": now},
        )
        logger.info("Quote %s %s by %s", quote_id, target.value, ctx.user_id)
        self.dispatcher.emit_all(quote_events(updated, target, self.settings.CURRENCY))
        return self.view(updated, ctx, now)

    def add_message(self, ctx: RequestContext, quote_id: str, message: str) -> dict:
        quote = self._load_visible(ctx, quote_id)
        now = utcnow()
        if effective_status(quote, now) in TERMINAL_QUOTE_STATUSES:
            raise Forbidden("Quote is closed")
        sender = "admin" if ctx.can(Action.MANAGE_QUOTES) else "user"
        updated = self.store.update_document(
            COLLECTION,
            quote_id,
            push={"messages": {"sender": sender, "message": message, "timestamp": now}},
        )
        if sender == "admin":
            event = NotificationEvent.for_user(
                quote["user_id"], "QUOTATION_MESSAGE", "New message on your quotation",
                f"You have a new message about quotation #{quote_id}.", url=f"/account/quotes/{quote_id}",
            )
        else:
            event = NotificationEvent.for_admin(
                "QUOTATION_MESSAGE", "New quotation message",
                f"{quote['email']} replied on quotation #{quote_id}.", url=f"/dashboard/quotes/{quote_id}",
            )
        self.dispatcher.emit(event)
        return self.view(updated, ctx, now)

    def cart_lines(self, ctx: RequestContext, quote_id: str) -> List[dict]:
        """Order lines for an accepted quote, priced at the quoted unit price."""
        quote = self._load(quote_id)
        if not self.is_owner(ctx, quote):
            raise NotFound("Quote not found")
        if effective_status(quote, utcnow()) is not QuoteStatus.ACCEPTED:
            raise Forbidden("Only accepted quotes can be ordered")
        if quote.get("order_id"):
            raise Forbidden("Quote has already been ordered")
        lines = []
        for line in quote["products"]:
            product = None
            if line.get("product_id"):
                product = self.store.get_document(PRODUCTS, line["product_id"])
            lines.append({
                "product_id": line.get("product_id"),
                "title": line["name"],
                "price": float(line.get("unit_price") or 0),
                "quantity": int(line["quantity"]),
                "thumbnail": (product or {}).get("thumbnail"),
                "sku": (product or {}).get("sku"),
            })
        return lines

    def mark_ordered(self, quote_id: str, order_id: str) -> None:
        self.store.update_document(COLLECTION, quote_id, {"order_id": order_id})

    # -----------------
    # admin side
    # -----------------
    def list_all(
        self,
        ctx: RequestContext,
        status: Optional[QuoteStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[dict], int]:
        ctx.require(Action.VIEW_QUOTES)
        now = utcnow()
        quotes = [self.view(d, ctx, now) for d in self.store.get_documents(COLLECTION, sort=[("created_at", -1)])]
        if status is not None:
            quotes = [q for q in quotes if q["status"] == status.value]
        return quotes[offset:offset + limit], len(quotes)

    def edit_quote(self, ctx: RequestContext, quote_id: str, payload: QuoteEditRequest) -> Tuple[dict, List[str]]:
        """Admin pricing/notes edit. Returns the updated quote and stock warnings."""
        ctx.require(Action.MANAGE_QUOTES)
        quote = self._load(quote_id)
        now = utcnow()
        current = effective_status(quote, now)
        if current in TERMINAL_QUOTE_STATUSES:
            raise Forbidden(f"Quote is {current.value} and can no longer be edited")

        lines = [dict(line) for line in quote["products"]]
        warnings: List[str] = []
        pricing_touched = False
        for edit in payload.lines:
            if edit.index >= len(lines):
                raise ValidationError(f"No quote line at index {edit.index}")
            line = lines[edit.index]
            if edit.quantity is not None:
                quantity = edit.quantity
                if line.get("product_id"):
                    product = self.store.get_document(PRODUCTS, line["product_id"])
                    stock = product.get("stock") if product else None
                    quantity, warning = clamp_quantity(edit.quantity, stock, line["name"])
                    if quantity < 1:
                        raise ValidationError(f"{line['name']} is out of stock")
                    if warning:
                        warnings.append(warning)
                line["quantity"] = quantity
                pricing_touched = True
            if edit.unit_price is not None:
                line["unit_price"] = float(edit.unit_price)
                pricing_touched = True
            if edit.note is not None:
                line["note"] = edit.note

        discount = quote.get("discount", 0) if payload.discount is None else payload.discount
        delivery_fee = quote.get("delivery_fee", 0) if payload.delivery_fee is None else payload.delivery_fee
        if payload.discount is not None or payload.delivery_fee is not None:
            pricing_touched = True

        lines = with_line_totals(lines)
        totals = calculate_totals(lines, discount, delivery_fee)
        changes = {
            "products": lines,
            "discount": float(discount),
            "delivery_fee": float(delivery_fee),
            "subtotal": totals.subtotal,
            "final_amount": totals.final_amount,
        }

        target = payload.status
        if target is None and pricing_touched and (current in _ANSWERABLE or current is QuoteStatus.RESPONDED):
            # re-pricing a responded quote re-sends it with a fresh validity window
            target = QuoteStatus.RESPONDED
        if target is not None and target is not current:
            if not can_update_quote_status(ctx.role, current, target):
                raise Forbidden(f"Cannot move quote from {current.value} to {target.value}")
            changes["status"] = target.value
        if target is QuoteStatus.RESPONDED:
            if any(line.get("unit_price") is None for line in lines):
                raise ValidationError("Set a unit price on every line before responding")
            changes["notified"] = True

        valid_until = payload.valid_until
        if valid_until is not None and valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)
        if valid_until is None and target is QuoteStatus.RESPONDED:
            valid_until = now + timedelta(days=self.settings.QUOTE_VALIDITY_DAYS)
        if valid_until is not None:
            changes["valid_until"] = valid_until
        if payload.admin_note is not None:
            changes["admin_note"] = payload.admin_note

        updated = self.store.update_document(COLLECTION, quote_id, changes)
        if target is QuoteStatus.REJECTED and current is not QuoteStatus.REJECTED:
            logger.info("Quote %s declined by %s", quote_id, ctx.user_id)
            self.dispatcher.emit(NotificationEvent.for_user(
                quote["user_id"], "QUOTATION_DECLINED", "Quotation Declined",
                f"We are unable to fulfil quotation request #{quote_id}.", url=f"/account/quotes/{quote_id}",
            ))
        elif target is not None and (target is not current or pricing_touched):
            logger.info("Quote %s -> %s (final amount %.2f)", quote_id, target.value, totals.final_amount)
            self.dispatcher.emit_all(quote_events(updated, target, self.settings.CURRENCY))
        return self.view(updated, ctx, now), warnings

    def delete(self, ctx: RequestContext, quote_id: str) -> None:
        ctx.require(Action.DELETE_QUOTES)
        if not self.store.delete_document(COLLECTION, quote_id):
            raise NotFound("Quote not found")

    def bulk_delete(self, ctx: RequestContext, ids: List[str]) -> int:
        ctx.require(Action.DELETE_QUOTES)
        return self.store.delete_documents(COLLECTION, ids)
