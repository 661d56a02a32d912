import logging
import os
import re
from typing import List, Optional, Any

from fastapi import BackgroundTasks, Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from auth import RequestContext, get_context, get_optional_context, require_admin, require_permission
from categories import CategoryService
from config import Settings, get_settings
from database import DocumentStore, get_store
from errors import NotFound, register_error_handlers
from notifications import NotificationDispatcher, NotificationService
from orders import OrderService
from permissions import Action, allowed_actions
from quotes import QuoteService
from schemas import (
    BulkDeleteRequest,
    Category as CategorySchema,
    CategoryOut,
    CheckoutRequest,
    Notification,
    NotificationScope,
    Order,
    OrderStatus,
    OrderStatusUpdate,
    PaymentStatus,
    PaymentUpdate,
    Product as ProductSchema,
    ProductOut,
    QuoteCreateRequest,
    QuoteEditRequest,
    QuoteEditResult,
    QuoteMessageRequest,
    QuoteStatus,
    Quotation,
)

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


# -----------------
# Dependencies
# -----------------
def get_dispatcher(
    background_tasks: BackgroundTasks,
    store: DocumentStore = Depends(get_store),
) -> NotificationDispatcher:
    return NotificationDispatcher(store, background_tasks)


def get_order_service(
    store: DocumentStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings),
) -> OrderService:
    return OrderService(store, dispatcher, config)


def get_quote_service(
    store: DocumentStore = Depends(get_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings),
) -> QuoteService:
    return QuoteService(store, dispatcher, config)


def get_notification_service(store: DocumentStore = Depends(get_store)) -> NotificationService:
    return NotificationService(store)


def get_category_service(store: DocumentStore = Depends(get_store)) -> CategoryService:
    return CategoryService(store)


@app.get("/")
def root():
    return {"name": settings.APP_NAME, "status": "ok"}


@app.get("/test")
def test_database(store: DocumentStore = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": []
    }
    try:
        response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
        response["database_name"] = store.name
        response["collections"] = store.list_collection_names()
        response["database"] = "✅ Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


@app.get("/api/me")
def whoami(ctx: RequestContext = Depends(get_context)):
    return {
        "id": ctx.user_id,
        "email": ctx.email,
        "role": ctx.role.value,
        "permissions": sorted(a.value for a in allowed_actions(ctx.role)),
    }


# -----------------
# Products Endpoints
# -----------------
@app.get("/api/products", response_model=List[ProductOut])
def list_products(
    q: Optional[str] = Query(default=None, description="Search query"),
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: DocumentStore = Depends(get_store),
):
    query: dict[str, Any] = {}
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"sku": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["categories"] = category
    if featured is not None:
        query["featured"] = featured
    return store.get_documents("products", query, sort=[("created_at", -1)], limit=limit, skip=offset)


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(
    payload: ProductSchema,
    store: DocumentStore = Depends(get_store),
    _: RequestContext = Depends(require_permission(Action.CREATE_PRODUCTS)),
):
    new_id = store.create_document("products", payload.model_dump())
    return store.get_document("products", new_id)


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, store: DocumentStore = Depends(get_store)):
    doc = store.get_document("products", product_id)
    if not doc:
        raise NotFound("Product not found")
    return doc


@app.put("/api/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    payload: ProductSchema,
    store: DocumentStore = Depends(get_store),
    _: RequestContext = Depends(require_permission(Action.UPDATE_PRODUCTS)),
):
    res = store.update_document("products", product_id, payload.model_dump())
    if not res:
        raise NotFound("Product not found")
    return res


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    store: DocumentStore = Depends(get_store),
    _: RequestContext = Depends(require_permission(Action.DELETE_PRODUCTS)),
):
    if not store.delete_document("products", product_id):
        raise NotFound("Product not found")
    return {"deleted": True}


@app.post("/api/admin/products/bulk-delete")
def bulk_delete_products(
    payload: BulkDeleteRequest,
    store: DocumentStore = Depends(get_store),
    _: RequestContext = Depends(require_permission(Action.DELETE_PRODUCTS)),
):
    return {"deleted": store.delete_documents("products", payload.ids)}


# -----------------
# Categories Endpoints
# -----------------
@app.get("/api/categories", response_model=List[CategoryOut])
def list_categories(service: CategoryService = Depends(get_category_service)):
    return service.list_categories()


@app.get("/api/admin/categories/search")
def search_categories(
    q: str = "",
    limit: int = Query(default=10, ge=1, le=100),
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    found = service.search(ctx, q, limit=limit)
    return {"categories": [CategoryOut(**c).model_dump(mode="json") for c in found]}


@app.post("/api/admin/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: CategorySchema,
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    return service.create(ctx, payload)


@app.post("/api/admin/categories/bulk-delete")
def bulk_delete_categories(
    payload: BulkDeleteRequest,
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    return {"deleted": service.bulk_delete(ctx, payload.ids)}


@app.get("/api/admin/categories/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: str,
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    return service.get_category(ctx, category_id)


@app.put("/api/admin/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    payload: CategorySchema,
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    return service.update(ctx, category_id, payload)


@app.delete("/api/admin/categories/{category_id}")
def delete_category(
    category_id: str,
    ctx: RequestContext = Depends(get_context),
    service: CategoryService = Depends(get_category_service),
):
    service.delete(ctx, category_id)
    return {"deleted": True}


# --------------
# Orders Endpoints
# --------------
@app.post("/api/orders", response_model=Order, status_code=201)
def create_order(
    payload: CheckoutRequest,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.create_order(ctx, payload)


@app.get("/api/orders", response_model=List[Order])
def list_my_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.list_own(ctx, status=status, limit=limit)


@app.get("/api/orders/{order_id}", response_model=Order)
def get_order(
    order_id: str,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order(ctx, order_id)


@app.get("/api/orders/{order_id}/next-statuses", response_model=List[OrderStatus])
def next_order_statuses(
    order_id: str,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.next_statuses(ctx, order_id)


@app.post("/api/orders/{order_id}/status", response_model=Order)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.update_status(ctx, order_id, payload)


@app.post("/api/orders/{order_id}/payment", response_model=Order)
def update_payment_status(
    order_id: str,
    payload: PaymentUpdate,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.update_payment(ctx, order_id, payload)


@app.get("/api/admin/orders", response_model=List[Order])
def list_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.list_all(ctx, status=status, payment_status=payment_status, limit=limit, offset=offset)


@app.post("/api/admin/orders/bulk-delete")
def bulk_delete_orders(
    payload: BulkDeleteRequest,
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return {"deleted": service.bulk_delete(ctx, payload.ids)}


@app.get("/api/admin/stats")
def admin_stats(
    ctx: RequestContext = Depends(get_context),
    service: OrderService = Depends(get_order_service),
):
    return service.stats(ctx)


# --------------
# Quotes Endpoints
# --------------
@app.post("/api/quotes", response_model=Quotation, status_code=201)
def create_quote(
    payload: QuoteCreateRequest,
    ctx: Optional[RequestContext] = Depends(get_optional_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.create_quote(ctx, payload)


@app.get("/api/quotes", response_model=List[Quotation])
def list_my_quotes(
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.list_own(ctx)


@app.get("/api/quotes/{quote_id}", response_model=Quotation)
def get_quote(
    quote_id: str,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.get_quote(ctx, quote_id)


@app.post("/api/quotes/{quote_id}/accept", response_model=Quotation)
def accept_quote(
    quote_id: str,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.accept(ctx, quote_id)


@app.post("/api/quotes/{quote_id}/reject", response_model=Quotation)
def reject_quote(
    quote_id: str,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.reject(ctx, quote_id)


@app.post("/api/quotes/{quote_id}/messages", response_model=Quotation)
def post_quote_message(
    quote_id: str,
    payload: QuoteMessageRequest,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return service.add_message(ctx, quote_id, payload.message)


@app.get("/api/quotes/{quote_id}/cart")
def quote_cart(
    quote_id: str,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return {"quote_id": quote_id, "items": service.cart_lines(ctx, quote_id)}


@app.get("/api/admin/quotes")
def list_quotes(
    status: Optional[QuoteStatus] = None,
    limit: int = Query(default=20, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    quotes, total = service.list_all(ctx, status=status, limit=limit, offset=offset)
    return {
        "quotes": [Quotation(**q).model_dump(mode="json") for q in quotes],
        "total": total,
        "has_more": total > offset + limit,
    }


@app.get("/api/admin/quotes/{quote_id}", response_model=Quotation)
def admin_get_quote(
    quote_id: str,
    ctx: RequestContext = Depends(require_permission(Action.VIEW_QUOTES)),
    service: QuoteService = Depends(get_quote_service),
):
    return service.get_quote(ctx, quote_id)


@app.put("/api/admin/quotes/{quote_id}", response_model=QuoteEditResult)
def edit_quote(
    quote_id: str,
    payload: QuoteEditRequest,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    quote, warnings = service.edit_quote(ctx, quote_id, payload)
    return {"quote": Quotation(**quote).model_dump(mode="json"), "warnings": warnings}


@app.delete("/api/admin/quotes/{quote_id}")
def delete_quote(
    quote_id: str,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    service.delete(ctx, quote_id)
    return {"deleted": True}


@app.post("/api/admin/quotes/bulk-delete")
def bulk_delete_quotes(
    payload: BulkDeleteRequest,
    ctx: RequestContext = Depends(get_context),
    service: QuoteService = Depends(get_quote_service),
):
    return {"deleted": service.bulk_delete(ctx, payload.ids)}


# --------------------
# Notifications Endpoints
# --------------------
@app.get("/api/notifications", response_model=List[Notification])
def list_notifications(
    unread: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    ctx: RequestContext = Depends(get_context),
    service: NotificationService = Depends(get_notification_service),
):
    return service.list_personal(ctx, unread_only=unread, limit=limit)


@app.get("/api/notifications/unread-count")
def unread_notifications(
    scope: NotificationScope = NotificationScope.PERSONAL,
    ctx: RequestContext = Depends(get_context),
    service: NotificationService = Depends(get_notification_service),
):
    if scope is NotificationScope.ADMIN:
        require_admin(ctx)
    return {"count": service.unread_count(ctx, scope)}


@app.post("/api/notifications/read-all")
def read_all_notifications(
    scope: NotificationScope = NotificationScope.PERSONAL,
    ctx: RequestContext = Depends(get_context),
    service: NotificationService = Depends(get_notification_service),
):
    if scope is NotificationScope.ADMIN:
        require_admin(ctx)
    return {"updated": service.mark_all_read(ctx, scope)}


@app.post("/api/notifications/{notification_id}/read", response_model=Notification)
def read_notification(
    notification_id: str,
    ctx: RequestContext = Depends(get_context),
    service: NotificationService = Depends(get_notification_service),
):
    return service.mark_read(ctx, notification_id)


@app.delete("/api/notifications/{notification_id}")
def delete_notification(
    notification_id: str,
    ctx: RequestContext = Depends(get_context),
    service: NotificationService = Depends(get_notification_service),
):
    service.delete(ctx, notification_id)
    return {"deleted": True}


@app.get("/api/admin/notifications", response_model=List[Notification])
def list_admin_notifications(
    unread: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    ctx: RequestContext = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    return service.list_admin(unread_only=unread, limit=limit)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
