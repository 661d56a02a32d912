"""
Database Schemas for the Storefront API

Each document model maps to a MongoDB collection (Product -> "products",
Category -> "categories", Order -> "orders", Quotation -> "quotes",
Notification -> "notifications").
Request models validate incoming JSON before it reaches the services.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


# -----------------
# Status enums
# -----------------
class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    CASH = "cash"
    MTN = "mtn"
    AIRTEL = "airtel"


class QuoteStatus(str, Enum):
    PENDING = "pending"
    RESPONDED = "responded"
    WAITING_CUSTOMER = "waiting_customer"
    NEGOTIATION = "negotiation"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class NotificationScope(str, Enum):
    PERSONAL = "personal"
    ADMIN = "admin"


# -----------------
# Catalog
# -----------------
class Product(BaseModel):
    """Catalog product schema"""
    title: str = Field(..., min_length=1, description="Product title")
    description: Optional[str] = Field(None, description="Detailed description")
    brand: Optional[str] = Field(None, description="Brand name")
    sku: Optional[str] = Field(None, description="Stock keeping unit")
    categories: List[str] = Field(default_factory=list)
    price: float = Field(..., ge=0, description="Unit price")
    discount_percentage: float = Field(0, ge=0, le=100)
    stock: int = Field(0, ge=0, description="Units in stock")
    minimum_order_quantity: int = Field(1, ge=1)
    availability_status: str = Field("In Stock")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    thumbnail: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    featured: bool = Field(False, description="Showcase on home page")
    # SEO
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    slug: Optional[str] = None


class ProductOut(Product):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Category(BaseModel):
    """Catalog category schema; products reference categories by name"""
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", description="URL slug")
    description: str = Field(..., min_length=1)
    image: Optional[str] = Field(None, description="Image URL")

    @field_validator("name", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CategoryOut(Category):
    id: str
    product_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# -----------------
# Orders
# -----------------
class OrderItem(BaseModel):
    product_id: Optional[str] = Field(None, description="Catalog product id; null for custom quote lines")
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    thumbnail: Optional[str] = None
    sku: Optional[str] = None


class Address(BaseModel):
    address: str = Field(..., min_length=1, description="Local address / meeting point")


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    previous_status: Optional[OrderStatus] = None
    changed_by: str
    changed_by_role: str
    timestamp: datetime
    note: Optional[str] = None


class Order(BaseModel):
    id: str
    user_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    order_address: Address
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    quote_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    items: List[CartLine] = Field(default_factory=list)
    quote_id: Optional[str] = Field(None, description="Accepted quote to order at quoted prices")
    customer_name: Optional[str] = None
    order_address: Address
    payment_method: PaymentMethod
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=500)


class PaymentUpdate(BaseModel):
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    note: Optional[str] = Field(None, max_length=500)
    override: bool = Field(False, description="Admin override of the payment graph")


class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


# -----------------
# Quotations
# -----------------
class QuoteLine(BaseModel):
    product_id: Optional[str] = Field(None, description="Null means a custom/free-text product")
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    total_price: Optional[float] = Field(None, ge=0)
    note: Optional[str] = None


class QuoteMessage(BaseModel):
    sender: str
    message: str
    timestamp: datetime


class Quotation(BaseModel):
    id: str
    user_id: str
    email: str
    phone: Optional[str] = None
    customer_name: Optional[str] = None
    products: List[QuoteLine]
    subtotal: float = 0
    discount: float = 0
    delivery_fee: float = 0
    final_amount: float = 0
    status: QuoteStatus
    notes: Optional[str] = None
    admin_note: Optional[str] = None
    expiration_date: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    notified: bool = False
    viewed: bool = False
    attachments: List[str] = Field(default_factory=list)
    messages: List[QuoteMessage] = Field(default_factory=list)
    order_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class QuoteLineRequest(BaseModel):
    product_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class QuoteCreateRequest(BaseModel):
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=r"^\+?[\d\s\-()]{7,}$")
    customer_name: Optional[str] = None
    products: List[QuoteLineRequest] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)
    attachments: List[str] = Field(default_factory=list)


class QuoteLineEdit(BaseModel):
    index: int = Field(..., ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    note: Optional[str] = None


class QuoteEditRequest(BaseModel):
    """Admin edit of a quotation; any pricing field triggers recomputation."""
    lines: List[QuoteLineEdit] = Field(default_factory=list)
    discount: Optional[float] = Field(None, ge=0)
    delivery_fee: Optional[float] = Field(None, ge=0)
    admin_note: Optional[str] = None
    status: Optional[QuoteStatus] = None
    valid_until: Optional[datetime] = None


class QuoteEditResult(BaseModel):
    quote: Dict[str, Any]
    warnings: List[str] = Field(default_factory=list)


class QuoteMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message is required")
        return v


# -----------------
# Notifications
# -----------------
class Notification(BaseModel):
    id: str
    recipient_id: str
    recipient_role: str
    scope: NotificationScope = NotificationScope.PERSONAL
    type: str
    title: str
    message: str
    url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    is_read: bool = False
    created_at: datetime
    read_at: Optional[datetime] = None
