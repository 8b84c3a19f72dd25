"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. Attributes are
snake_case in Python and stored camelCase in the documents
(`productId`, `createdAt`, ...). The collection names are listed in
`COLLECTIONS`.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from logging_config import get_logger

logger = get_logger(__name__)

COLLECTIONS = {
    "products": "products",
    "orders": "orders",
    "users": "users",
    "reviews": "reviews",
    "favorites": "favorites",
    "addresses": "addresses",
    "messages": "messages",
    "cart": "cart",
    "coupons": "coupons",
    "product_variants": "product_variants",
    "return_requests": "return_requests",
    "order_cancellations": "order_cancellations",
}

DEFAULT_SIZES = ["S", "M", "L", "XL"]
DEFAULT_COLORS = ["Black", "White", "Blue"]

OrderStatus = Literal[
    "pending", "confirmed", "packed", "ready_to_ship", "shipped",
    "out_for_delivery", "delivered", "cancelled",
]
DeliveryType = Literal["home_delivery", "store_pickup"]
PaymentMethod = Literal["cash", "card", "online", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes that are already UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class StoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: dict):
        data = {**doc}
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def to_doc(self) -> dict:
        return self.model_dump(by_alias=True, exclude={"id"})

    def to_public(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def parse_documents(model, documents) -> list:
    """Validate raw documents, skipping (and logging) the ones that do not fit."""
    parsed = []
    for doc in documents:
        try:
            parsed.append(model.from_doc(doc))
        except ValidationError as e:
            logger.warning("document_skipped", model=model.__name__, id=str(doc.get("_id")),
                           errors=e.error_count())
    return parsed


# -----------------------------
# Catalog
# -----------------------------

class Product(StoreModel):
    """
    Products collection schema
    Collection: "products"
    """
    name: str = ""
    price: float = 0.0
    type: str = ""
    category: str = Field("", description="Men, Women, Kids, Accessories")
    sub_category: str = Field("", description="e.g. T-Shirts, Jeans")
    brand: str = ""
    material: str = Field("", description="e.g. Cotton, Polyester")
    image_url: str = ""
    images: List[str] = Field(default_factory=list)
    description: str = ""
    sizes: List[str] = Field(default_factory=lambda: list(DEFAULT_SIZES))
    colors: List[str] = Field(default_factory=lambda: list(DEFAULT_COLORS))
    stock: int = 0
    rating: float = 0.0
    review_count: int = 0
    has_variants: bool = False
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)

    @field_validator("sizes", mode="before")
    @classmethod
    def _default_sizes(cls, v):
        return v or list(DEFAULT_SIZES)

    @field_validator("colors", mode="before")
    @classmethod
    def _default_colors(cls, v):
        return v or list(DEFAULT_COLORS)


class ProductVariant(StoreModel):
    product_id: str
    size: str = ""
    color: str = ""
    sku: str = ""
    stock: int = Field(0, ge=0)
    price: float = Field(0.0, ge=0)
    image_url: str = ""
    is_active: bool = True
    reorder_point: int = Field(10, description="Low stock threshold")


class Review(StoreModel):
    product_id: str
    user_id: str
    user_name: str = ""
    rating: int = Field(5, ge=1, le=5)
    comment: str = ""
    created_at: Optional[UtcDatetime] = None
    admin_reply: Optional[str] = None
    replied_at: Optional[UtcDatetime] = None


class Favorite(StoreModel):
    user_id: str
    product_id: str
    created_at: Optional[UtcDatetime] = None


# -----------------------------
# Cart & orders
# -----------------------------

class CartItem(StoreModel):
    """
    Cart collection schema, one document per line
    Collection: "cart"
    """
    product_id: str
    product_name: str = ""
    product_image_url: str = ""
    price: float = Field(0.0, ge=0)
    quantity: int = Field(1, ge=1)
    selected_size: str = ""
    selected_color: str = ""
    user_id: str = ""


class OrderLine(StoreModel):
    """Snapshot of a cart line inside an order. Not validated: stored orders may be partial."""
    product_id: str = ""
    product_name: str = ""
    product_image_url: str = ""
    price: float = 0.0
    quantity: int = 0
    selected_size: str = ""
    selected_color: str = ""


class Address(StoreModel):
    full_name: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    district: str = ""
    ward: str = ""
    is_default: bool = False
    user_id: str = ""


class Order(StoreModel):
    """
    Orders collection schema
    Collection: "orders"
    """
    user_id: str = ""
    items: List[OrderLine] = Field(default_factory=list)
    subtotal: float = 0.0
    shipping_cost: float = 0.0
    tax: float = 0.0
    discount: float = 0.0
    coupon_code: str = ""
    total_amount: float = 0.0
    shipping_address: Address = Field(default_factory=Address)
    delivery_type: DeliveryType = "home_delivery"
    pickup_time: Optional[UtcDatetime] = None
    order_notes: str = ""
    status: OrderStatus = "pending"
    is_processed: bool = False
    payment_method: PaymentMethod = "cash"
    payment_status: PaymentStatus = "pending"
    tracking_number: str = ""
    created_at: Optional[UtcDatetime] = None
    confirmed_at: Optional[UtcDatetime] = None
    packed_at: Optional[UtcDatetime] = None
    shipped_at: Optional[UtcDatetime] = None
    delivered_at: Optional[UtcDatetime] = None
    cancelled_at: Optional[UtcDatetime] = None
    order_date: str = ""
    can_cancel: bool = True
    can_return: bool = False


class Coupon(StoreModel):
    code: str
    type: Literal["percentage", "fixed", "free_shipping"] = "percentage"
    value: float = Field(0.0, ge=0)
    minimum_order_value: float = 0.0
    maximum_discount: float = 0.0
    valid_from: Optional[UtcDatetime] = None
    valid_until: Optional[UtcDatetime] = None
    usage_limit: int = Field(0, description="0 = unlimited")
    usage_count: int = 0
    per_user_limit: int = 1
    is_active: bool = True
    applicable_categories: List[str] = Field(default_factory=list, description="Empty = all categories")
    description: str = ""


class OrderCancellation(StoreModel):
    order_id: str
    user_id: str
    reason: str = ""
    status: Literal["pending", "approved", "rejected"] = "pending"
    requested_at: Optional[UtcDatetime] = None
    processed_at: Optional[UtcDatetime] = None
    processed_by: str = ""
    admin_notes: str = ""


class ReturnItem(StoreModel):
    order_item_id: str = ""
    product_id: str = ""
    product_name: str = ""
    quantity: int = 0
    size: str = ""
    color: str = ""


class ReturnRequest(StoreModel):
    order_id: str
    user_id: str
    items: List[ReturnItem] = Field(default_factory=list)
    reason: str = ""
    type: Literal["return", "exchange"] = "return"
    exchange_product_id: str = ""
    status: Literal["pending", "approved", "rejected", "processing", "completed"] = "pending"
    requested_at: Optional[UtcDatetime] = None
    processed_at: Optional[UtcDatetime] = None
    processed_by: str = ""
    admin_notes: str = ""
    refund_amount: float = 0.0
    tracking_number: str = ""


# -----------------------------
# Users & messaging
# -----------------------------

class User(StoreModel):
    """
    Users collection schema
    Collection: "users"
    """
    email: EmailStr
    name: str = ""
    phone: str = ""
    role: Literal["user", "admin"] = "user"
    avatar_url: str = ""
    is_blocked: bool = False
    password_hash: str = Field("", exclude=True)


class Message(StoreModel):
    order_id: str
    sender_id: str
    sender_name: str = ""
    sender_role: Literal["admin", "user"] = "user"
    receiver_id: str = ""
    content: str
    created_at: Optional[UtcDatetime] = None
    is_read: bool = False
