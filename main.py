import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

import auth
import catalog
import database
import feed
import mailer
import orders
import reviews
from auth import get_current_user, get_db, oauth2_scheme, require_admin
from errors import StorefrontError
from logging_config import get_logger
from schemas import (
    Address, CartItem, Favorite, Message, Order, OrderCancellation, Product, Review, parse_documents,
)

logger = get_logger(__name__)

ENFORCE_ORDER_STATUS_FLOW = os.getenv("ENFORCE_ORDER_STATUS_FLOW", "false").lower() in ("1", "true", "yes")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")


def bootstrap_admin():
    if database.db is None or not (ADMIN_EMAIL and ADMIN_PASSWORD):
        return
    users = database.db["users"]
    if users.find_one({"email": ADMIN_EMAIL.lower()}):
        return
    user = auth.sign_up(database.db, ADMIN_EMAIL, ADMIN_PASSWORD, name="Admin")
    users.update_one({"_id": user["_id"]}, {"$set": {"role": "admin"}})
    logger.info("admin_bootstrapped", user_id=str(user["_id"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    bootstrap_admin()
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    content = {"detail": str(exc)}
    if getattr(exc, "fields", None):
        content["fields"] = exc.fields
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("store_operation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Store operation failed, please try again"})


# Helpers
def load_products(db, filter_q: Optional[dict] = None) -> List[Product]:
    return parse_documents(Product, db["products"].find(filter_q or {}))


def load_delivered_orders(db) -> List[Order]:
    return parse_documents(Order, db["orders"].find({"status": "delivered"}))


def find_owned(db, collection: str, doc_id: str, user: dict, detail: str) -> dict:
    oid = database.to_object_id(doc_id)
    doc = db[collection].find_one({"_id": oid, "userId": str(user["_id"])}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail=detail)
    return doc


def find_order_for(db, order_id: str, user: dict) -> dict:
    oid = database.to_object_id(order_id)
    order = db["orders"].find_one({"_id": oid}) if oid else None
    if not order or (user.get("role") != "admin" and order.get("userId") != str(user["_id"])):
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    db = database.db
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# -----------------------------
# Auth
# -----------------------------

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = ""
    phone: str = ""


class PasswordResetIn(BaseModel):
    email: EmailStr


class PasswordResetConfirmIn(BaseModel):
    token: str
    new_password: str = Field(..., min_length=6)


class ReauthIn(BaseModel):
    password: str


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class EmailChangeIn(BaseModel):
    current_password: str
    new_email: EmailStr


class ProfileIn(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


@app.post("/auth/register")
def register(payload: UserCreate, db=Depends(get_db)):
    user = auth.sign_up(db, payload.email, payload.password, payload.name, payload.phone)
    return auth.public_user(user)


@app.post("/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    access_token = auth.sign_in(db, form_data.username, form_data.password)
    return {"access_token": access_token, "token_type": "bearer"}


@app.post("/auth/logout")
def logout(token: str = Depends(oauth2_scheme), user=Depends(get_current_user), db=Depends(get_db)):
    auth.sign_out(db, token)
    return {"status": "signed_out"}


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return auth.public_user(user)


@app.post("/auth/password-reset")
def request_password_reset(payload: PasswordResetIn, background_tasks: BackgroundTasks,
                           db=Depends(get_db), send_reset=Depends(mailer.get_reset_sender)):
    token = auth.send_password_reset(db, payload.email)
    if token:
        background_tasks.add_task(send_reset, payload.email, token)
    # same answer whether or not the account exists
    return {"status": "ok", "message": "If the email is registered, a reset link has been sent"}


@app.post("/auth/password-reset/confirm")
def confirm_password_reset(payload: PasswordResetConfirmIn, db=Depends(get_db)):
    auth.confirm_password_reset(db, payload.token, payload.new_password)
    return {"status": "ok"}


@app.post("/auth/reauthenticate", response_model=Token)
def reauthenticate(payload: ReauthIn, user=Depends(get_current_user)):
    auth.reauthenticate(user, payload.password)
    return {"access_token": auth.create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")})}


@app.post("/auth/password")
def change_password(payload: PasswordChangeIn, user=Depends(get_current_user), db=Depends(get_db)):
    auth.update_password(db, user, payload.current_password, payload.new_password)
    return {"status": "ok"}


@app.post("/auth/email")
def change_email(payload: EmailChangeIn, user=Depends(get_current_user), db=Depends(get_db)):
    email = auth.update_email(db, user, payload.current_password, payload.new_email)
    return {"status": "ok", "email": email}


@app.patch("/auth/profile")
def update_profile(payload: ProfileIn, user=Depends(get_current_user), db=Depends(get_db)):
    fields = {}
    if payload.name is not None:
        fields["name"] = payload.name
    if payload.phone is not None:
        if not payload.phone.strip():
            raise HTTPException(status_code=400, detail="Phone cannot be blank")
        fields["phone"] = payload.phone
    if payload.avatar_url is not None:
        fields["avatarUrl"] = payload.avatar_url
    if fields:
        fields["updatedAt"] = now_utc()
        db["users"].update_one({"_id": user["_id"]}, {"$set": fields})
    return auth.public_user({**user, **fields})


# -----------------------------
# Catalog
# -----------------------------

class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    type: str = ""
    category: str = ""
    sub_category: str = ""
    brand: str = ""
    material: str = ""
    image_url: str = ""
    images: List[str] = []
    description: str = ""
    sizes: List[str] = []
    colors: List[str] = []
    stock: int = Field(0, ge=0)
    is_active: bool = True
    tags: List[str] = []


@app.get("/products")
def list_products(
    q: str = "",
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    brand: Optional[str] = None,
    material: Optional[str] = None,
    sizes: List[str] = Query(default=[]),
    colors: List[str] = Query(default=[]),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: Literal["name", "price_asc", "price_desc", "newest", "rating"] = "name",
    db=Depends(get_db),
):
    catalog_filter = catalog.CatalogFilter(
        query=q, category=category, sub_category=sub_category, brand=brand, material=material,
        sizes=sizes, colors=colors, min_price=min_price, max_price=max_price,
    )
    items = catalog.list_all(load_products(db), catalog_filter, sort)
    return [p.to_public() for p in items]


@app.get("/products/new-arrivals")
def new_arrivals(db=Depends(get_db)):
    products = [p for p in load_products(db) if p.is_active]
    return [p.to_public() for p in catalog.list_new_arrivals(products, now_utc())]


@app.get("/products/best-sellers")
def best_sellers(db=Depends(get_db)):
    products = [p for p in load_products(db) if p.is_active]
    return [p.to_public() for p in catalog.list_best_sellers(products, load_delivered_orders(db))]


@app.get("/products/facets")
def product_facets(db=Depends(get_db)):
    products = [p for p in load_products(db) if p.is_active]
    result = catalog.facets(products)
    return {
        "categories": result.categories,
        "brands": result.brands,
        "materials": result.materials,
        "sizes": result.sizes,
        "colors": result.colors,
    }


@app.post("/products", dependencies=[Depends(require_admin)])
def create_product(payload: ProductIn, db=Depends(get_db)):
    product = Product(**payload.model_dump())
    product_id = database.create_document("products", product)
    return Product.from_doc(db["products"].find_one({"_id": database.to_object_id(product_id)})).to_public()


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    doc = database.get_document("products", product_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return Product.from_doc(doc).to_public()


@app.put("/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductIn, db=Depends(get_db)):
    fields = Product(**payload.model_dump()).to_doc()
    # createdAt, rating and reviewCount are not the editor's to change
    for key in ("createdAt", "rating", "reviewCount", "hasVariants"):
        fields.pop(key, None)
    fields["updatedAt"] = now_utc()
    if not database.update_document("products", product_id, fields):
        raise HTTPException(status_code=404, detail="Product not found")
    return Product.from_doc(database.get_document("products", product_id)).to_public()


@app.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db=Depends(get_db)):
    if not database.delete_document("products", product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"status": "deleted"}


# -----------------------------
# Reviews
# -----------------------------

class ReviewIn(BaseModel):
    rating: int = Field(5, ge=1, le=5)
    comment: str = Field(..., min_length=1)


class ReplyIn(BaseModel):
    reply: str = Field(..., min_length=1)


def _review_context(db, product_id: str, user: dict):
    user_id = str(user["_id"])
    user_orders = parse_documents(Order, db["orders"].find({"userId": user_id, "status": "delivered"}))
    existing = parse_documents(Review, db["reviews"].find({"userId": user_id, "productId": product_id}))
    return user_orders, existing


@app.get("/products/{product_id}/reviews")
def list_reviews(product_id: str, db=Depends(get_db)):
    docs = db["reviews"].find({"productId": product_id}).sort("createdAt", DESCENDING)
    return [r.to_public() for r in parse_documents(Review, docs)]


@app.get("/products/{product_id}/can-review")
def check_can_review(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    user_orders, existing = _review_context(db, product_id, user)
    allowed = reviews.can_review(user_orders, existing, product_id, str(user["_id"]), now_utc())
    return {"canReview": allowed}


@app.post("/products/{product_id}/reviews")
def add_review(product_id: str, payload: ReviewIn, user=Depends(get_current_user), db=Depends(get_db)):
    if not database.get_document("products", product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    user_orders, existing = _review_context(db, product_id, user)
    if not reviews.can_review(user_orders, existing, product_id, str(user["_id"]), now_utc()):
        raise HTTPException(status_code=403, detail="Only a recent delivered purchase can be reviewed, once")

    review = Review(
        product_id=product_id,
        user_id=str(user["_id"]),
        user_name=user.get("name") or user.get("email", ""),
        rating=payload.rating,
        comment=payload.comment,
        created_at=now_utc(),
    )
    review_id = database.create_document("reviews", review)

    all_reviews = parse_documents(Review, db["reviews"].find({"productId": product_id}))
    rating, count = reviews.rating_summary(all_reviews)
    database.update_document("products", product_id, {"rating": rating, "reviewCount": count})
    logger.info("review_added", product_id=product_id, rating=rating, review_count=count)
    return {"id": review_id, "rating": rating, "reviewCount": count}


@app.get("/reviews", dependencies=[Depends(require_admin)])
def admin_list_reviews(db=Depends(get_db)):
    docs = db["reviews"].find({}).sort("createdAt", DESCENDING)
    return [r.to_public() for r in parse_documents(Review, docs)]


@app.post("/reviews/{review_id}/reply", dependencies=[Depends(require_admin)])
def reply_to_review(review_id: str, payload: ReplyIn, db=Depends(get_db)):
    if not database.update_document("reviews", review_id, {"adminReply": payload.reply, "repliedAt": now_utc()}):
        raise HTTPException(status_code=404, detail="Review not found")
    return Review.from_doc(database.get_document("reviews", review_id)).to_public()


# -----------------------------
# Favorites
# -----------------------------

@app.get("/favorites")
def list_favorites(user=Depends(get_current_user), db=Depends(get_db)):
    product_ids = [f["productId"] for f in db["favorites"].find({"userId": str(user["_id"])})]
    oids = [oid for oid in (database.to_object_id(pid) for pid in product_ids) if oid]
    return [p.to_public() for p in load_products(db, {"_id": {"$in": oids}})]


@app.post("/favorites/{product_id}")
def add_favorite(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    if not database.get_document("products", product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    key = {"userId": str(user["_id"]), "productId": product_id}
    if not db["favorites"].find_one(key):
        database.create_document("favorites", Favorite(user_id=key["userId"], product_id=product_id))
    return {"status": "ok", "isFavorite": True}


@app.delete("/favorites/{product_id}")
def remove_favorite(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    db["favorites"].delete_many({"userId": str(user["_id"]), "productId": product_id})
    return {"status": "ok", "isFavorite": False}


# -----------------------------
# Cart
# -----------------------------

class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_size: str = ""
    selected_color: str = ""


class CartQuantityIn(BaseModel):
    quantity: int


def load_cart(db, user: dict) -> List[CartItem]:
    return parse_documents(CartItem, db["cart"].find({"userId": str(user["_id"])}))


@app.get("/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    items = load_cart(db, user)
    return {"items": [i.to_public() for i in items], "total": orders.cart_total(items)}


@app.post("/cart")
def add_to_cart(payload: CartItemIn, user=Depends(get_current_user), db=Depends(get_db)):
    product_doc = database.get_document("products", payload.product_id)
    if not product_doc:
        raise HTTPException(status_code=404, detail="Product not found")
    product = Product.from_doc(product_doc)

    item = CartItem(
        product_id=product.id,
        product_name=product.name,
        product_image_url=product.image_url,
        price=product.price,
        quantity=payload.quantity,
        selected_size=payload.selected_size,
        selected_color=payload.selected_color,
        user_id=str(user["_id"]),
    )
    existing = orders.matching_cart_line(load_cart(db, user), item)
    if existing:
        db["cart"].update_one({"_id": database.to_object_id(existing.id)},
                              {"$inc": {"quantity": payload.quantity}})
        return existing.model_copy(update={"quantity": existing.quantity + payload.quantity}).to_public()

    item_id = database.create_document("cart", item)
    return item.model_copy(update={"id": item_id}).to_public()


@app.patch("/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartQuantityIn, user=Depends(get_current_user), db=Depends(get_db)):
    doc = find_owned(db, "cart", item_id, user, "Cart item not found")
    if payload.quantity <= 0:
        db["cart"].delete_one({"_id": doc["_id"]})
        return {"status": "removed"}
    db["cart"].update_one({"_id": doc["_id"]}, {"$set": {"quantity": payload.quantity}})
    return CartItem.from_doc({**doc, "quantity": payload.quantity}).to_public()


@app.delete("/cart/{item_id}")
def remove_from_cart(item_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    doc = find_owned(db, "cart", item_id, user, "Cart item not found")
    db["cart"].delete_one({"_id": doc["_id"]})
    return {"status": "removed"}


# -----------------------------
# Addresses
# -----------------------------

class AddressIn(BaseModel):
    full_name: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    district: str = ""
    ward: str = ""
    is_default: bool = False


def _clear_default(db, user: dict):
    db["addresses"].update_many({"userId": str(user["_id"])}, {"$set": {"isDefault": False}})


@app.get("/addresses")
def list_addresses(user=Depends(get_current_user), db=Depends(get_db)):
    docs = db["addresses"].find({"userId": str(user["_id"])})
    return [a.to_public() for a in parse_documents(Address, docs)]


@app.post("/addresses")
def create_address(payload: AddressIn, user=Depends(get_current_user), db=Depends(get_db)):
    address = Address(**payload.model_dump(), user_id=str(user["_id"]))
    orders.validate_address(address)
    if address.is_default:
        _clear_default(db, user)
    address_id = database.create_document("addresses", address)
    return address.model_copy(update={"id": address_id}).to_public()


@app.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressIn, user=Depends(get_current_user), db=Depends(get_db)):
    doc = find_owned(db, "addresses", address_id, user, "Address not found")
    address = Address(**payload.model_dump(), user_id=str(user["_id"]))
    orders.validate_address(address)
    if address.is_default:
        _clear_default(db, user)
    db["addresses"].update_one({"_id": doc["_id"]}, {"$set": {**address.to_doc(), "updatedAt": now_utc()}})
    return address.model_copy(update={"id": address_id}).to_public()


@app.delete("/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    doc = find_owned(db, "addresses", address_id, user, "Address not found")
    db["addresses"].delete_one({"_id": doc["_id"]})
    return {"status": "deleted"}


# -----------------------------
# Checkout / Orders
# -----------------------------

class CheckoutIn(BaseModel):
    address: Optional[AddressIn] = None
    address_id: Optional[str] = None
    delivery_type: Literal["home_delivery", "store_pickup"] = "home_delivery"
    payment_method: Literal["cash", "card", "online", "cod"] = "cash"
    notes: str = ""
    pickup_time: Optional[datetime] = None


class StatusUpdateIn(BaseModel):
    status: str
    is_processed: bool = True


class CancelIn(BaseModel):
    reason: str = Field(..., min_length=1)


def decrement_stock(db, items):
    """One independent decrement per line; a failure is logged and the rest go on."""
    for item in items:
        oid = database.to_object_id(item.product_id)
        if oid is None:
            logger.warning("stock_decrement_skipped", product_id=item.product_id)
            continue
        try:
            db["products"].update_one({"_id": oid}, {"$inc": {"stock": -item.quantity}})
        except PyMongoError as e:
            logger.error("stock_decrement_failed", product_id=item.product_id,
                         quantity=item.quantity, error=str(e))


@app.post("/checkout")
def checkout(payload: CheckoutIn, user=Depends(get_current_user), db=Depends(get_db)):
    if payload.address_id:
        address = Address.from_doc(find_owned(db, "addresses", payload.address_id, user, "Address not found"))
    elif payload.address:
        address = Address(**payload.address.model_dump())
    else:
        address = Address()

    cart_items = load_cart(db, user)
    order = orders.place_order(
        cart_items, address, payload.delivery_type, payload.payment_method, payload.notes,
        user_id=str(user["_id"]), now=now_utc(), pickup_time=payload.pickup_time,
    )
    result = db["orders"].insert_one(order.to_doc())
    order_id = str(result.inserted_id)
    logger.info("order_placed", order_id=order_id, user_id=order.user_id,
                items=len(order.items), total=order.total_amount)

    cart_ids = [database.to_object_id(i.id) for i in cart_items]
    db["cart"].delete_many({"_id": {"$in": cart_ids}})
    decrement_stock(db, order.items)

    return order.model_copy(update={"id": order_id}).to_public()


@app.get("/orders")
def list_orders(status: Optional[str] = None, user=Depends(get_current_user), db=Depends(get_db)):
    filt = {}
    if user.get("role") != "admin":
        filt["userId"] = str(user["_id"])
    if status:
        filt["status"] = status
    docs = db["orders"].find(filt).sort("createdAt", DESCENDING)
    return [o.to_public() for o in parse_documents(Order, docs)]


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Order.from_doc(find_order_for(db, order_id, user)).to_public()


@app.patch("/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusUpdateIn, db=Depends(get_db)):
    doc = database.get_document("orders", order_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    update = orders.status_update(
        doc.get("status", "pending"), payload.status, now_utc(),
        is_processed=payload.is_processed, enforce_forward=ENFORCE_ORDER_STATUS_FLOW,
    )
    database.update_document("orders", order_id, update)
    logger.info("order_status_changed", order_id=order_id, previous=doc.get("status"), status=payload.status)
    return Order.from_doc(database.get_document("orders", order_id)).to_public()


@app.post("/orders/{order_id}/cancel")
def request_cancellation(order_id: str, payload: CancelIn, user=Depends(get_current_user), db=Depends(get_db)):
    order = Order.from_doc(find_order_for(db, order_id, user))
    if not order.can_cancel or order.status not in orders.CANCELLABLE:
        raise HTTPException(status_code=400, detail="Order can no longer be cancelled")
    if db["order_cancellations"].find_one({"orderId": order_id, "status": "pending"}):
        raise HTTPException(status_code=400, detail="A cancellation request is already pending")
    cancellation = OrderCancellation(order_id=order_id, user_id=str(user["_id"]), reason=payload.reason,
                                requested_at=now_utc())
    cancellation_id = database.create_document("order_cancellations", cancellation)
    logger.info("cancellation_requested", order_id=order_id, cancellation_id=cancellation_id)
    return cancellation.model_copy(update={"id": cancellation_id}).to_public()


class CancellationDecisionIn(BaseModel):
    approve: bool
    admin_notes: str = ""


@app.get("/admin/cancellations", dependencies=[Depends(require_admin)])
def list_cancellations(status: Optional[str] = None, db=Depends(get_db)):
    filt = {"status": status} if status else {}
    docs = db["order_cancellations"].find(filt).sort("requestedAt", ASCENDING)
    return [c.to_public() for c in parse_documents(OrderCancellation, docs)]


@app.post("/admin/cancellations/{cancellation_id}")
def decide_cancellation(cancellation_id: str, payload: CancellationDecisionIn,
                        admin=Depends(require_admin), db=Depends(get_db)):
    doc = database.get_document("order_cancellations", cancellation_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Cancellation request not found")
    cancellation = OrderCancellation.from_doc(doc)
    if cancellation.status != "pending":
        raise HTTPException(status_code=400, detail="Cancellation request was already processed")

    if payload.approve:
        order_doc = database.get_document("orders", cancellation.order_id)
        if not order_doc:
            raise HTTPException(status_code=404, detail="Order not found")
        if order_doc.get("status", "pending") not in orders.CANCELLABLE:
            raise HTTPException(status_code=400, detail="Order can no longer be cancelled")
        update = orders.status_update(order_doc.get("status", "pending"), "cancelled", now_utc(),
                                      enforce_forward=ENFORCE_ORDER_STATUS_FLOW)
        database.update_document("orders", cancellation.order_id, update)

    decision = {
        "status": "approved" if payload.approve else "rejected",
        "processedAt": now_utc(),
        "processedBy": str(admin["_id"]),
        "adminNotes": payload.admin_notes,
    }
    database.update_document("order_cancellations", cancellation_id, decision)
    logger.info("cancellation_processed", cancellation_id=cancellation_id,
                order_id=cancellation.order_id, status=decision["status"])
    return OrderCancellation.from_doc(database.get_document("order_cancellations", cancellation_id)).to_public()


# -----------------------------
# Messages
# -----------------------------

class MessageIn(BaseModel):
    content: str = Field(..., min_length=1)


@app.get("/orders/{order_id}/messages")
def list_messages(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    find_order_for(db, order_id, user)
    docs = db["messages"].find({"orderId": order_id}).sort("createdAt", ASCENDING)
    return [m.to_public() for m in parse_documents(Message, docs)]


@app.post("/orders/{order_id}/messages")
def send_message(order_id: str, payload: MessageIn, user=Depends(get_current_user), db=Depends(get_db)):
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Message is empty")
    order = find_order_for(db, order_id, user)
    is_admin = user.get("role") == "admin"
    if is_admin:
        receiver_id = order.get("userId", "")
    else:
        admin = db["users"].find_one({"role": "admin"})
        receiver_id = str(admin["_id"]) if admin else ""

    message = Message(
        order_id=order_id,
        sender_id=str(user["_id"]),
        sender_name=user.get("name") or ("Admin" if is_admin else user.get("email", "")),
        sender_role="admin" if is_admin else "user",
        receiver_id=receiver_id,
        content=payload.content,
        created_at=now_utc(),
    )
    message_id = database.create_document("messages", message)
    return message.model_copy(update={"id": message_id}).to_public()


# -----------------------------
# Admin
# -----------------------------

@app.get("/admin/customers", dependencies=[Depends(require_admin)])
def list_customers(db=Depends(get_db)):
    return [auth.public_user(u) for u in db["users"].find({"role": "user"})]


@app.post("/admin/customers/{user_id}/block", dependencies=[Depends(require_admin)])
def block_customer(user_id: str, db=Depends(get_db)):
    if not database.update_document("users", user_id, {"isBlocked": True}):
        raise HTTPException(status_code=404, detail="Customer not found")
    logger.info("customer_blocked", user_id=user_id)
    return {"status": "blocked"}


@app.get("/admin/customers/{user_id}/orders", dependencies=[Depends(require_admin)])
def customer_orders(user_id: str, db=Depends(get_db)):
    docs = db["orders"].find({"userId": user_id}).sort("createdAt", DESCENDING)
    return [o.to_public() for o in parse_documents(Order, docs)]


@app.get("/admin/statistics", dependencies=[Depends(require_admin)])
def statistics(db=Depends(get_db)):
    return orders.revenue_summary(parse_documents(Order, db["orders"].find({})), now_utc())


@app.post("/seed", dependencies=[Depends(require_admin)])
def seed(db=Depends(get_db)):
    sample_products = [
        {"name": "Basic Cotton T-Shirt", "type": "shirt", "category": "Men", "subCategory": "T-Shirts",
         "brand": "Uniq", "material": "Cotton", "price": 199000, "stock": 50},
        {"name": "Slim Fit Jeans", "type": "pants", "category": "Men", "subCategory": "Jeans",
         "brand": "Levis", "material": "Denim", "price": 599000, "stock": 30, "sizes": ["29", "30", "31", "32"]},
        {"name": "Floral Summer Dress", "type": "dress", "category": "Women", "subCategory": "Dresses",
         "brand": "Zara", "material": "Polyester", "price": 459000, "stock": 20, "colors": ["Red", "Yellow"]},
        {"name": "Kids Hoodie", "type": "hoodie", "category": "Kids", "subCategory": "Hoodies",
         "brand": "Uniq", "material": "Fleece", "price": 259000, "stock": 40},
        {"name": "Leather Belt", "type": "belt", "category": "Accessories", "subCategory": "Belts",
         "brand": "Pedro", "material": "Leather", "price": 349000, "stock": 15, "sizes": ["M", "L"]},
    ]

    created = 0
    for p in sample_products:
        if not db["products"].find_one({"name": p["name"]}):
            database.create_document("products", Product.model_validate(p))
            created += 1

    return {"status": "ok", "created": created}


# -----------------------------
# Live catalog
# -----------------------------

async def wait_for_disconnect(websocket: WebSocket):
    # the client sends nothing; reading is how a hang-up is noticed
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/ws/catalog")
async def catalog_socket(websocket: WebSocket):
    await websocket.accept()
    if database.db is None:
        await websocket.close(code=1011)
        return

    catalog_feed = feed.CatalogFeed()
    subscription = feed.subscribe(database.db, catalog_feed)

    async def push(view):
        await websocket.send_json(view.to_payload())

    consumer = asyncio.create_task(catalog_feed.run(push))
    listener = asyncio.create_task(wait_for_disconnect(websocket))
    try:
        done, pending = await asyncio.wait({consumer, listener}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if task.exception() is not None:
                logger.info("catalog_socket_send_failed", error=repr(task.exception()))
    finally:
        await feed.unsubscribe(subscription)
    logger.info("catalog_socket_closed")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
