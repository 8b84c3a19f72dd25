"""
Cart totals, checkout assembly and order status changes.

Everything in here is pure: the routes in main.py do the reads and writes
around it.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from errors import InvalidStatusTransition, OrderValidationError
from schemas import Address, CartItem, Order, OrderLine

REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "street", "city")

ORDER_DATE_FORMAT = "%d/%m/%Y %H:%M"

# Forward order of fulfilment; cancelled sits outside it.
STATUS_FLOW = (
    "pending", "confirmed", "packed", "ready_to_ship",
    "shipped", "out_for_delivery", "delivered",
)
CANCELLABLE = ("pending", "confirmed", "packed", "ready_to_ship")

STATUS_TIMESTAMPS = {
    "confirmed": "confirmedAt",
    "packed": "packedAt",
    "shipped": "shippedAt",
    "delivered": "deliveredAt",
    "cancelled": "cancelledAt",
}


def cart_total(items: Iterable[CartItem]) -> float:
    return round(sum(item.price * item.quantity for item in items), 2)


def matching_cart_line(lines: Iterable[CartItem], item: CartItem) -> Optional[CartItem]:
    """The existing line for the same product, size and colour, if any."""
    for line in lines:
        if (line.product_id == item.product_id
                and line.selected_size == item.selected_size
                and line.selected_color == item.selected_color):
            return line
    return None


def validate_address(address: Address):
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not getattr(address, f).strip()]
    if missing:
        raise OrderValidationError(f"Shipping address is missing: {', '.join(missing)}", missing)


def place_order(items: Sequence[CartItem], address: Address, delivery_type: str, payment_method: str,
                notes: str = "", *, user_id: str, now: datetime,
                pickup_time: Optional[datetime] = None) -> Order:
    """
    Build the order for a checkout.

    Line items are copied so later catalog or cart edits never reach a
    placed order. Raises OrderValidationError before anything is built when
    the cart is empty or the address is incomplete.
    """
    if not items:
        raise OrderValidationError("Cart is empty", ["items"])
    validate_address(address)

    lines: List[OrderLine] = [
        OrderLine(
            product_id=item.product_id,
            product_name=item.product_name,
            product_image_url=item.product_image_url,
            price=item.price,
            quantity=item.quantity,
            selected_size=item.selected_size,
            selected_color=item.selected_color,
        )
        for item in items
    ]
    total = cart_total(items)
    shipping_address = address.model_copy(update={"id": None, "is_default": False})

    return Order(
        user_id=user_id,
        items=lines,
        subtotal=total,
        total_amount=total,
        shipping_address=shipping_address,
        delivery_type=delivery_type,
        pickup_time=pickup_time if delivery_type == "store_pickup" else None,
        order_notes=notes,
        status="pending",
        is_processed=False,
        payment_method=payment_method,
        payment_status="pending",
        created_at=now,
        order_date=now.strftime(ORDER_DATE_FORMAT),
    )


def _is_forward(current: str, requested: str) -> bool:
    if current == requested:
        return True
    if requested == "cancelled":
        return current in CANCELLABLE
    if current not in STATUS_FLOW or requested not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(requested) > STATUS_FLOW.index(current)


def status_update(current: str, requested: str, now: datetime, *, is_processed: bool = True,
                  enforce_forward: bool = False) -> dict:
    """
    Partial document update for an admin status change.

    Stamps the timestamp field belonging to the new status. Any transition
    is accepted unless enforce_forward is set.
    """
    if requested not in STATUS_FLOW and requested != "cancelled":
        raise InvalidStatusTransition(current, requested)
    if enforce_forward and not _is_forward(current, requested):
        raise InvalidStatusTransition(current, requested)

    update = {"status": requested, "isProcessed": is_processed}
    stamp = STATUS_TIMESTAMPS.get(requested)
    if stamp:
        update[stamp] = now
    if requested in ("shipped", "out_for_delivery", "delivered", "cancelled"):
        update["canCancel"] = False
    if requested == "delivered":
        update["canReturn"] = True
    return update


def revenue_summary(orders: Iterable[Order], now: datetime) -> dict:
    """Delivered revenue for today and this month, plus the total order count."""
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = day_start.replace(day=1)

    daily = monthly = 0.0
    total_orders = 0
    for order in orders:
        total_orders += 1
        if order.status != "delivered" or order.created_at is None:
            continue
        if order.created_at >= month_start:
            monthly += order.total_amount
            if order.created_at >= day_start:
                daily += order.total_amount

    return {
        "daily_revenue": round(daily, 2),
        "monthly_revenue": round(monthly, 2),
        "total_orders": total_orders,
    }
