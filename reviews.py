from datetime import datetime, timedelta
from typing import Iterable, Tuple

from schemas import Order, Review

REVIEW_WINDOW = timedelta(days=7)


def can_review(user_orders: Iterable[Order], existing_reviews: Iterable[Review], product_id: str,
               user_id: str, now: datetime) -> bool:
    """
    A customer may review a product once, within 7 days of a delivered
    order that contained it.
    """
    if any(r.user_id == user_id and r.product_id == product_id for r in existing_reviews):
        return False
    for order in user_orders:
        if order.user_id != user_id or order.status != "delivered" or order.delivered_at is None:
            continue
        if now - order.delivered_at > REVIEW_WINDOW:
            continue
        if any(item.product_id == product_id for item in order.items):
            return True
    return False


def rating_summary(reviews: Iterable[Review]) -> Tuple[float, int]:
    """Mean rating and count, recomputed from every review of the product."""
    ratings = [r.rating for r in reviews]
    if not ratings:
        return 0.0, 0
    return round(sum(ratings) / len(ratings), 2), len(ratings)
