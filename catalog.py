"""
Catalog projection.

Pure functions turning the `products` collection and order history into the
lists a shopper sees: all products (filtered and sorted), new arrivals, best
sellers, and the facet values used to build the filter UI. Nothing here
touches the database.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from schemas import Order, Product

NEW_ARRIVAL_WINDOW = timedelta(days=30)
NEW_ARRIVALS_LIMIT = 10
BEST_SELLERS_LIMIT = 10

SORT_KEYS = ("name", "price_asc", "price_desc", "newest", "rating")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class CatalogFilter:
    query: str = ""
    category: Optional[str] = None
    sub_category: Optional[str] = None
    brand: Optional[str] = None
    material: Optional[str] = None
    sizes: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    def __post_init__(self):
        # blank form fields mean "any"
        for name in ("category", "sub_category", "brand", "material"):
            value = getattr(self, name)
            if value is not None and not value.strip():
                setattr(self, name, None)
        self.sizes = [s for s in self.sizes if s.strip()]
        self.colors = [c for c in self.colors if c.strip()]

    def matches(self, product: Product) -> bool:
        if not product.is_active:
            return False
        if self.query.strip():
            needle = self.query.strip().lower()
            haystacks = (product.name, product.description, product.category, product.type)
            if not any(needle in (h or "").lower() for h in haystacks):
                return False
        if self.category is not None and product.category != self.category:
            return False
        if self.sub_category is not None and product.sub_category != self.sub_category:
            return False
        if self.brand is not None and product.brand != self.brand:
            return False
        if self.material is not None and product.material != self.material:
            return False
        if self.sizes and not any(s in product.sizes for s in self.sizes):
            return False
        if self.colors and not any(c in product.colors for c in self.colors):
            return False
        if self.min_price is not None and product.price < self.min_price:
            return False
        if self.max_price is not None and product.price > self.max_price:
            return False
        return True


@dataclass
class Facets:
    categories: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)
    materials: List[str] = field(default_factory=list)
    sizes: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)


def _sort(products: List[Product], sort: str) -> List[Product]:
    # sorted() is stable, including with reverse=True
    if sort == "name":
        return sorted(products, key=lambda p: p.name)
    if sort == "price_asc":
        return sorted(products, key=lambda p: p.price)
    if sort == "price_desc":
        return sorted(products, key=lambda p: p.price, reverse=True)
    if sort == "newest":
        return sorted(products, key=lambda p: p.created_at or _EPOCH, reverse=True)
    if sort == "rating":
        return sorted(products, key=lambda p: p.rating, reverse=True)
    return products


def list_all(products: Iterable[Product], catalog_filter: Optional[CatalogFilter] = None,
             sort: str = "name") -> List[Product]:
    catalog_filter = catalog_filter or CatalogFilter()
    filtered = [p for p in products if catalog_filter.matches(p)]
    return _sort(filtered, sort)


def list_new_arrivals(products: Iterable[Product], now: datetime) -> List[Product]:
    """Products created within the last 30 days, newest first, at most 10."""
    recent = [
        p for p in products
        if p.created_at is not None and now - p.created_at <= NEW_ARRIVAL_WINDOW
    ]
    recent.sort(key=lambda p: p.created_at, reverse=True)
    return recent[:NEW_ARRIVALS_LIMIT]


def best_seller_counts(orders: Iterable[Order]) -> Dict[str, int]:
    """Units sold per product id across delivered orders."""
    counts = Counter()
    for order in orders:
        if order.status != "delivered":
            continue
        for item in order.items:
            if not item.product_id:
                continue
            # partially written lines count for nothing
            counts[item.product_id] += max(item.quantity, 0)
    return dict(counts)


def list_best_sellers(products: Sequence[Product], orders: Iterable[Order]) -> List[Product]:
    """
    Rank catalog products by units sold in delivered orders.

    Ties on quantity are broken by product id so the ranking does not depend
    on the order documents arrive in. Ids missing from the catalog are
    skipped.
    """
    counts = best_seller_counts(orders)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    by_id = {p.id: p for p in products if p.id}
    result = []
    for product_id, _ in ranked:
        product = by_id.get(product_id)
        if product is None:
            continue
        result.append(product)
        if len(result) == BEST_SELLERS_LIMIT:
            break
    return result


def _distinct(values: Iterable[str]) -> List[str]:
    seen = {}
    for v in values:
        if v and v.strip() and v not in seen:
            seen[v] = None
    return list(seen)


def facets(products: Sequence[Product]) -> Facets:
    return Facets(
        categories=_distinct(p.category for p in products),
        brands=_distinct(p.brand for p in products),
        materials=_distinct(p.material for p in products),
        sizes=_distinct(s for p in products for s in p.sizes),
        colors=_distinct(c for p in products for c in p.colors),
    )
