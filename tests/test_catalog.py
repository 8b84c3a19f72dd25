from datetime import datetime, timedelta, timezone

import catalog
from catalog import CatalogFilter
from schemas import Order, OrderLine, Product

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def product(pid, name, price=10.0, **kw):
    return Product(id=pid, name=name, price=price, **kw)


def delivered(*lines, status="delivered"):
    return Order(status=status, items=[OrderLine(product_id=pid, quantity=qty) for pid, qty in lines])


def names(products):
    return [p.name for p in products]


def test_blank_filter_sorted_by_name():
    products = [product("1", "Shirt"), product("2", "Belt"), product("3", "Jeans")]
    result = catalog.list_all(products, CatalogFilter(), "name")
    assert names(result) == ["Belt", "Jeans", "Shirt"]


def test_query_is_case_insensitive_across_fields():
    products = [
        product("1", "Linen Shirt"),
        product("2", "Belt", description="Genuine LEATHER"),
        product("3", "Cap", category="Accessories"),
        product("4", "Hoodie", type="outerwear"),
    ]
    assert names(catalog.list_all(products, CatalogFilter(query="shirt"))) == ["Linen Shirt"]
    assert names(catalog.list_all(products, CatalogFilter(query="leather"))) == ["Belt"]
    assert names(catalog.list_all(products, CatalogFilter(query="accessor"))) == ["Cap"]
    assert names(catalog.list_all(products, CatalogFilter(query="OUTER"))) == ["Hoodie"]


def test_attribute_filters():
    products = [
        product("1", "A", category="Men", brand="Uniq", material="Cotton", sizes=["S", "M"], colors=["Red"]),
        product("2", "B", category="Men", brand="Zara", material="Denim", sizes=["L"], colors=["Blue"]),
        product("3", "C", category="Women", brand="Uniq", material="Cotton", sizes=["M"], colors=["Blue"]),
    ]
    assert names(catalog.list_all(products, CatalogFilter(category="Men"))) == ["A", "B"]
    assert names(catalog.list_all(products, CatalogFilter(brand="Uniq", material="Cotton"))) == ["A", "C"]
    assert names(catalog.list_all(products, CatalogFilter(sizes=["M", "XL"]))) == ["A", "C"]
    assert names(catalog.list_all(products, CatalogFilter(colors=["Blue"], category="Men"))) == ["B"]


def test_blank_attribute_values_do_not_filter():
    products = [product("1", "A", category="Men"), product("2", "B", category="")]
    blank = CatalogFilter(category="", sub_category="  ", brand="", material="", sizes=[""], colors=[" "])
    assert names(catalog.list_all(products, blank)) == ["A", "B"]


def test_price_range_is_inclusive():
    products = [product("1", "A", 10), product("2", "B", 20), product("3", "C", 30)]
    result = catalog.list_all(products, CatalogFilter(min_price=10, max_price=20), "price_asc")
    assert names(result) == ["A", "B"]


def test_inactive_products_are_hidden():
    products = [product("1", "A"), product("2", "B", is_active=False)]
    assert names(catalog.list_all(products)) == ["A"]


def test_no_match_is_empty_list():
    assert catalog.list_all([product("1", "A")], CatalogFilter(query="zzz")) == []


def test_price_desc_keeps_order_of_equal_prices():
    products = [product("1", "First", 5), product("2", "Second", 9), product("3", "Third", 5)]
    result = catalog.list_all(products, CatalogFilter(), "price_desc")
    assert names(result) == ["Second", "First", "Third"]


def test_newest_and_rating_sorts():
    products = [
        product("1", "Old", created_at=NOW - timedelta(days=9), rating=4.5),
        product("2", "Undated", rating=3.0),
        product("3", "New", created_at=NOW - timedelta(days=1), rating=4.9),
    ]
    assert names(catalog.list_all(products, sort="newest")) == ["New", "Old", "Undated"]
    assert names(catalog.list_all(products, sort="rating")) == ["New", "Old", "Undated"]


def test_scenario_new_arrivals_and_price_desc():
    products = [
        product("a", "A", 10, created_at=NOW - timedelta(days=40)),
        product("b", "B", 20, created_at=NOW - timedelta(days=2)),
    ]
    assert names(catalog.list_new_arrivals(products, NOW)) == ["B"]
    assert names(catalog.list_all(products, CatalogFilter(), "price_desc")) == ["B", "A"]


def test_new_arrivals_window_limit_and_order():
    products = [product(str(i), f"P{i:02d}", created_at=NOW - timedelta(days=i)) for i in range(0, 31)]
    products.append(product("x", "Undated"))
    result = catalog.list_new_arrivals(products, NOW)
    assert len(result) == 10
    assert names(result) == [f"P{i:02d}" for i in range(10)]
    assert all(NOW - p.created_at <= timedelta(days=30) for p in result)


def test_new_arrivals_includes_exactly_thirty_days():
    edge = product("1", "Edge", created_at=NOW - timedelta(days=30))
    late = product("2", "Late", created_at=NOW - timedelta(days=30, seconds=1))
    assert names(catalog.list_new_arrivals([edge, late], NOW)) == ["Edge"]


def test_scenario_best_sellers():
    products = [product("p1", "One"), product("p2", "Two")]
    orders = [delivered(("p1", 3)), delivered(("p2", 5))]
    assert [p.id for p in catalog.list_best_sellers(products, orders)] == ["p2", "p1"]


def test_best_sellers_only_count_delivered_orders():
    products = [product("p1", "One"), product("p2", "Two")]
    orders = [delivered(("p1", 1)), delivered(("p2", 50), status="pending")]
    assert [p.id for p in catalog.list_best_sellers(products, orders)] == ["p1"]


def test_best_sellers_skip_unknown_ids_and_ignore_negative_quantities():
    products = [product("p1", "One"), product("p2", "Two")]
    orders = [delivered(("gone", 100), ("p1", 2)), delivered(("p2", 4), ("p2", -10))]
    assert catalog.best_seller_counts(orders) == {"gone": 100, "p1": 2, "p2": 4}
    assert [p.id for p in catalog.list_best_sellers(products, orders)] == ["p2", "p1"]


def test_best_sellers_tie_break_on_product_id():
    products = [product("b", "B"), product("a", "A"), product("c", "C")]
    orders = [delivered(("c", 2), ("b", 2), ("a", 2))]
    assert [p.id for p in catalog.list_best_sellers(products, orders)] == ["a", "b", "c"]


def test_best_sellers_ranked_by_non_increasing_quantity_and_truncated():
    products = [product(f"p{i:02d}", f"N{i}") for i in range(15)]
    orders = [delivered(*[(f"p{i:02d}", i + 1) for i in range(15)]), delivered(("p03", 7))]
    result = catalog.list_best_sellers(products, orders)
    counts = catalog.best_seller_counts(orders)
    assert len(result) == 10
    quantities = [counts[p.id] for p in result]
    assert quantities == sorted(quantities, reverse=True)
    assert counts["p03"] == 4 + 7


def test_facets_are_distinct_non_blank_in_discovery_order():
    products = [
        product("1", "A", category="Men", brand="Uniq", material="", sizes=["M", "L"], colors=["Red"]),
        product("2", "B", category="Women", brand="", material="Silk", sizes=["L", " "], colors=["Red", "Blue"]),
        product("3", "C", category="Men", brand="Uniq", material="Silk"),
    ]
    result = catalog.facets(products)
    assert result.categories == ["Men", "Women"]
    assert result.brands == ["Uniq"]
    assert result.materials == ["Silk"]
    assert result.sizes == ["M", "L", "S", "XL"]
    assert result.colors == ["Red", "Blue", "Black", "White"]


def test_product_defaults_sizes_and_colors():
    p = Product.from_doc({"_id": "x", "name": "A", "sizes": [], "colors": None})
    assert p.sizes == ["S", "M", "L", "XL"]
    assert p.colors == ["Black", "White", "Blue"]
