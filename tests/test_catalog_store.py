"""Unit tests for catalog/store.py -- products, reviews, and rating aggregation.

Covers:
- create/get/update/delete products; slug follows name; duplicate name -> IntegrityError
- list_products() filters, sorts, and paginates
- product_stats() groups well-rated products by upper-cased type
- monthly_plan() counts releases per month of one year
- products_within() / distances() on the 3963.2 mi / 6378.1 km sphere
- reviews: one per user per product; aggregate recomputed on every write
"""

import pytest
from sqlalchemy.exc import IntegrityError

from catalog.models import DEFAULT_RATINGS_AVERAGE, Price, Product, Review
from catalog.query import ListQuery
from catalog.store import CatalogStore, round_rating, slugify

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

LA = (34.052235, -118.243683)
SAN_DIEGO = (32.715736, -117.161087)
NEW_YORK = (40.712776, -74.005974)


def _product(name: str, usd: float = 20.0, type_: str = "game", **fields) -> Product:
    return Product(name=name, type=type_, price=Price(usd=usd, eur=usd * 0.9, nis=usd * 3.7), **fields)


@pytest.fixture
def store():
    s = CatalogStore("sqlite:///:memory:")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_slugify() -> None:
    assert slugify("Half-Life 2: Episode One") == "half-life-2-episode-one"
    assert slugify("  Pokémon Red  ") == "pokemon-red"


def test_round_rating() -> None:
    assert round_rating(4.666) == 4.7
    assert round_rating(3.0) == 3.0


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def test_create_and_get_product(store) -> None:
    pid = store.create_product(
        _product(
            "Portal Two",
            price_discount=Price(usd=10, eur=9, nis=37),
            images=["a.jpg", "b.jpg"],
            developer=["Valve"],
            start_lat=LA[0],
            start_lng=LA[1],
        )
    )
    product = store.get_product(pid)
    assert product.slug == "portal-two"
    assert product.ratings_average == DEFAULT_RATINGS_AVERAGE
    assert product.ratings_quantity == 0
    assert product.price_discount.usd == 10
    assert product.images == ["a.jpg", "b.jpg"]
    assert product.developer == ["Valve"]
    assert product.start_lat == pytest.approx(LA[0])
    assert product.created_at and product.updated_at
    assert store.get_product(9999) is None


def test_duplicate_name_raises(store) -> None:
    store.create_product(_product("Portal Two"))
    with pytest.raises(IntegrityError):
        store.create_product(_product("Portal Two"))


def test_update_product_renames_slug(store) -> None:
    pid = store.create_product(_product("Portal Two"))
    assert store.update_product(pid, name="Portal Three", price=Price(usd=30, eur=27, nis=111))
    product = store.get_product(pid)
    assert product.slug == "portal-three"
    assert product.price.usd == 30
    assert store.update_product(9999, name="Nope") is False


def test_update_product_clears_discount(store) -> None:
    pid = store.create_product(_product("Portal Two", price_discount=Price(usd=10, eur=9, nis=37)))
    store.update_product(pid, price_discount=None)
    assert store.get_product(pid).price_discount is None


def test_delete_product_removes_reviews(store) -> None:
    pid = store.create_product(_product("Portal Two"))
    rid = store.create_review(Review(review="Great", rating=5, product_id=pid, user_id=1))
    assert store.delete_product(pid) is True
    assert store.get_product(pid) is None
    assert store.get_review(rid) is None
    assert store.delete_product(pid) is False


def test_list_products_filter_sort_paginate(store) -> None:
    for name, usd in [("Cheap Game", 5), ("Mid Game", 25), ("Pricey Game", 60), ("Some DLC", 8)]:
        store.create_product(_product(name, usd=usd, type_="dlc" if "DLC" in name else "game"))

    games = store.list_products(ListQuery(filters=[("type", "eq", "game")], sort=[("price_usd", False)]))
    assert [p.name for p in games] == ["Cheap Game", "Mid Game", "Pricey Game"]

    pricey = store.list_products(ListQuery(filters=[("price_usd", "gte", 25.0)], sort=[("price_usd", True)]))
    assert [p.name for p in pricey] == ["Pricey Game", "Mid Game"]

    page2 = store.list_products(ListQuery(sort=[("price_usd", False)], page=2, limit=2))
    assert [p.name for p in page2] == ["Mid Game", "Pricey Game"]


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def test_product_stats(store) -> None:
    store.create_product(_product("Game One", usd=10, ratings_average=4.8, ratings_quantity=10))
    store.create_product(_product("Game Two", usd=30, ratings_average=4.6, ratings_quantity=5))
    store.create_product(_product("Bad Game", usd=99, ratings_average=2.0, ratings_quantity=50))
    store.create_product(_product("DLC One", usd=5, type_="dlc", ratings_average=4.5, ratings_quantity=1))

    stats = store.product_stats()
    assert [s["type"] for s in stats] == ["DLC", "GAME"]
    game = stats[1]
    assert game["num_products"] == 2
    assert game["num_ratings"] == 15
    assert game["avg_rating"] == pytest.approx(4.7)
    assert game["avg_price"] == pytest.approx(20.0)
    assert game["min_price"] == 10
    assert game["max_price"] == 30


def test_monthly_plan(store) -> None:
    store.create_product(_product("March One", release_date="2021-03-02"))
    store.create_product(_product("March Two", release_date="2021-03-20"))
    store.create_product(_product("July One", release_date="2021-07-14"))
    store.create_product(_product("Other Year", release_date="2020-03-01"))
    store.create_product(_product("Unreleased"))

    plan = store.monthly_plan(2021)
    assert plan[0] == {"month": 3, "num_product_starts": 2, "products": ["March One", "March Two"]}
    assert plan[1]["month"] == 7
    assert len(plan) == 2
    assert store.monthly_plan(1999) == []


# ---------------------------------------------------------------------------
# Geospatial
# ---------------------------------------------------------------------------


def _located(store) -> None:
    store.create_product(_product("LA Studio", start_lat=LA[0], start_lng=LA[1]))
    store.create_product(_product("SD Studio", start_lat=SAN_DIEGO[0], start_lng=SAN_DIEGO[1]))
    store.create_product(_product("NY Studio", start_lat=NEW_YORK[0], start_lng=NEW_YORK[1]))
    store.create_product(_product("Nowhere"))


def test_products_within(store) -> None:
    _located(store)
    near = store.products_within(LA[0], LA[1], 150, "mi")
    assert sorted(p.name for p in near) == ["LA Studio", "SD Studio"]
    assert [p.name for p in store.products_within(LA[0], LA[1], 10, "km")] == ["LA Studio"]


def test_distances(store) -> None:
    _located(store)
    rows = store.distances(LA[0], LA[1], "mi")
    assert [r["name"] for r in rows] == ["LA Studio", "SD Studio", "NY Studio"]
    assert rows[0]["distance"] == 0
    assert 100 < rows[1]["distance"] < 130
    km = store.distances(LA[0], LA[1], "km")
    assert km[1]["distance"] > rows[1]["distance"]


def test_unknown_unit(store) -> None:
    with pytest.raises(ValueError):
        store.distances(0, 0, "furlongs")


# ---------------------------------------------------------------------------
# Reviews and rating aggregation
# ---------------------------------------------------------------------------


def test_review_aggregate_lifecycle(store) -> None:
    pid = store.create_product(_product("Portal Two"))
    r1 = store.create_review(Review(review="Loved it", rating=5, product_id=pid, user_id=1))
    store.create_review(Review(review="Fine", rating=4, product_id=pid, user_id=2))
    store.create_review(Review(review="Hmm", rating=4, product_id=pid, user_id=3))
    product = store.get_product(pid)
    assert product.ratings_quantity == 3
    assert product.ratings_average == 4.3

    store.update_review(r1, rating=1)
    assert store.get_product(pid).ratings_average == 3.0

    for review in store.list_reviews(pid):
        store.delete_review(review.id)
    product = store.get_product(pid)
    assert product.ratings_quantity == 0
    assert product.ratings_average == DEFAULT_RATINGS_AVERAGE


def test_unrated_review_counts_but_does_not_average(store) -> None:
    pid = store.create_product(_product("Portal Two"))
    store.create_review(Review(review="No score", product_id=pid, user_id=1))
    store.create_review(Review(review="Two", rating=2, product_id=pid, user_id=2))
    product = store.get_product(pid)
    assert product.ratings_quantity == 2
    assert product.ratings_average == 2.0


def test_one_review_per_user_per_product(store) -> None:
    pid = store.create_product(_product("Portal Two"))
    store.create_review(Review(review="First", rating=5, product_id=pid, user_id=1))
    with pytest.raises(IntegrityError):
        store.create_review(Review(review="Second", rating=1, product_id=pid, user_id=1))
    other = store.create_product(_product("Portal Three"))
    assert store.create_review(Review(review="Other product", rating=3, product_id=other, user_id=1))


def test_update_and_delete_missing_review(store) -> None:
    assert store.update_review(9999, rating=3) is False
    assert store.delete_review(9999) is False
