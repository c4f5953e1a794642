"""
catalog/store.py -- SQLAlchemy-backed persistence layer for products and reviews.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in catalog/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Rating aggregation: every review write (create, update, delete) ends with
_recalculate_ratings(product_id), which rewrites ratings_quantity and
ratings_average on the product from the current review rows. With no reviews
left the product returns to 0 ratings and the 4.5 default.

Security: all queries use bound parameters. Column names in list filters come
from catalog.query.FILTERABLE_FIELDS, never from raw input.

Usage:
    store = CatalogStore("sqlite:///:memory:")
    product_id = store.create_product(product)
    store.create_review(Review(review="Great", rating=5, product_id=product_id, user_id=7))
    store.get_product(product_id).ratings_average   # 5.0
    store.close()
"""

import json
import re
import unicodedata
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from catalog.geo import haversine, radius_for
from catalog.models import DEFAULT_RATINGS_AVERAGE, Price, Product, Review
from catalog.query import ListQuery
from core.config import get_settings

# Products at or above this average feed the stats endpoint.
STATS_MIN_RATING = 4.5

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(40), nullable=False, unique=True),
    Column("slug", String(60), nullable=False, index=True),
    Column("type", String(20), nullable=False),
    Column("ratings_average", Float, nullable=False, server_default=str(DEFAULT_RATINGS_AVERAGE)),
    Column("ratings_quantity", Integer, nullable=False, server_default="0"),
    Column("price_usd", Float, nullable=False),
    Column("price_eur", Float, nullable=False),
    Column("price_nis", Float, nullable=False),
    Column("discount_usd", Float),
    Column("discount_eur", Float),
    Column("discount_nis", Float),
    Column("description", Text),
    Column("image_cover", String(255)),
    Column("images", Text),  # JSON array serialized as text
    Column("developer", Text),  # JSON array
    Column("publisher", Text),  # JSON array
    Column("release_date", String(10)),  # YYYY-MM-DD
    Column("start_lat", Float),
    Column("start_lng", Float),
    Column("secret_product", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_reviews = Table(
    "reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("review", Text, nullable=False),
    Column("rating", Integer),
    Column("product_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("product_id", "user_id", name="uq_review_product_user"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(value: str) -> str:
    """Lowercase ASCII slug: "Half-Life 2: Episode One" -> "half-life-2-episode-one"."""
    ascii_name = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")


def round_rating(value: float) -> float:
    """Round to one decimal: 4.666 -> 4.7."""
    return round(value * 10) / 10


def _product_values(product: Product) -> dict:
    """Flatten a Product into column values (excluding id and timestamps)."""
    discount = product.price_discount
    return {
        "name": product.name,
        "slug": slugify(product.name),
        "type": product.type,
        "ratings_average": round_rating(product.ratings_average),
        "ratings_quantity": product.ratings_quantity,
        "price_usd": product.price.usd,
        "price_eur": product.price.eur,
        "price_nis": product.price.nis,
        "discount_usd": discount.usd if discount else None,
        "discount_eur": discount.eur if discount else None,
        "discount_nis": discount.nis if discount else None,
        "description": product.description,
        "image_cover": product.image_cover,
        "images": json.dumps(product.images),
        "developer": json.dumps(product.developer),
        "publisher": json.dumps(product.publisher),
        "release_date": product.release_date,
        "start_lat": product.start_lat,
        "start_lng": product.start_lng,
        "secret_product": product.secret_product,
    }


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode; set per-connection because PRAGMAs are not pooled."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so one connection
            # may be touched from several threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, product: Product) -> int:
        """Insert a product and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the name is already taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _products.insert().values(**_product_values(product), created_at=now, updated_at=now)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.engine.connect() as conn:
            row = conn.execute(_products.select().where(_products.c.id == product_id)).fetchone()
        return _row_to_product(row) if row is not None else None

    def update_product(self, product_id: int, **fields) -> bool:
        """Update product fields by domain name. Returns False if not found.

        Accepts any Product field except id/slug/timestamps. price and
        price_discount take Price instances (price_discount may be None).
        Renaming regenerates the slug. Raises IntegrityError on a duplicate name.
        """
        values: dict = {}
        for key, value in fields.items():
            if key == "price":
                values.update(price_usd=value.usd, price_eur=value.eur, price_nis=value.nis)
            elif key == "price_discount":
                values.update(
                    discount_usd=value.usd if value else None,
                    discount_eur=value.eur if value else None,
                    discount_nis=value.nis if value else None,
                )
            elif key in ("images", "developer", "publisher"):
                values[key] = json.dumps(value)
            elif key == "ratings_average":
                values[key] = round_rating(value)
            else:
                values[key] = value
        if "name" in fields:
            values["slug"] = slugify(fields["name"])
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_products.update().where(_products.c.id == product_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_product(self, product_id: int) -> bool:
        """Delete a product and its reviews. Returns False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_products.delete().where(_products.c.id == product_id))
            conn.execute(_reviews.delete().where(_reviews.c.product_id == product_id))
            conn.commit()
        return result.rowcount > 0

    def list_products(self, query: Optional[ListQuery] = None) -> list[Product]:
        """Return products matching the filters, sorted and paginated.

        Default order is newest first, with id as a stable tie-breaker.
        """
        query = query or ListQuery()
        stmt = _products.select()
        for name, op, value in query.filters:
            col = _products.c[name]
            if op == "gte":
                stmt = stmt.where(col >= value)
            elif op == "gt":
                stmt = stmt.where(col > value)
            elif op == "lte":
                stmt = stmt.where(col <= value)
            elif op == "lt":
                stmt = stmt.where(col < value)
            else:
                stmt = stmt.where(col == value)
        if query.sort:
            stmt = stmt.order_by(*[_products.c[n].desc() if desc else _products.c[n].asc() for n, desc in query.sort])
        else:
            stmt = stmt.order_by(_products.c.created_at.desc())
        stmt = stmt.order_by(_products.c.id.asc()).limit(query.limit).offset(query.offset)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_product(r) for r in rows]

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def product_stats(self) -> list[dict]:
        """Group well-rated products by upper-cased type.

        Only products with ratings_average >= 4.5 are counted. Prices are USD.
        Sorted by average price ascending.
        """
        group_key = func.upper(_products.c.type)
        avg_price = func.avg(_products.c.price_usd)
        stmt = (
            select(
                group_key.label("type"),
                func.count().label("num_products"),
                func.sum(_products.c.ratings_quantity).label("num_ratings"),
                func.avg(_products.c.ratings_average).label("avg_rating"),
                avg_price.label("avg_price"),
                func.min(_products.c.price_usd).label("min_price"),
                func.max(_products.c.price_usd).label("max_price"),
            )
            .where(_products.c.ratings_average >= STATS_MIN_RATING)
            .group_by(group_key)
            .order_by(avg_price.asc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {
                "type": r.type,
                "num_products": r.num_products,
                "num_ratings": r.num_ratings or 0,
                "avg_rating": round(r.avg_rating, 2),
                "avg_price": round(r.avg_price, 2),
                "min_price": r.min_price,
                "max_price": r.max_price,
            }
            for r in rows
        ]

    def monthly_plan(self, year: int) -> list[dict]:
        """Count product releases per month of the given year.

        Returns up to 12 entries sorted by release count descending, then
        month ascending: {"month": 3, "num_product_starts": 2, "products": [...]}.
        """
        start, end = f"{year:04d}-01-01", f"{year:04d}-12-31"
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_products.c.name, _products.c.release_date)
                .where((_products.c.release_date >= start) & (_products.c.release_date <= end))
                .order_by(_products.c.release_date)
            ).fetchall()
        by_month: dict[int, list[str]] = defaultdict(list)
        for row in rows:
            by_month[int(row.release_date[5:7])].append(row.name)
        plan = [
            {"month": month, "num_product_starts": len(names), "products": names} for month, names in by_month.items()
        ]
        plan.sort(key=lambda p: (-p["num_product_starts"], p["month"]))
        return plan[:12]

    # ------------------------------------------------------------------
    # Geospatial
    # ------------------------------------------------------------------

    def _located_products(self) -> list[Product]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _products.select().where(_products.c.start_lat.is_not(None) & _products.c.start_lng.is_not(None))
            ).fetchall()
        return [_row_to_product(r) for r in rows]

    def products_within(self, lat: float, lng: float, distance: float, unit: str) -> list[Product]:
        """Return located products within distance of (lat, lng)."""
        radius = radius_for(unit)
        return [
            p
            for p in self._located_products()
            if haversine(lat, lng, p.start_lat, p.start_lng, radius) <= distance
        ]

    def distances(self, lat: float, lng: float, unit: str) -> list[dict]:
        """Return {id, name, distance} for every located product, nearest first."""
        radius = radius_for(unit)
        rows = [
            {"id": p.id, "name": p.name, "distance": round(haversine(lat, lng, p.start_lat, p.start_lng, radius), 3)}
            for p in self._located_products()
        ]
        rows.sort(key=lambda r: r["distance"])
        return rows

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def create_review(self, review: Review) -> int:
        """Insert a review and refresh the product's rating aggregate.

        Raises IntegrityError if this user already reviewed this product.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _reviews.insert().values(
                    review=review.review,
                    rating=review.rating,
                    product_id=review.product_id,
                    user_id=review.user_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            review_id = result.inserted_primary_key[0]
        self._recalculate_ratings(review.product_id)
        return review_id

    def get_review(self, review_id: int) -> Optional[Review]:
        with self.engine.connect() as conn:
            row = conn.execute(_reviews.select().where(_reviews.c.id == review_id)).fetchone()
        return _row_to_review(row) if row is not None else None

    def list_reviews(self, product_id: Optional[int] = None) -> list[Review]:
        stmt = _reviews.select().order_by(_reviews.c.created_at.desc(), _reviews.c.id.desc())
        if product_id is not None:
            stmt = stmt.where(_reviews.c.product_id == product_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_review(r) for r in rows]

    def update_review(self, review_id: int, **fields) -> bool:
        """Update review text and/or rating, then refresh the product aggregate."""
        review = self.get_review(review_id)
        if review is None:
            return False
        with self.engine.connect() as conn:
            conn.execute(_reviews.update().where(_reviews.c.id == review_id).values(**fields))
            conn.commit()
        self._recalculate_ratings(review.product_id)
        return True

    def delete_review(self, review_id: int) -> bool:
        review = self.get_review(review_id)
        if review is None:
            return False
        with self.engine.connect() as conn:
            conn.execute(_reviews.delete().where(_reviews.c.id == review_id))
            conn.commit()
        self._recalculate_ratings(review.product_id)
        return True

    def _recalculate_ratings(self, product_id: int) -> None:
        """Rewrite ratings_quantity / ratings_average from the review rows.

        Reviews without a rating count toward quantity but not the average.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(func.count().label("n"), func.avg(_reviews.c.rating).label("avg")).where(
                    _reviews.c.product_id == product_id
                )
            ).fetchone()
            quantity = row.n or 0
            average = round_rating(row.avg) if row.avg is not None else DEFAULT_RATINGS_AVERAGE
            if quantity == 0:
                average = DEFAULT_RATINGS_AVERAGE
            conn.execute(
                _products.update()
                .where(_products.c.id == product_id)
                .values(ratings_quantity=quantity, ratings_average=average)
            )
            conn.commit()

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(func.count()).select_from(_products)).scalar()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_product(row) -> Product:
    discount = None
    if row.discount_usd is not None:
        discount = Price(usd=row.discount_usd, eur=row.discount_eur, nis=row.discount_nis)
    return Product(
        id=row.id,
        name=row.name,
        slug=row.slug,
        type=row.type,
        ratings_average=row.ratings_average,
        ratings_quantity=row.ratings_quantity,
        price=Price(usd=row.price_usd, eur=row.price_eur, nis=row.price_nis),
        price_discount=discount,
        description=row.description,
        image_cover=row.image_cover,
        images=json.loads(row.images) if row.images else [],
        developer=json.loads(row.developer) if row.developer else [],
        publisher=json.loads(row.publisher) if row.publisher else [],
        release_date=row.release_date,
        start_lat=row.start_lat,
        start_lng=row.start_lng,
        secret_product=bool(row.secret_product),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_review(row) -> Review:
    return Review(
        id=row.id,
        review=row.review,
        rating=row.rating,
        product_id=row.product_id,
        user_id=row.user_id,
        created_at=row.created_at,
    )
