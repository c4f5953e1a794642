"""
catalog/models.py -- Domain dataclasses for the GameVault catalog.

These are pure data containers with zero logic. Rating aggregation, slugs,
and geospatial filtering live in catalog/store.py and catalog/geo.py.

Separation of concerns: these dataclasses are the catalog's domain truth,
just as auth/models.py is the identity layer's. Neither layer imports the other;
reviews refer to users by ID only.
"""

from dataclasses import dataclass, field
from typing import Optional

PRODUCT_TYPES = ("franchise", "game", "dlc", "company")

DEFAULT_RATINGS_AVERAGE = 4.5


@dataclass
class Price:
    """A price quoted in every currency the store sells in."""

    usd: float
    eur: float
    nis: float


@dataclass
class Product:
    """A sellable catalog entry.

    ratings_average / ratings_quantity are derived from reviews and rewritten
    by the store after every review change -- never set them by hand.

    start_lat / start_lng locate the product for geospatial queries (e.g. the
    studio or launch venue). Both are None for unlocated products.

    id is None before the record is written to the database.
    """

    name: str
    type: str  # "franchise" | "game" | "dlc" | "company"
    price: Price
    id: Optional[int] = None
    slug: str = ""  # derived from name on every write
    ratings_average: float = DEFAULT_RATINGS_AVERAGE
    ratings_quantity: int = 0
    price_discount: Optional[Price] = None
    description: Optional[str] = None
    image_cover: Optional[str] = None
    images: list[str] = field(default_factory=list)
    developer: list[str] = field(default_factory=list)
    publisher: list[str] = field(default_factory=list)
    release_date: Optional[str] = None  # YYYY-MM-DD
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    secret_product: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Review:
    """One user's review of one product. A user reviews a product at most once."""

    review: str
    product_id: int
    user_id: int
    rating: Optional[int] = None  # 1..5
    id: Optional[int] = None
    created_at: str = ""
