"""
catalog/query.py -- Parse list-endpoint query strings into a ListQuery.

Supported syntax (all optional):
  ?type=game                      equality filter
  ?price_usd[lte]=30              comparison filter: gte, gt, lte, lt
  ?sort=-ratings_average,price_usd comma list, "-" prefix = descending
  ?fields=name,price              response projection (id is always kept)
  ?page=2&limit=10                1-based pagination, limit capped at 100

Filter and sort names are checked against FILTERABLE_FIELDS before anything
reaches SQL, so the store can map them to columns without further validation.
fields names are response keys (price, not price_usd) and must be in
PROJECTABLE_FIELDS.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

FILTERABLE_FIELDS: dict[str, type] = {
    "name": str,
    "type": str,
    "ratings_average": float,
    "ratings_quantity": int,
    "price_usd": float,
    "price_eur": float,
    "price_nis": float,
    "release_date": str,
    "created_at": str,
    "secret_product": bool,
}

# Keys of a serialized product; "fields" selects among these, not columns.
PROJECTABLE_FIELDS = frozenset(
    {
        "id",
        "name",
        "slug",
        "type",
        "ratings_average",
        "ratings_quantity",
        "price",
        "price_discount",
        "description",
        "image_cover",
        "images",
        "developer",
        "publisher",
        "release_date",
        "start_location",
        "secret_product",
        "created_at",
        "updated_at",
    }
)

OPERATORS = ("eq", "gte", "gt", "lte", "lt")
RESERVED_PARAMS = ("page", "sort", "limit", "fields")
DEFAULT_LIMIT = 100
MAX_LIMIT = 100

_FILTER_KEY = re.compile(r"^(?P<field>[a-z_]+)(?:\[(?P<op>[a-z]+)\])?$")


@dataclass
class ListQuery:
    filters: list[tuple[str, str, object]] = field(default_factory=list)
    sort: list[tuple[str, bool]] = field(default_factory=list)  # (field, descending)
    fields: list[str] = field(default_factory=list)
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _coerce(field_name: str, raw: str) -> object:
    kind = FILTERABLE_FIELDS[field_name]
    if kind is bool:
        lowered = raw.lower()
        if lowered not in ("true", "false", "1", "0"):
            raise ValueError(f"{field_name} must be true or false")
        return lowered in ("true", "1")
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{field_name} must be a {kind.__name__}") from None


def _positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1")
    return value


def parse_list_query(params: Iterable[tuple[str, str]]) -> ListQuery:
    """Build a ListQuery from (key, value) query pairs. Raises ValueError on bad input."""
    query = ListQuery()
    for key, raw in params:
        if key == "page":
            query.page = _positive_int("page", raw)
        elif key == "limit":
            query.limit = min(_positive_int("limit", raw), MAX_LIMIT)
        elif key == "sort":
            query.sort = []
            for part in filter(None, (p.strip() for p in raw.split(","))):
                descending = part.startswith("-")
                name = part.lstrip("-")
                if name not in FILTERABLE_FIELDS:
                    raise ValueError(f"Cannot sort by {name!r}")
                query.sort.append((name, descending))
        elif key == "fields":
            query.fields = [f.strip() for f in raw.split(",") if f.strip()]
            unknown = [f for f in query.fields if f not in PROJECTABLE_FIELDS]
            if unknown:
                raise ValueError(f"Cannot select field {unknown[0]!r}")
        else:
            match = _FILTER_KEY.match(key)
            if match is None or match.group("field") not in FILTERABLE_FIELDS:
                raise ValueError(f"Cannot filter by {key!r}")
            op = match.group("op") or "eq"
            if op not in OPERATORS:
                raise ValueError(f"Unknown operator {op!r}")
            name = match.group("field")
            query.filters.append((name, op, _coerce(name, raw)))
    return query
