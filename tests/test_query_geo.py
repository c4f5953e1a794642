"""Unit tests for catalog/query.py and catalog/geo.py."""

import math

import pytest

from catalog.geo import EARTH_RADIUS, haversine, parse_latlng, radius_for
from catalog.query import MAX_LIMIT, parse_list_query


class TestParseListQuery:
    def test_defaults(self) -> None:
        query = parse_list_query([])
        assert query.filters == []
        assert query.sort == []
        assert query.page == 1
        assert query.limit == 100
        assert query.offset == 0

    def test_filters_are_coerced(self) -> None:
        query = parse_list_query(
            [("type", "game"), ("price_usd[lte]", "30"), ("ratings_quantity[gt]", "3"), ("secret_product", "false")]
        )
        assert query.filters == [
            ("type", "eq", "game"),
            ("price_usd", "lte", 30.0),
            ("ratings_quantity", "gt", 3),
            ("secret_product", "eq", False),
        ]

    def test_sort_and_fields(self) -> None:
        query = parse_list_query([("sort", "-ratings_average,price_usd"), ("fields", "name, price")])
        assert query.sort == [("ratings_average", True), ("price_usd", False)]
        assert query.fields == ["name", "price"]

    def test_pagination(self) -> None:
        query = parse_list_query([("page", "3"), ("limit", "10")])
        assert query.offset == 20
        assert parse_list_query([("limit", "5000")]).limit == MAX_LIMIT

    @pytest.mark.parametrize(
        "params",
        [
            [("password", "x")],
            [("price_usd[ne]", "3")],
            [("price_usd", "cheap")],
            [("sort", "hashed_password")],
            [("page", "0")],
            [("limit", "ten")],
            [("secret_product", "maybe")],
            [("fields", "name,price_usd")],
            [("fields", "hashed_password")],
        ],
    )
    def test_rejects_bad_input(self, params) -> None:
        with pytest.raises(ValueError):
            parse_list_query(params)


class TestGeo:
    def test_parse_latlng(self) -> None:
        assert parse_latlng("34.111745,-118.113491") == (34.111745, -118.113491)

    @pytest.mark.parametrize("value", ["34.1", "34.1,", ",-118", "a,b", "91,0", "0,181"])
    def test_parse_latlng_rejects(self, value) -> None:
        with pytest.raises(ValueError):
            parse_latlng(value)

    def test_radius_for(self) -> None:
        assert radius_for("mi") == 3963.2
        assert radius_for("km") == 6378.1
        with pytest.raises(ValueError):
            radius_for("au")

    def test_haversine_quarter_circumference(self) -> None:
        radius = EARTH_RADIUS["km"]
        assert haversine(0, 0, 0, 90, radius) == pytest.approx(math.pi * radius / 2)

    def test_haversine_is_symmetric(self) -> None:
        a = haversine(34.05, -118.24, 40.71, -74.0, EARTH_RADIUS["mi"])
        b = haversine(40.71, -74.0, 34.05, -118.24, EARTH_RADIUS["mi"])
        assert a == pytest.approx(b)
        assert 2400 < a < 2500
