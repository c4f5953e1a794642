"""
api/routes/v1/products.py -- Product catalog routes for the GameVault REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /products/top-5-cheap                                      -- alias: best rated, cheapest
  GET    /products/product-stats                                    -- per-type aggregates
  GET    /products/monthly-plan/{year}                              -- releases per month (staff)
  GET    /products/products-within/{distance}/center/{latlng}/unit/{unit}
  GET    /products/distances/{latlng}/unit/{unit}
  GET    /products                                                  -- filter/sort/project/paginate
  POST   /products                                                  -- create (admin, lead-guide)
  GET    /products/{product_id}                                     -- detail with reviews
  PATCH  /products/{product_id}                                     -- update (admin, lead-guide)
  DELETE /products/{product_id}                                     -- delete (admin, lead-guide)
  GET    /products/{product_id}/reviews                             -- reviews of one product
  POST   /products/{product_id}/reviews                             -- review as the caller (role user)

List query syntax is documented in catalog/query.py.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    DistanceRow,
    MonthlyPlanRow,
    ProductCreate,
    ProductPatch,
    ProductResponse,
    ProductStatsRow,
    ReviewCreate,
    ReviewResponse,
)
from auth.dependencies import restrict_to
from auth.models import User
from catalog.geo import parse_latlng, radius_for
from catalog.models import Product, Review
from catalog.query import ListQuery, parse_list_query
from catalog.store import CatalogStore

logger = logging.getLogger("gamevault.catalog")

# Auth policy:
# - reads: public
# - POST/PATCH/DELETE /products[/{id}]: admin, lead-guide
# - GET /products/monthly-plan/{year}: admin, lead-guide, guide
# - POST /products/{id}/reviews: user
router = APIRouter(prefix="/products")

_TOP_CHEAP_FIELDS = ["name", "price", "ratings_average", "description", "type"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _not_found(what: str = "Product") -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"No {what.lower()} found with that ID."},
    )


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message})


def _project(product: Product, fields: list[str]) -> dict:
    """Serialize a product, keeping only the requested fields (id always kept)."""
    data = ProductResponse.from_product(product).model_dump(exclude={"reviews"})
    if not fields:
        return data
    return {k: v for k, v in data.items() if k == "id" or k in fields}


def _list(store: CatalogStore, query: ListQuery) -> list[dict]:
    return [_project(p, query.fields) for p in store.list_products(query)]


def _parse_point(latlng: str, unit: str) -> tuple[float, float]:
    try:
        radius_for(unit)
        return parse_latlng(latlng)
    except ValueError as exc:
        raise _bad_request("invalid_location", str(exc)) from exc


# ---------------------------------------------------------------------------
# Aliases and aggregates
# ---------------------------------------------------------------------------


@router.get("/top-5-cheap")
def top_five_cheap(request: Request) -> list[dict]:
    """Five best-rated products, cheapest first among equal ratings."""
    query = ListQuery(
        sort=[("ratings_average", True), ("price_usd", False)],
        fields=_TOP_CHEAP_FIELDS,
        limit=5,
    )
    return _list(request.app.state.catalog, query)


@router.get("/product-stats", response_model=list[ProductStatsRow])
def product_stats(request: Request) -> list[ProductStatsRow]:
    store: CatalogStore = request.app.state.catalog
    return [ProductStatsRow(**row) for row in store.product_stats()]


@router.get(
    "/monthly-plan/{year}",
    response_model=list[MonthlyPlanRow],
    dependencies=[Depends(restrict_to("admin", "lead-guide", "guide"))],
)
def monthly_plan(request: Request, year: int) -> list[MonthlyPlanRow]:
    store: CatalogStore = request.app.state.catalog
    return [MonthlyPlanRow(**row) for row in store.monthly_plan(year)]


# ---------------------------------------------------------------------------
# Geospatial
# ---------------------------------------------------------------------------


@router.get("/products-within/{distance}/center/{latlng}/unit/{unit}", response_model=list[ProductResponse])
def products_within(request: Request, distance: float, latlng: str, unit: str) -> list[ProductResponse]:
    """Products whose start location lies within distance of latlng.

    e.g. /products-within/233/center/34.111745,-118.113491/unit/mi
    """
    lat, lng = _parse_point(latlng, unit)
    store: CatalogStore = request.app.state.catalog
    return [ProductResponse.from_product(p) for p in store.products_within(lat, lng, distance, unit)]


@router.get("/distances/{latlng}/unit/{unit}", response_model=list[DistanceRow])
def distances(request: Request, latlng: str, unit: str) -> list[DistanceRow]:
    lat, lng = _parse_point(latlng, unit)
    store: CatalogStore = request.app.state.catalog
    return [DistanceRow(**row) for row in store.distances(lat, lng, unit)]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.get("")
def list_products(request: Request) -> list[dict]:
    """List products. See catalog/query.py for filter, sort, fields, and paging syntax."""
    try:
        query = parse_list_query(request.query_params.multi_items())
    except ValueError as exc:
        raise _bad_request("invalid_query", str(exc)) from exc
    return _list(request.app.state.catalog, query)


@router.post(
    "",
    response_model=ProductResponse,
    status_code=201,
    dependencies=[Depends(restrict_to("admin", "lead-guide"))],
)
@limiter.limit("30/minute")
def create_product(request: Request, body: ProductCreate) -> ProductResponse:
    store: CatalogStore = request.app.state.catalog
    product = Product(
        name=body.name,
        type=body.type.value,
        price=body.price.to_domain(),
        price_discount=body.price_discount.to_domain() if body.price_discount else None,
        description=body.description,
        image_cover=body.image_cover,
        images=body.images,
        developer=body.developer,
        publisher=body.publisher,
        release_date=body.release_date,
        start_lat=body.start_location.lat if body.start_location else None,
        start_lng=body.start_location.lng if body.start_location else None,
        secret_product=body.secret_product,
    )
    try:
        product_id = store.create_product(product)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A product with that name already exists."},
        ) from exc
    logger.info("Product %s created", product_id)
    return ProductResponse.from_product(store.get_product(product_id))


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(request: Request, product_id: int) -> ProductResponse:
    """Product detail, including its reviews."""
    store: CatalogStore = request.app.state.catalog
    product = store.get_product(product_id)
    if product is None:
        raise _not_found()
    return ProductResponse.from_product(product, reviews=store.list_reviews(product_id))


@router.patch(
    "/{product_id}",
    response_model=ProductResponse,
    dependencies=[Depends(restrict_to("admin", "lead-guide"))],
)
def update_product(request: Request, product_id: int, body: ProductPatch) -> ProductResponse:
    store: CatalogStore = request.app.state.catalog
    existing = store.get_product(product_id)
    if existing is None:
        raise _not_found()

    sent = body.model_dump(exclude_unset=True)
    updates: dict = {}
    for key in sent:
        if key == "price":
            updates["price"] = body.price.to_domain()
        elif key == "price_discount":
            updates["price_discount"] = body.price_discount.to_domain() if body.price_discount else None
        elif key == "type":
            updates["type"] = body.type.value
        elif key == "start_location":
            loc = body.start_location
            updates["start_lat"] = loc.lat if loc else None
            updates["start_lng"] = loc.lng if loc else None
        else:
            updates[key] = sent[key]
    if not updates:
        raise _bad_request("no_changes", "No fields to update.")

    price = updates.get("price", existing.price)
    discount = updates.get("price_discount", existing.price_discount)
    if discount is not None and (discount.usd >= price.usd or discount.eur >= price.eur or discount.nis >= price.nis):
        raise _bad_request("invalid_discount", "Discount price should be below the regular price.")

    try:
        store.update_product(product_id, **updates)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A product with that name already exists."},
        ) from exc
    return ProductResponse.from_product(store.get_product(product_id))


@router.delete(
    "/{product_id}",
    status_code=204,
    dependencies=[Depends(restrict_to("admin", "lead-guide"))],
)
def delete_product(request: Request, product_id: int) -> Response:
    store: CatalogStore = request.app.state.catalog
    if not store.delete_product(product_id):
        raise _not_found()
    logger.info("Product %s deleted", product_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Nested reviews
# ---------------------------------------------------------------------------


@router.get("/{product_id}/reviews", response_model=list[ReviewResponse])
def list_product_reviews(request: Request, product_id: int) -> list[ReviewResponse]:
    store: CatalogStore = request.app.state.catalog
    if store.get_product(product_id) is None:
        raise _not_found()
    return [ReviewResponse.from_review(r) for r in store.list_reviews(product_id)]


@router.post("/{product_id}/reviews", response_model=ReviewResponse, status_code=201)
@limiter.limit("30/minute")
def create_product_review(
    request: Request,
    product_id: int,
    body: ReviewCreate,
    current_user: User = Depends(restrict_to("user")),
) -> ReviewResponse:
    """Review a product as the caller. One review per user per product."""
    store: CatalogStore = request.app.state.catalog
    if store.get_product(product_id) is None:
        raise _not_found()
    try:
        review_id = store.create_review(
            Review(review=body.review, rating=body.rating, product_id=product_id, user_id=current_user.id)
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "You have already reviewed this product."},
        ) from exc
    return ReviewResponse.from_review(store.get_review(review_id))
