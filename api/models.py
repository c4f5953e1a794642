"""
API request and response models for GameVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from auth.models import User
from catalog.models import Price, Product, Review

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# bcrypt ignores input past 72 bytes; cap well below so two different long
# passwords can never hash the same.
_Password = Annotated[str, Field(min_length=8, max_length=64)]


def _lower(value: str) -> str:
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProductTypeEnum(str, Enum):
    franchise = "franchise"
    game = "game"
    dlc = "dlc"
    company = "company"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/users/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: _Password
    password_confirm: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _lower(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login.

    Fields are optional at the schema level so a missing field produces the
    400 "missing_credentials" error rather than a generic 422.
    """

    email: Optional[str] = None
    password: Optional[str] = None


class EmailRequest(BaseModel):
    """Body for forgot-password and send-verification-email."""

    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    password: _Password
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class UpdatePasswordRequest(BaseModel):
    password_current: str = Field(min_length=1, max_length=64)
    password: _Password
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self) -> "UpdatePasswordRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class NewEmailRequest(BaseModel):
    """Body for POST /api/v1/users/send-new-email. Presence is checked by the route."""

    current_email: Optional[str] = None
    new_email: Optional[str] = None
    password: Optional[str] = None


class GoogleLoginRequest(BaseModel):
    id_token: str = Field(min_length=1)


class GoogleCodeRequest(BaseModel):
    code: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Users -- response models
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """Public projection of a User. No password, token, or google_id fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    photo: Optional[str]
    locale: Optional[str]
    role: str
    is_email_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            photo=user.photo,
            locale=user.locale,
            role=user.role,
            is_email_verified=user.is_email_verified,
        )


class AuthResponse(BaseModel):
    """Body of every response that starts a session."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    token: str
    user: UserPublic


class OAuthProviderInfo(BaseModel):
    """One entry in GET /api/v1/users/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Catalog -- products
# ---------------------------------------------------------------------------


class PriceModel(BaseModel):
    usd: float = Field(gt=0)
    eur: float = Field(gt=0)
    nis: float = Field(gt=0)

    def to_domain(self) -> Price:
        return Price(usd=self.usd, eur=self.eur, nis=self.nis)


class StartLocation(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


def _check_discount(price: Optional[PriceModel], discount: Optional[PriceModel]) -> None:
    if price is None or discount is None:
        return
    for currency in ("usd", "eur", "nis"):
        if getattr(discount, currency) >= getattr(price, currency):
            raise ValueError(f"Discount price in {currency.upper()} should be below the regular price")


class ProductCreate(BaseModel):
    """Request body for POST /api/v1/products."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=40)
    type: ProductTypeEnum
    price: PriceModel
    price_discount: Optional[PriceModel] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    image_cover: Optional[str] = Field(default=None, max_length=255)
    images: list[str] = Field(default_factory=list, max_length=20)
    developer: list[str] = Field(default_factory=list)
    publisher: list[str] = Field(default_factory=list)
    release_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_location: Optional[StartLocation] = None
    secret_product: bool = False

    @model_validator(mode="after")
    def discount_below_price(self) -> "ProductCreate":
        _check_discount(self.price, self.price_discount)
        return self


# price_discount and start_location accept null to clear them; these do not.
_PATCH_NOT_NULL = frozenset({"name", "type", "price", "images", "developer", "publisher", "secret_product"})


class ProductPatch(BaseModel):
    """Request body for PATCH /api/v1/products/{id}. Only sent fields change.

    A discount sent without a price is checked against the stored price by
    the route, since the model cannot see it.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=40)
    type: Optional[ProductTypeEnum] = None
    price: Optional[PriceModel] = None
    price_discount: Optional[PriceModel] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    image_cover: Optional[str] = Field(default=None, max_length=255)
    images: Optional[list[str]] = Field(default=None, max_length=20)
    developer: Optional[list[str]] = None
    publisher: Optional[list[str]] = None
    release_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_location: Optional[StartLocation] = None
    secret_product: Optional[bool] = None

    @model_validator(mode="after")
    def discount_below_price(self) -> "ProductPatch":
        _check_discount(self.price, self.price_discount)
        return self

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "ProductPatch":
        nulled = sorted(k for k in self.model_fields_set & _PATCH_NOT_NULL if getattr(self, k) is None)
        if nulled:
            raise ValueError(f"These fields cannot be null: {', '.join(nulled)}")
        return self


class ReviewResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    review: str
    rating: Optional[int]
    product_id: int
    user_id: int
    created_at: str

    @classmethod
    def from_review(cls, review: Review) -> "ReviewResponse":
        return cls(
            id=review.id,
            review=review.review,
            rating=review.rating,
            product_id=review.product_id,
            user_id=review.user_id,
            created_at=review.created_at,
        )


class ProductResponse(BaseModel):
    """Full product representation. reviews is populated on the detail route only."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    type: str
    ratings_average: float
    ratings_quantity: int
    price: PriceModel
    price_discount: Optional[PriceModel] = None
    description: Optional[str] = None
    image_cover: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    developer: list[str] = Field(default_factory=list)
    publisher: list[str] = Field(default_factory=list)
    release_date: Optional[str] = None
    start_location: Optional[StartLocation] = None
    secret_product: bool = False
    created_at: str
    updated_at: str
    reviews: Optional[list[ReviewResponse]] = None

    @classmethod
    def from_product(cls, product: Product, reviews: Optional[list[Review]] = None) -> "ProductResponse":
        discount = product.price_discount
        location = None
        if product.start_lat is not None and product.start_lng is not None:
            location = StartLocation(lat=product.start_lat, lng=product.start_lng)
        return cls(
            id=product.id,
            name=product.name,
            slug=product.slug,
            type=product.type,
            ratings_average=product.ratings_average,
            ratings_quantity=product.ratings_quantity,
            price=PriceModel(usd=product.price.usd, eur=product.price.eur, nis=product.price.nis),
            price_discount=PriceModel(usd=discount.usd, eur=discount.eur, nis=discount.nis) if discount else None,
            description=product.description,
            image_cover=product.image_cover,
            images=product.images,
            developer=product.developer,
            publisher=product.publisher,
            release_date=product.release_date,
            start_location=location,
            secret_product=product.secret_product,
            created_at=product.created_at,
            updated_at=product.updated_at,
            reviews=[ReviewResponse.from_review(r) for r in reviews] if reviews is not None else None,
        )


class ProductStatsRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    num_products: int
    num_ratings: int
    avg_rating: float
    avg_price: float
    min_price: float
    max_price: float


class MonthlyPlanRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: int
    num_product_starts: int
    products: list[str]


class DistanceRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    distance: float


# ---------------------------------------------------------------------------
# Catalog -- reviews
# ---------------------------------------------------------------------------


class ReviewCreate(BaseModel):
    """Request body for POST /api/v1/products/{id}/reviews. The author is the caller."""

    model_config = ConfigDict(str_strip_whitespace=True)

    review: str = Field(min_length=1, max_length=2000)
    rating: Optional[int] = Field(default=None, ge=1, le=5)


class ReviewPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    review: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
