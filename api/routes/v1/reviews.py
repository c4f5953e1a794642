"""
api/routes/v1/reviews.py -- Single-review routes.

Routes:
  GET    /reviews/{review_id}   -- public
  PATCH  /reviews/{review_id}   -- author or admin
  DELETE /reviews/{review_id}   -- author or admin

Creating a review lives under /products/{product_id}/reviews because a
review always belongs to exactly one product. Every write refreshes the
product's rating aggregate inside CatalogStore.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import ReviewPatch, ReviewResponse
from auth.dependencies import get_current_user
from auth.models import User
from catalog.models import Review
from catalog.store import CatalogStore

router = APIRouter(prefix="/reviews")


def _load_owned(store: CatalogStore, review_id: int, user: User) -> Review:
    """Fetch a review the caller may modify. IDOR guard: author or admin only."""
    review = store.get_review(review_id)
    if review is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No review found with that ID."},
        )
    if review.user_id != user.id and user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only modify your own reviews."},
        )
    return review


@router.get("/{review_id}", response_model=ReviewResponse)
def get_review(request: Request, review_id: int) -> ReviewResponse:
    store: CatalogStore = request.app.state.catalog
    review = store.get_review(review_id)
    if review is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No review found with that ID."},
        )
    return ReviewResponse.from_review(review)


@router.patch("/{review_id}", response_model=ReviewResponse)
def update_review(
    request: Request,
    review_id: int,
    body: ReviewPatch,
    current_user: User = Depends(get_current_user),
) -> ReviewResponse:
    store: CatalogStore = request.app.state.catalog
    _load_owned(store, review_id, current_user)
    updates = body.model_dump(exclude_unset=True)
    if updates.get("review", "") is None:
        del updates["review"]  # review text is required; null leaves it unchanged
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store.update_review(review_id, **updates)
    return ReviewResponse.from_review(store.get_review(review_id))


@router.delete("/{review_id}", status_code=204)
def delete_review(
    request: Request,
    review_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    store: CatalogStore = request.app.state.catalog
    _load_owned(store, review_id, current_user)
    store.delete_review(review_id)
    return Response(status_code=204)
