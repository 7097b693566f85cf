"""Review routes.

Public:
- GET  /product/{product_id}: product reviews with summary
- GET  /seller/{seller_id}: seller reviews with summary
- GET  /{review_id}: one review
- POST /helpful/{review_id}: add a helpful vote

Authenticated (bearer token):
- POST   /: create a review
- PATCH  /{review_id}: update own review
- DELETE /{review_id}: delete own review (admins: any review)
- GET    /user/my-reviews: caller's reviews
"""
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from src.api.dependencies import (
    Identity,
    get_optional_token,
    get_review_service,
    require_roles,
)
from src.api.schemas import (
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    DEFAULT_SORT_BY,
    MAX_LIMIT,
    HelpfulVoteResponse,
    MessageResponse,
    ReviewCreateRequest,
    ReviewFilters,
    ReviewListResponse,
    ReviewMutationResponse,
    ReviewsSummaryResponse,
    ReviewUpdateRequest,
    ReviewWithAuthorResponse,
    SingleReviewResponse,
    SortField,
    TargetReviewListResponse,
)
from src.lib.settings import settings
from src.services.review_service import ReviewPage, ReviewService


router = APIRouter(prefix=settings.api_prefix, tags=["reviews"])


def _page_filters(
    sort_by: SortField = Query(DEFAULT_SORT_BY, alias="sortBy"),
    order: Literal["1", "-1"] = Query("-1", description="1 ascending, -1 descending"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    page: int = Query(DEFAULT_PAGE, ge=1),
) -> ReviewFilters:
    return ReviewFilters(sort_by=sort_by, order=int(order), limit=limit, page=page)


def _target_filters(
    base: ReviewFilters = Depends(_page_filters),
    rating: Optional[int] = Query(None, ge=1, le=5, description="Only reviews with this rating"),
) -> ReviewFilters:
    return base.model_copy(update={"rating": rating})


def _target_list_response(page: ReviewPage) -> TargetReviewListResponse:
    summary = page.summary
    return TargetReviewListResponse(
        reviews=[ReviewWithAuthorResponse.from_enriched(r) for r in page.reviews],
        total=page.total,
        pages=page.pages,
        summary=ReviewsSummaryResponse(
            average_rating=summary.average_rating,
            total_reviews=summary.total_reviews,
            rating_distribution=summary.rating_distribution,
            verified_purchases=summary.verified_purchases,
        ),
    )


# Public routes

@router.get(
    "/product/{product_id}",
    response_model=TargetReviewListResponse,
    summary="List product reviews",
)
async def get_product_reviews(
    product_id: UUID,
    filters: ReviewFilters = Depends(_target_filters),
    token: str = Depends(get_optional_token),
    review_service: ReviewService = Depends(get_review_service),
):
    """Page of a product's reviews plus the summary over all of them."""
    page = await review_service.list_product_reviews(product_id, filters, token)
    return _target_list_response(page)


@router.get(
    "/seller/{seller_id}",
    response_model=TargetReviewListResponse,
    summary="List seller reviews",
)
async def get_seller_reviews(
    seller_id: UUID,
    filters: ReviewFilters = Depends(_target_filters),
    token: str = Depends(get_optional_token),
    review_service: ReviewService = Depends(get_review_service),
):
    page = await review_service.list_seller_reviews(seller_id, filters, token)
    return _target_list_response(page)


@router.get(
    "/user/my-reviews",
    response_model=ReviewListResponse,
    summary="List the caller's reviews",
)
async def get_my_reviews(
    filters: ReviewFilters = Depends(_page_filters),
    identity: Identity = Depends(require_roles()),
    review_service: ReviewService = Depends(get_review_service),
):
    page = await review_service.list_user_reviews(identity.id, filters, identity.token)
    return ReviewListResponse(
        reviews=[ReviewWithAuthorResponse.from_enriched(r) for r in page.reviews],
        total=page.total,
        pages=page.pages,
    )


@router.get(
    "/{review_id}",
    response_model=SingleReviewResponse,
    summary="Get a review",
)
async def get_review(
    review_id: UUID,
    token: str = Depends(get_optional_token),
    review_service: ReviewService = Depends(get_review_service),
):
    enriched = await review_service.get_review_by_id(review_id, token)
    return SingleReviewResponse(review=ReviewWithAuthorResponse.from_enriched(enriched))


@router.post(
    "/helpful/{review_id}",
    response_model=HelpfulVoteResponse,
    summary="Mark a review as helpful",
)
def mark_review_as_helpful(
    review_id: UUID,
    review_service: ReviewService = Depends(get_review_service),
):
    """Add one helpful vote. Open to anyone, any number of times."""
    votes = review_service.mark_review_as_helpful(review_id)
    return HelpfulVoteResponse(message="Review marked as helpful", helpful_votes=votes)


# Authenticated routes

@router.post(
    "/",
    response_model=ReviewMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a review",
)
async def add_review(
    payload: ReviewCreateRequest,
    identity: Identity = Depends(require_roles()),
    review_service: ReviewService = Depends(get_review_service),
):
    """Create a product or seller review as the authenticated user.

    Raises:
        401: missing or invalid token
        404: product not found
        409: the user already reviewed this target
        422: invalid payload
    """
    enriched = await review_service.add_review(identity.id, payload, identity.token)
    return ReviewMutationResponse(
        message="Review added successfully",
        review=ReviewWithAuthorResponse.from_enriched(enriched),
    )


@router.patch(
    "/{review_id}",
    response_model=ReviewMutationResponse,
    summary="Update own review",
)
async def update_review(
    review_id: UUID,
    payload: ReviewUpdateRequest,
    identity: Identity = Depends(require_roles()),
    review_service: ReviewService = Depends(get_review_service),
):
    enriched = await review_service.update_review(
        review_id,
        identity.id,
        payload.changes(),
        identity.token,
    )
    return ReviewMutationResponse(
        message="Review updated successfully",
        review=ReviewWithAuthorResponse.from_enriched(enriched),
    )


@router.delete(
    "/{review_id}",
    response_model=MessageResponse,
    summary="Delete a review",
)
async def delete_review(
    review_id: UUID,
    identity: Identity = Depends(require_roles()),
    review_service: ReviewService = Depends(get_review_service),
):
    """Delete the caller's review; admins may delete any review."""
    return await review_service.delete_review(
        review_id,
        identity.id,
        identity.is_admin,
        identity.token,
    )
