"""Review service: lifecycle of reviews and their rating summaries.

Handles:
1. Create/read/update/delete of product and seller reviews
2. Listings with sorting, pagination and rating filter
3. Rating summaries computed from the stored reviews on every call
4. Rating sync: pushing a product's average rating and review count to the
   product service after each product-review mutation (best-effort)
"""
import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.middleware.error_handler import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from src.api.schemas import ReviewCreateRequest, ReviewFilters
from src.lib.logging import get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.models.reviews import Review, ReviewRating, TargetType
from src.services.service_clients import (
    BestEffortResult,
    OrderServiceClient,
    ProductServiceClient,
    UserProfile,
    UserServiceClient,
    get_order_client,
    get_product_client,
    get_user_client,
)

logger = get_logger(__name__)


SORT_COLUMNS = {
    "createdAt": Review.created_at,
    "updatedAt": Review.updated_at,
    "rating": Review.rating,
    "helpfulVotes": Review.helpful_votes,
}

UPDATABLE_FIELDS = ("rating", "title", "comment", "images")


def _empty_distribution() -> dict[int, int]:
    return {level.value: 0 for level in ReviewRating}


@dataclass
class ReviewsSummary:
    """Aggregate statistics over every review of one target."""
    average_rating: float = 0
    total_reviews: int = 0
    rating_distribution: dict[int, int] = field(default_factory=_empty_distribution)
    verified_purchases: int = 0


@dataclass
class EnrichedReview:
    """A review together with its author's display details."""
    review: Review
    user_name: str
    user_avatar: Optional[str] = None


@dataclass
class ReviewPage:
    reviews: list[EnrichedReview]
    total: int
    pages: int
    summary: Optional[ReviewsSummary] = None


def compute_summary(reviews: Iterable[Review]) -> ReviewsSummary:
    """Summarize a target's reviews. Pure; the mean is not rounded."""
    reviews = list(reviews)
    if not reviews:
        return ReviewsSummary()

    distribution = _empty_distribution()
    for review in reviews:
        distribution[review.rating] += 1

    return ReviewsSummary(
        average_rating=sum(review.rating for review in reviews) / len(reviews),
        total_reviews=len(reviews),
        rating_distribution=distribution,
        verified_purchases=sum(1 for review in reviews if review.is_verified_purchase),
    )


class ReviewService:
    """Review operations over one database session.

    Product lookups and author lookups are required for a response and
    propagate their errors; purchase verification and rating sync are
    best-effort and only log.
    """

    def __init__(
        self,
        session: Session,
        product_client: Optional[ProductServiceClient] = None,
        user_client: Optional[UserServiceClient] = None,
        order_client: Optional[OrderServiceClient] = None,
    ):
        self.session = session
        self.product_client = product_client or get_product_client()
        self.user_client = user_client or get_user_client()
        self.order_client = order_client or get_order_client()
        self.metrics = get_metrics_collector()

    # ===== Create =====

    async def add_review(
        self,
        user_id: UUID,
        data: ReviewCreateRequest,
        token: str,
    ) -> EnrichedReview:
        """Create a review for a product or a seller.

        Raises:
            NotFoundException / UpstreamServiceException: product cannot be confirmed
            ConflictException: the user already reviewed this target
            ValidationException: unknown target type
        """
        if data.target_type == TargetType.PRODUCT:
            await self.product_client.get_product(data.target_id, token)

            verification = await self.order_client.verify_purchase(user_id, data.target_id, token)
            if not verification.succeeded:
                log_with_context(
                    logger,
                    "warning",
                    "Purchase verification unavailable, review stored as unverified",
                    user_id=str(user_id),
                    target_id=str(data.target_id),
                    reason=verification.error,
                )
            is_verified_purchase = verification.value
        elif data.target_type == TargetType.SELLER:
            is_verified_purchase = True
        else:
            raise ValidationException(
                "Invalid target type",
                errors={"targetType": 'Target type must be either "product" or "seller"'},
            )

        self._ensure_not_reviewed(user_id, data.target_id, data.target_type)

        review = Review(
            user_id=user_id,
            target_id=data.target_id,
            target_type=data.target_type,
            rating=int(data.rating),
            title=data.title,
            comment=data.comment,
            images=list(data.images or []),
            is_verified_purchase=is_verified_purchase,
            is_edited=False,
            helpful_votes=0,
        )
        self._insert(review)

        self.metrics.increment_reviews("created", review.target_type.value)
        log_with_context(
            logger,
            "info",
            "Review created",
            review_id=str(review.id),
            user_id=str(user_id),
            target_type=review.target_type.value,
            target_id=str(review.target_id),
        )

        if review.target_type == TargetType.PRODUCT:
            await self._sync_product_rating(review.target_id, token)

        return await self._enrich(review, token)

    def _ensure_not_reviewed(self, user_id: UUID, target_id: UUID, target_type: TargetType) -> None:
        # Advisory only; the unique constraint decides races
        existing = self.session.execute(
            select(Review.id).where(
                Review.user_id == user_id,
                Review.target_id == target_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictException(
                f"You have already reviewed this {target_type.value}",
                details={"review_id": str(existing)},
            )

    def _insert(self, review: Review) -> None:
        self.session.add(review)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictException(
                f"You have already reviewed this {review.target_type.value}",
            )
        self.session.refresh(review)

    # ===== Read =====

    async def get_review_by_id(self, review_id: UUID, token: str) -> EnrichedReview:
        review = self._get_review(review_id)
        return await self._enrich(review, token)

    async def list_product_reviews(
        self,
        product_id: UUID,
        filters: ReviewFilters,
        token: str,
    ) -> ReviewPage:
        return await self._list_target_reviews(product_id, TargetType.PRODUCT, filters, token)

    async def list_seller_reviews(
        self,
        seller_id: UUID,
        filters: ReviewFilters,
        token: str,
    ) -> ReviewPage:
        return await self._list_target_reviews(seller_id, TargetType.SELLER, filters, token)

    async def list_user_reviews(
        self,
        user_id: UUID,
        filters: ReviewFilters,
        token: str,
    ) -> ReviewPage:
        """The caller's own reviews; the rating filter does not apply here."""
        reviews, total = self._paginate([Review.user_id == user_id], filters)
        enriched = await self._enrich_many(reviews, token)
        return ReviewPage(
            reviews=enriched,
            total=total,
            pages=math.ceil(total / filters.limit),
        )

    async def _list_target_reviews(
        self,
        target_id: UUID,
        target_type: TargetType,
        filters: ReviewFilters,
        token: str,
    ) -> ReviewPage:
        conditions = [Review.target_id == target_id, Review.target_type == target_type]
        if filters.rating is not None:
            conditions.append(Review.rating == int(filters.rating))

        reviews, total = self._paginate(conditions, filters)
        summary = self.get_reviews_summary(target_id, target_type)
        enriched = await self._enrich_many(reviews, token)

        return ReviewPage(
            reviews=enriched,
            total=total,
            pages=math.ceil(total / filters.limit),
            summary=summary,
        )

    def _paginate(self, conditions: list, filters: ReviewFilters) -> tuple[list[Review], int]:
        column = SORT_COLUMNS[filters.sort_by]
        direction = column.asc() if filters.order == 1 else column.desc()

        stmt = (
            select(Review)
            .where(*conditions)
            .order_by(direction, Review.id)
            .offset(filters.skip)
            .limit(filters.limit)
        )
        reviews = list(self.session.execute(stmt).scalars().all())
        total = self.session.execute(
            select(func.count()).select_from(Review).where(*conditions)
        ).scalar_one()
        return reviews, total

    # ===== Summary =====

    def get_reviews_summary(self, target_id: UUID, target_type: TargetType) -> ReviewsSummary:
        """Recompute the summary from every stored review of the target."""
        reviews = self.session.execute(
            select(Review).where(
                Review.target_id == target_id,
                Review.target_type == target_type,
            )
        ).scalars().all()
        return compute_summary(reviews)

    # ===== Update =====

    async def update_review(
        self,
        review_id: UUID,
        user_id: UUID,
        changes: dict[str, Any],
        token: str,
    ) -> EnrichedReview:
        """Apply the provided fields to the caller's own review.

        Raises:
            NotFoundException: unknown review
            ForbiddenException: caller is not the author (admins included)
        """
        review = self._get_review(review_id)

        if review.user_id != user_id:
            raise ForbiddenException("You can only update your own reviews")

        for name, value in changes.items():
            if name not in UPDATABLE_FIELDS:
                continue
            if name == "rating":
                value = int(value)
            elif name == "images":
                value = list(value)
            setattr(review, name, value)

        review.is_edited = True
        self.session.commit()
        self.session.refresh(review)

        self.metrics.increment_reviews("updated", review.target_type.value)
        log_with_context(
            logger,
            "info",
            "Review updated",
            review_id=str(review.id),
            fields=sorted(changes),
        )

        if review.target_type == TargetType.PRODUCT:
            await self._sync_product_rating(review.target_id, token)

        return await self._enrich(review, token)

    # ===== Delete =====

    async def delete_review(
        self,
        review_id: UUID,
        user_id: UUID,
        is_admin: bool,
        token: str,
    ) -> dict[str, str]:
        """Permanently delete a review owned by the caller, or any review for admins."""
        review = self._get_review(review_id)

        if review.user_id != user_id and not is_admin:
            raise ForbiddenException("You can only delete your own reviews")

        target_type = review.target_type
        target_id = review.target_id
        by_admin = review.user_id != user_id

        self.session.delete(review)
        self.session.commit()

        self.metrics.increment_reviews("deleted", target_type.value)
        log_with_context(
            logger,
            "info",
            "Review deleted",
            review_id=str(review_id),
            deleted_by=str(user_id),
            by_admin=by_admin,
        )

        if target_type == TargetType.PRODUCT:
            await self._sync_product_rating(target_id, token)

        return {"message": "Review deleted successfully"}

    # ===== Helpful votes =====

    def mark_review_as_helpful(self, review_id: UUID) -> int:
        """Atomically add one helpful vote and return the new total."""
        result = self.session.execute(
            update(Review)
            .where(Review.id == review_id)
            .values(helpful_votes=Review.helpful_votes + 1)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundException("Review", str(review_id))
        self.session.commit()

        self.metrics.increment_helpful_votes()
        return self.session.execute(
            select(Review.helpful_votes).where(Review.id == review_id)
        ).scalar_one()

    # ===== Helpers =====

    def _get_review(self, review_id: UUID) -> Review:
        review = self.session.get(Review, review_id)
        if review is None:
            raise NotFoundException("Review", str(review_id))
        return review

    async def _sync_product_rating(self, product_id: UUID, token: str) -> BestEffortResult[bool]:
        """Push the product's current average rating and review count. Never raises."""
        try:
            summary = self.get_reviews_summary(product_id, TargetType.PRODUCT)
            result = await self.product_client.update_product_rating(
                product_id,
                summary.average_rating,
                summary.total_reviews,
                token,
            )
        except Exception as e:
            result = BestEffortResult.failed(False, str(e))

        if result.succeeded:
            self.metrics.increment_rating_sync("synced")
        else:
            self.metrics.increment_rating_sync("failed")
            log_with_context(
                logger,
                "error",
                "Failed to update product average rating",
                product_id=str(product_id),
                reason=result.error,
            )
        return result

    async def _enrich(self, review: Review, token: str) -> EnrichedReview:
        profile = await self.user_client.get_user(review.user_id, token)
        return EnrichedReview(
            review=review,
            user_name=profile.display_name,
            user_avatar=profile.avatar,
        )

    async def _enrich_many(self, reviews: list[Review], token: str) -> list[EnrichedReview]:
        """Attach author details; any failed lookup fails the whole listing."""
        user_ids = list(dict.fromkeys(review.user_id for review in reviews))
        profiles: list[UserProfile] = await asyncio.gather(
            *(self.user_client.get_user(user_id, token) for user_id in user_ids)
        )
        by_user = dict(zip(user_ids, profiles))
        return [
            EnrichedReview(
                review=review,
                user_name=by_user[review.user_id].display_name,
                user_avatar=by_user[review.user_id].avatar,
            )
            for review in reviews
        ]
