"""Tests for the review service against an in-memory store and fake downstream services."""
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select

from src.api.middleware.error_handler import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    UpstreamServiceException,
)
from src.api.schemas import ReviewCreateRequest, ReviewFilters
from src.lib.metrics import get_metrics_collector
from src.models.reviews import Review, TargetType
from src.services.review_service import ReviewService
from src.services.service_clients import UserServiceClient


TOKEN = "caller-token"


def product_payload(product_id, **overrides) -> ReviewCreateRequest:
    data = {
        "targetId": str(product_id),
        "targetType": "product",
        "rating": 4,
        "title": "Solid",
        "comment": "Works as described",
    }
    data.update(overrides)
    return ReviewCreateRequest.model_validate(data)


@pytest.fixture
def author(downstream):
    return downstream.add_user(uuid4(), first_name="Ada", last_name="Lovelace", avatar="http://img/ada.png")


@pytest.fixture
def product(downstream):
    return downstream.add_product(uuid4())


# ===== Add =====

@pytest.mark.asyncio
async def test_add_product_review(review_service, downstream, author, product):
    """Product review is stored, synced to the product service and enriched."""
    result = await review_service.add_review(author, product_payload(product), TOKEN)

    assert result.user_name == "Ada Lovelace"
    assert result.user_avatar == "http://img/ada.png"
    review = result.review
    assert review.id is not None
    assert review.user_id == author
    assert review.target_type == TargetType.PRODUCT
    assert review.rating == 4
    assert review.is_edited is False
    assert review.helpful_votes == 0
    assert review.images == []
    assert review.is_verified_purchase is False

    assert downstream.rating_updates == [
        {"product_id": str(product), "rating": 4.0, "numReviews": 1}
    ]
    assert get_metrics_collector().get_counter_value(
        "reviews_total", {"operation": "created", "target_type": "product"}
    ) == 1


@pytest.mark.asyncio
async def test_add_product_review_verified_purchase(review_service, downstream, author, product):
    downstream.purchases.add((str(author), str(product)))

    result = await review_service.add_review(author, product_payload(product), TOKEN)

    assert result.review.is_verified_purchase is True


@pytest.mark.asyncio
async def test_add_product_review_purchase_check_failure_defaults_unverified(
    review_service, downstream, author, product
):
    downstream.order_fail = True

    result = await review_service.add_review(author, product_payload(product), TOKEN)

    assert result.review.is_verified_purchase is False


@pytest.mark.asyncio
async def test_add_seller_review_is_verified_and_not_synced(review_service, downstream, author):
    seller_id = uuid4()
    payload = product_payload(seller_id, targetType="seller")

    result = await review_service.add_review(author, payload, TOKEN)

    assert result.review.target_type == TargetType.SELLER
    assert result.review.is_verified_purchase is True
    assert downstream.rating_updates == []
    # No product lookup, purchase check or rating sync for sellers
    assert all("product.test" not in str(r.url) and "order.test" not in str(r.url) for r in downstream.requests)


@pytest.mark.asyncio
async def test_add_review_unknown_product(review_service, db_session, author):
    with pytest.raises(NotFoundException):
        await review_service.add_review(author, product_payload(uuid4()), TOKEN)

    assert db_session.execute(select(Review)).scalars().all() == []


@pytest.mark.asyncio
async def test_add_review_product_service_down(review_service, downstream, db_session, author, product):
    downstream.product_lookup_fail = True

    with pytest.raises(UpstreamServiceException):
        await review_service.add_review(author, product_payload(product), TOKEN)

    assert db_session.execute(select(Review)).scalars().all() == []


@pytest.mark.asyncio
async def test_add_review_twice_conflicts(review_service, author, product):
    await review_service.add_review(author, product_payload(product), TOKEN)

    with pytest.raises(ConflictException, match="already reviewed"):
        await review_service.add_review(author, product_payload(product, rating=1), TOKEN)


@pytest.mark.asyncio
async def test_duplicate_across_target_types_conflicts(review_service, downstream, author, product):
    """Uniqueness is per (user, target) regardless of target type."""
    await review_service.add_review(author, product_payload(product), TOKEN)

    with pytest.raises(ConflictException):
        await review_service.add_review(author, product_payload(product, targetType="seller"), TOKEN)


@pytest.mark.asyncio
async def test_store_constraint_rejects_duplicate_when_precheck_passes(
    review_service, db_session, author, product, monkeypatch
):
    """A racing insert that slipped past the pre-check is stopped by the store."""
    await review_service.add_review(author, product_payload(product), TOKEN)
    monkeypatch.setattr(review_service, "_ensure_not_reviewed", lambda *args: None)

    with pytest.raises(ConflictException):
        await review_service.add_review(author, product_payload(product), TOKEN)

    # Session is usable again and still holds exactly one review
    reviews = db_session.execute(select(Review)).scalars().all()
    assert len(reviews) == 1


@pytest.mark.asyncio
async def test_add_review_user_lookup_failure_is_fatal(review_service, downstream, author, product):
    downstream.user_lookup_fail = True

    with pytest.raises(UpstreamServiceException):
        await review_service.add_review(author, product_payload(product), TOKEN)


# ===== Read =====

@pytest.mark.asyncio
async def test_get_review_by_id(review_service, downstream, make_review):
    review = make_review(user_id=downstream.add_user(uuid4()))

    result = await review_service.get_review_by_id(review.id, "")

    assert result.review.id == review.id
    assert result.user_name == "Jane Doe"


@pytest.mark.asyncio
async def test_get_review_by_id_not_found(review_service):
    with pytest.raises(NotFoundException):
        await review_service.get_review_by_id(uuid4(), "")


@pytest.mark.asyncio
async def test_get_review_by_id_fails_when_user_service_returns_no_user(
    db_session, product_client, order_client, make_review
):
    user_client = UserServiceClient(
        "http://user.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"user": None})),
    )
    service = ReviewService(
        db_session,
        product_client=product_client,
        user_client=user_client,
        order_client=order_client,
    )
    review = make_review()

    with pytest.raises(UpstreamServiceException):
        await service.get_review_by_id(review.id, TOKEN)


# ===== Listing =====

@pytest.mark.asyncio
async def test_list_product_reviews_pagination(review_service, downstream, make_review):
    product_id = uuid4()
    reviews = [
        make_review(user_id=downstream.add_user(uuid4()), target_id=product_id)
        for _ in range(25)
    ]
    newest_first = list(reversed(reviews))

    page = await review_service.list_product_reviews(
        product_id, ReviewFilters(page=2, limit=10), TOKEN
    )

    assert page.total == 25
    assert page.pages == 3
    assert [r.review.id for r in page.reviews] == [r.id for r in newest_first[10:20]]


@pytest.mark.asyncio
async def test_list_product_reviews_ascending_by_rating(review_service, downstream, make_review):
    product_id = uuid4()
    for rating in (3, 1, 5):
        make_review(user_id=downstream.add_user(uuid4()), target_id=product_id, rating=rating)

    page = await review_service.list_product_reviews(
        product_id, ReviewFilters(sort_by="rating", order=1), TOKEN
    )

    assert [r.review.rating for r in page.reviews] == [1, 3, 5]


@pytest.mark.asyncio
async def test_rating_filter_does_not_affect_summary(review_service, downstream, make_review):
    product_id = uuid4()
    for rating in (5, 5, 4, 3):
        make_review(user_id=downstream.add_user(uuid4()), target_id=product_id, rating=rating)

    page = await review_service.list_product_reviews(product_id, ReviewFilters(rating=5), TOKEN)

    assert [r.review.rating for r in page.reviews] == [5, 5]
    assert page.total == 2
    assert page.pages == 1
    assert page.summary.total_reviews == 4
    assert page.summary.average_rating == 4.25


@pytest.mark.asyncio
async def test_list_seller_reviews_excludes_product_reviews(review_service, downstream, make_review):
    target_id = uuid4()
    user_id = downstream.add_user(uuid4())
    make_review(user_id=user_id, target_id=target_id, target_type=TargetType.SELLER, rating=2)
    make_review(user_id=downstream.add_user(uuid4()), target_id=uuid4(), target_type=TargetType.SELLER)

    page = await review_service.list_seller_reviews(target_id, ReviewFilters(), TOKEN)

    assert page.total == 1
    assert page.summary.total_reviews == 1
    assert page.summary.rating_distribution[2] == 1


@pytest.mark.asyncio
async def test_list_empty_target(review_service):
    page = await review_service.list_product_reviews(uuid4(), ReviewFilters(), TOKEN)

    assert page.reviews == []
    assert page.total == 0
    assert page.pages == 0
    assert page.summary.average_rating == 0
    assert page.summary.rating_distribution == {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}


@pytest.mark.asyncio
async def test_listing_fails_when_any_author_lookup_fails(review_service, downstream, make_review):
    product_id = uuid4()
    make_review(user_id=downstream.add_user(uuid4()), target_id=product_id)
    make_review(user_id=uuid4(), target_id=product_id)  # author unknown to user service

    with pytest.raises(UpstreamServiceException):
        await review_service.list_product_reviews(product_id, ReviewFilters(), TOKEN)


@pytest.mark.asyncio
async def test_list_user_reviews(review_service, downstream, make_review):
    user_id = downstream.add_user(uuid4(), first_name="Sam", last_name="Lee")
    for _ in range(3):
        make_review(user_id=user_id)
    make_review(user_id=downstream.add_user(uuid4()))

    page = await review_service.list_user_reviews(user_id, ReviewFilters(limit=2), TOKEN)

    assert page.total == 3
    assert page.pages == 2
    assert len(page.reviews) == 2
    assert page.summary is None
    assert {r.user_name for r in page.reviews} == {"Sam Lee"}


# ===== Update =====

@pytest.mark.asyncio
async def test_update_by_owner_applies_only_given_fields(review_service, downstream, make_review):
    owner = downstream.add_user(uuid4())
    review = make_review(
        user_id=owner, rating=3, title="Okay", images=["http://img/1.png"]
    )

    result = await review_service.update_review(review.id, owner, {"comment": "new text"}, TOKEN)

    updated = result.review
    assert updated.comment == "new text"
    assert updated.rating == 3
    assert updated.title == "Okay"
    assert updated.images == ["http://img/1.png"]
    assert updated.is_edited is True


@pytest.mark.asyncio
async def test_update_with_no_actual_change_still_marks_edited(review_service, downstream, make_review):
    owner = downstream.add_user(uuid4())
    review = make_review(user_id=owner, rating=5)

    result = await review_service.update_review(review.id, owner, {"rating": 5}, TOKEN)

    assert result.review.is_edited is True


@pytest.mark.asyncio
async def test_update_can_clear_title(review_service, downstream, make_review):
    owner = downstream.add_user(uuid4())
    review = make_review(user_id=owner, title="Temporary")

    result = await review_service.update_review(review.id, owner, {"title": None}, TOKEN)

    assert result.review.title is None


@pytest.mark.asyncio
async def test_update_by_non_owner_forbidden(review_service, downstream, make_review):
    review = make_review(user_id=downstream.add_user(uuid4()), rating=2)

    with pytest.raises(ForbiddenException):
        await review_service.update_review(review.id, uuid4(), {"rating": 5}, TOKEN)

    assert review.rating == 2


@pytest.mark.asyncio
async def test_update_product_review_resyncs_rating(review_service, downstream, make_review):
    owner = downstream.add_user(uuid4())
    product_id = uuid4()
    review = make_review(user_id=owner, target_id=product_id, rating=1)
    make_review(user_id=uuid4(), target_id=product_id, rating=5)

    await review_service.update_review(review.id, owner, {"rating": 3}, TOKEN)

    assert downstream.rating_updates[-1] == {
        "product_id": str(product_id), "rating": 4.0, "numReviews": 2,
    }


@pytest.mark.asyncio
async def test_update_unknown_review(review_service):
    with pytest.raises(NotFoundException):
        await review_service.update_review(uuid4(), uuid4(), {"rating": 2}, TOKEN)


# ===== Delete =====

@pytest.mark.asyncio
async def test_delete_by_owner(review_service, db_session, make_review):
    owner = uuid4()
    review = make_review(user_id=owner, target_type=TargetType.SELLER)

    result = await review_service.delete_review(review.id, owner, False, TOKEN)

    assert result == {"message": "Review deleted successfully"}
    assert db_session.get(Review, review.id) is None


@pytest.mark.asyncio
async def test_delete_by_non_owner_forbidden(review_service, db_session, make_review):
    review = make_review()

    with pytest.raises(ForbiddenException):
        await review_service.delete_review(review.id, uuid4(), False, TOKEN)

    assert db_session.get(Review, review.id) is not None


@pytest.mark.asyncio
async def test_delete_by_admin_of_other_users_review(review_service, downstream, db_session, make_review):
    product_id = uuid4()
    review = make_review(target_id=product_id, rating=2)
    make_review(target_id=product_id, rating=4)

    await review_service.delete_review(review.id, uuid4(), True, TOKEN)

    assert db_session.get(Review, review.id) is None
    assert downstream.rating_updates[-1] == {
        "product_id": str(product_id), "rating": 4.0, "numReviews": 1,
    }


# ===== Helpful votes =====

def test_mark_helpful_three_times(review_service, make_review):
    review = make_review()

    votes = [review_service.mark_review_as_helpful(review.id) for _ in range(3)]

    assert votes == [1, 2, 3]


def test_mark_helpful_unknown_review(review_service):
    with pytest.raises(NotFoundException):
        review_service.mark_review_as_helpful(uuid4())


# ===== Rating sync is best-effort =====

@pytest.mark.asyncio
async def test_rating_sync_failure_does_not_fail_add(review_service, downstream, db_session, author, product):
    downstream.rating_update_fail = True

    result = await review_service.add_review(author, product_payload(product), TOKEN)

    assert db_session.get(Review, result.review.id) is not None
    assert get_metrics_collector().get_counter_value("rating_sync_total", {"status": "failed"}) == 1


@pytest.mark.asyncio
async def test_rating_sync_failure_does_not_fail_update_or_delete(review_service, downstream, db_session, make_review):
    owner = downstream.add_user(uuid4())
    review = make_review(user_id=owner, rating=2)
    downstream.rating_update_fail = True

    updated = await review_service.update_review(review.id, owner, {"rating": 4}, TOKEN)
    assert updated.review.rating == 4

    await review_service.delete_review(review.id, owner, False, TOKEN)
    assert db_session.get(Review, review.id) is None


@pytest.mark.asyncio
async def test_sync_product_rating_swallows_unexpected_errors(review_service, monkeypatch):
    def broken_summary(*args):
        raise RuntimeError("database went away")

    monkeypatch.setattr(review_service, "get_reviews_summary", broken_summary)

    result = await review_service._sync_product_rating(uuid4(), TOKEN)

    assert result.succeeded is False
    assert "database went away" in result.error
