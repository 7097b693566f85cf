"""
Request validation and response schemas for the review API.

Wire format is camelCase; Python attributes are snake_case.
"""
from datetime import datetime
from typing import Annotated, Any, Literal, Optional
from uuid import UUID

from pydantic import (
    AfterValidator,
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from src.models.reviews import (
    COMMENT_MAX_LENGTH,
    COMMENT_MIN_LENGTH,
    TITLE_MAX_LENGTH,
    ReviewRating,
    TargetType,
)


_url_adapter = TypeAdapter(AnyHttpUrl)


def _check_image_url(value: str) -> str:
    # Validate, but store exactly what the client sent
    _url_adapter.validate_python(value)
    return value


ImageUrl = Annotated[str, AfterValidator(_check_image_url)]

SortField = Literal["createdAt", "updatedAt", "rating", "helpfulVotes"]

DEFAULT_SORT_BY = "createdAt"
DEFAULT_ORDER = -1
DEFAULT_LIMIT = 10
DEFAULT_PAGE = 1
MAX_LIMIT = 100


class CamelModel(BaseModel):
    """Base for models exchanged in camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ===== Requests =====

class ReviewCreateRequest(CamelModel):
    """Body of POST / (create review). Server-owned fields such as
    isVerifiedPurchase or helpfulVotes are dropped if sent."""
    model_config = ConfigDict(extra="ignore")

    target_id: UUID = Field(..., description="Product or seller id")
    target_type: TargetType = Field(..., description='Either "product" or "seller"')
    rating: ReviewRating = Field(..., description="Rating between 1 and 5")
    title: Optional[str] = Field(None, max_length=TITLE_MAX_LENGTH)
    comment: str = Field(..., min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)
    images: Optional[list[ImageUrl]] = None


class ReviewUpdateRequest(CamelModel):
    """
    Body of PATCH /{id}. Presence-aware: only fields sent by the client are
    applied, and a field sent as null or empty is applied as such
    (title and images can be cleared this way).
    """
    model_config = ConfigDict(extra="ignore")

    rating: Optional[ReviewRating] = None
    title: Optional[str] = Field(None, max_length=TITLE_MAX_LENGTH)
    comment: Optional[str] = Field(None, min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)
    images: Optional[list[ImageUrl]] = None

    @model_validator(mode="after")
    def check_fields(self) -> "ReviewUpdateRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        for required in ("rating", "comment"):
            if required in self.model_fields_set and getattr(self, required) is None:
                raise ValueError(f"{required} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the client, keyed by attribute name."""
        changes = {name: getattr(self, name) for name in self.model_fields_set}
        if "images" in changes and changes["images"] is None:
            changes["images"] = []
        if "title" in changes and changes["title"] == "":
            changes["title"] = None
        return changes


class ReviewFilters(BaseModel):
    """Sorting, pagination and rating filter for review listings."""
    sort_by: SortField = DEFAULT_SORT_BY
    order: int = DEFAULT_ORDER
    limit: int = Field(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    page: int = Field(DEFAULT_PAGE, ge=1)
    rating: Optional[ReviewRating] = None

    @field_validator("order")
    @classmethod
    def order_is_direction(cls, v: int) -> int:
        if v not in (1, -1):
            raise ValueError("order must be 1 or -1")
        return v

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


# ===== Responses =====

class ReviewResponse(CamelModel):
    """A stored review."""
    id: UUID
    user_id: UUID
    target_id: UUID
    target_type: TargetType
    rating: int
    title: Optional[str] = None
    comment: str
    is_verified_purchase: bool
    is_edited: bool
    helpful_votes: int
    images: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ReviewWithAuthorResponse(CamelModel):
    """A review enriched with its author's display name and avatar."""
    review: ReviewResponse
    user_name: str
    user_avatar: Optional[str] = None

    @classmethod
    def from_enriched(cls, enriched) -> "ReviewWithAuthorResponse":
        return cls(
            review=ReviewResponse.model_validate(enriched.review),
            user_name=enriched.user_name,
            user_avatar=enriched.user_avatar,
        )


class ReviewsSummaryResponse(CamelModel):
    average_rating: float
    total_reviews: int
    rating_distribution: dict[int, int]
    verified_purchases: int


class ReviewListResponse(CamelModel):
    reviews: list[ReviewWithAuthorResponse]
    total: int
    pages: int


class TargetReviewListResponse(ReviewListResponse):
    summary: ReviewsSummaryResponse


class ReviewMutationResponse(BaseModel):
    message: str
    review: ReviewWithAuthorResponse


class SingleReviewResponse(BaseModel):
    review: ReviewWithAuthorResponse


class HelpfulVoteResponse(CamelModel):
    message: str
    helpful_votes: int


class MessageResponse(BaseModel):
    message: str
