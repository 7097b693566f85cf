"""
Review model - user feedback on a product or a seller.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    JSON,
    Uuid,
    CheckConstraint,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column
import enum

from src.lib.db import Base


TITLE_MAX_LENGTH = 100
COMMENT_MIN_LENGTH = 2
COMMENT_MAX_LENGTH = 1000


class TargetType(str, enum.Enum):
    """Kind of entity a review is written about."""
    PRODUCT = "product"
    SELLER = "seller"


class ReviewRating(enum.IntEnum):
    """Named rating levels."""
    POOR = 1
    FAIR = 2
    GOOD = 3
    VERY_GOOD = 4
    EXCELLENT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Review(Base):
    """
    Review entity - one per (user, target).
    target_id, target_type and user_id never change after insert.
    """
    __tablename__ = "reviews"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )

    # Author
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )

    # Reviewed entity
    target_id: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )
    target_type: Mapped[TargetType] = mapped_column(
        SQLEnum(TargetType, name="review_target_type"),
        nullable=False,
    )

    # Content
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(
        String(TITLE_MAX_LENGTH),
        nullable=True,
    )
    comment: Mapped[str] = mapped_column(
        String(COMMENT_MAX_LENGTH),
        nullable=False,
    )
    images: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Flags and counters
    is_verified_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    helpful_votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        # One review per user per target, regardless of target_type
        UniqueConstraint("user_id", "target_id", name="uq_reviews_user_target"),
        CheckConstraint(
            "rating >= 1 AND rating <= 5",
            name="review_rating_range",
        ),
        CheckConstraint(
            f"length(comment) >= {COMMENT_MIN_LENGTH}",
            name="review_comment_min_length",
        ),
        CheckConstraint(
            "helpful_votes >= 0",
            name="review_helpful_votes_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Review(id={self.id}, user_id={self.user_id}, "
            f"target={self.target_type}:{self.target_id}, rating={self.rating})>"
        )
