"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from src.models.reviews import Review, ReviewRating, TargetType

__all__ = [
    "Review",
    "ReviewRating",
    "TargetType",
]
