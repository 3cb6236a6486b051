"""Human review queue."""

from .models import (
    CRITICAL_REVIEW_TYPES,
    REVIEW_QUEUE_COLLECTION,
    ReviewItem,
    ReviewItemStatus,
    ReviewItemType,
)
from .queue import ReviewQueue

__all__ = [
    "CRITICAL_REVIEW_TYPES",
    "REVIEW_QUEUE_COLLECTION",
    "ReviewItem",
    "ReviewItemStatus",
    "ReviewItemType",
    "ReviewQueue",
]
