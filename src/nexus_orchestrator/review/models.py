"""Review queue items."""

from enum import StrEnum
from typing import Any

from pydantic import Field

from ..storage.models import DocumentModel

REVIEW_QUEUE_COLLECTION = "review-queue"


class ReviewItemType(StrEnum):
    PRONUNCIATION = "pronunciation"
    QUALITY = "quality"
    CONTROVERSIAL = "controversial"
    TOPIC = "topic"
    OTHER = "other"


class ReviewItemStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


# Pending items of these types block publishing
CRITICAL_REVIEW_TYPES = frozenset({ReviewItemType.PRONUNCIATION, ReviewItemType.QUALITY})

TOPIC_REVIEW_TYPES = frozenset({ReviewItemType.TOPIC, ReviewItemType.CONTROVERSIAL})


class ReviewItem(DocumentModel):
    id: str
    type: ReviewItemType
    pipeline_id: str
    stage: str
    item: Any = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    status: ReviewItemStatus = ReviewItemStatus.PENDING
    resolution: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.type in CRITICAL_REVIEW_TYPES
