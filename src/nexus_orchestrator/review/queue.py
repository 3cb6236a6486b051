"""
Human review queue.

Stages and the quality gate add items here when automated checks are
inconclusive. Each item is resolved or dismissed exactly once.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from ..core.errors import (
    NEXUS_REVIEW_ITEM_ALREADY_RESOLVED,
    NEXUS_REVIEW_ITEM_NOT_FOUND,
    NEXUS_REVIEW_ITEM_SAVE_FAILED,
    NEXUS_REVIEW_QUEUE_QUERY_FAILED,
    NexusError,
)
from ..observability.logging import get_logger
from ..storage.documents import DocumentStore, QueryFilter
from .models import (
    REVIEW_QUEUE_COLLECTION,
    TOPIC_REVIEW_TYPES,
    ReviewItem,
    ReviewItemStatus,
    ReviewItemType,
)

logger = get_logger(__name__)


class ReviewQueue:
    """Review items stored in the ``review-queue`` collection."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def add_to_review_queue(
        self,
        item_type: ReviewItemType | str,
        pipeline_id: str,
        stage: str,
        item: Any,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Add a pending item and return its id."""
        review_item = ReviewItem(
            id=str(uuid.uuid4()),
            type=item_type,
            pipeline_id=pipeline_id,
            stage=stage,
            item=item,
            context=context or {},
            created_at=datetime.now(UTC).isoformat(),
        )

        try:
            await self.store.set_document(
                REVIEW_QUEUE_COLLECTION, review_item.id, review_item.to_document()
            )
        except Exception as e:
            logger.error("Failed to add review item", type=str(item_type), pipeline_id=pipeline_id)
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_SAVE_FAILED, f"Failed to save review item: {e}", "review"
            ) from e

        logger.info(
            "Review item added to queue",
            review_id=review_item.id,
            type=str(review_item.type),
            pipeline_id=pipeline_id,
            stage=stage,
        )
        return review_item.id

    async def get_review_queue(
        self,
        status: ReviewItemStatus | str | None = None,
        item_type: ReviewItemType | str | None = None,
        pipeline_id: str | None = None,
    ) -> list[ReviewItem]:
        filters = []
        if status:
            filters.append(QueryFilter("status", "==", str(status)))
        if item_type:
            filters.append(QueryFilter("type", "==", str(item_type)))
        if pipeline_id:
            filters.append(QueryFilter("pipelineId", "==", pipeline_id))

        try:
            documents = await self.store.query_documents(REVIEW_QUEUE_COLLECTION, filters)
        except Exception as e:
            logger.error("Failed to query review queue", status=status, type=item_type)
            raise NexusError.critical(
                NEXUS_REVIEW_QUEUE_QUERY_FAILED, f"Failed to query review queue: {e}", "review"
            ) from e

        items = [ReviewItem.from_document(doc) for doc in documents]
        logger.debug("Retrieved review queue items", count=len(items))
        return items

    async def get_review_item(self, review_id: str) -> ReviewItem | None:
        try:
            document = await self.store.get_document(REVIEW_QUEUE_COLLECTION, review_id)
        except Exception as e:
            logger.error("Failed to get review item", review_id=review_id)
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_NOT_FOUND,
                f"Failed to get review item {review_id}: {e}",
                "review",
            ) from e
        return ReviewItem.from_document(document) if document is not None else None

    async def _require_pending(self, review_id: str) -> ReviewItem:
        item = await self.get_review_item(review_id)
        if item is None:
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_NOT_FOUND, f"Review item {review_id} not found", "review"
            )
        if item.status != ReviewItemStatus.PENDING:
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_ALREADY_RESOLVED,
                f"Review item {review_id} is already {item.status}",
                "review",
            )
        return item

    async def _close(
        self, review_id: str, status: ReviewItemStatus, resolution: str, resolved_by: str
    ) -> ReviewItem:
        item = await self._require_pending(review_id)
        try:
            await self.store.update_document(
                REVIEW_QUEUE_COLLECTION,
                review_id,
                {
                    "status": status.value,
                    "resolution": resolution,
                    "resolvedAt": datetime.now(UTC).isoformat(),
                    "resolvedBy": resolved_by,
                },
            )
        except Exception as e:
            logger.error("Failed to close review item", review_id=review_id)
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_SAVE_FAILED,
                f"Failed to update review item {review_id}: {e}",
                "review",
            ) from e
        return item

    async def resolve_review_item(self, review_id: str, resolution: str, resolved_by: str) -> None:
        item = await self._close(review_id, ReviewItemStatus.RESOLVED, resolution, resolved_by)
        logger.info(
            "Review item resolved",
            review_id=review_id,
            type=str(item.type),
            resolution=resolution,
            resolved_by=resolved_by,
        )

    async def dismiss_review_item(self, review_id: str, reason: str, resolved_by: str) -> None:
        item = await self._close(review_id, ReviewItemStatus.DISMISSED, reason, resolved_by)
        logger.info(
            "Review item dismissed",
            review_id=review_id,
            type=str(item.type),
            reason=reason,
            resolved_by=resolved_by,
        )

    async def get_pending_review_count(self) -> int:
        return len(await self.get_review_queue(status=ReviewItemStatus.PENDING))

    async def get_pending_critical_reviews(self, pipeline_id: str | None = None) -> list[ReviewItem]:
        """Pending pronunciation and quality items, optionally for one pipeline."""
        pending = await self.get_review_queue(
            status=ReviewItemStatus.PENDING, pipeline_id=pipeline_id
        )
        return [item for item in pending if item.is_critical]

    async def has_pending_critical_reviews(self, pipeline_id: str | None = None) -> bool:
        return bool(await self.get_pending_critical_reviews(pipeline_id))

    async def skip_topic(self, review_id: str, resolved_by: str) -> None:
        await self.resolve_review_item(review_id, "Topic skipped - will not cover", resolved_by)
        logger.info("Topic skipped via review queue", review_id=review_id)

    async def requeue_topic_from_review(
        self, review_id: str, new_date: str, resolved_by: str
    ) -> None:
        item = await self.get_review_item(review_id)
        if item is None:
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_NOT_FOUND, f"Review item {review_id} not found", "review"
            )
        if item.type not in TOPIC_REVIEW_TYPES:
            raise NexusError.critical(
                NEXUS_REVIEW_ITEM_SAVE_FAILED,
                f"Cannot requeue non-topic review item {review_id} (type: {item.type})",
                "review",
            )

        await self.resolve_review_item(review_id, f"Topic requeued for {new_date}", resolved_by)
        logger.info("Topic requeued from review queue", review_id=review_id, new_date=new_date)

    async def approve_topic_with_modifications(
        self, review_id: str, modifications: str, resolved_by: str
    ) -> None:
        await self.resolve_review_item(
            review_id, f"Approved with modifications: {modifications}", resolved_by
        )
        logger.info(
            "Topic approved with modifications via review queue",
            review_id=review_id,
            modifications=modifications,
        )
