"""
Failed-topic queue.

A topic whose run was skipped is stored under the date it should be retried
on (``YYYY-MM-DD``). The run for that date picks it up instead of sourcing a
fresh topic, until the topic runs out of retries and is abandoned.
"""

from datetime import UTC, date, datetime, timedelta

from ..core.errors import (
    NEXUS_QUEUE_TOPIC_CLEAR_FAILED,
    NEXUS_QUEUE_TOPIC_NOT_FOUND,
    NEXUS_QUEUE_TOPIC_SAVE_FAILED,
    NexusError,
)
from ..observability.logging import get_logger
from ..storage.documents import DocumentStore, QueryFilter
from .models import QUEUE_MAX_RETRIES, QUEUED_TOPICS_COLLECTION, QueuedTopic, QueuedTopicStatus

logger = get_logger(__name__)


def next_date(original_date: str) -> str:
    """Day after ``original_date``, or tomorrow when it is not a date."""
    try:
        base = date.fromisoformat(original_date)
    except (TypeError, ValueError):
        base = datetime.now(UTC).date()
    return (base + timedelta(days=1)).isoformat()


class TopicQueue:
    """Queued topics stored in the ``queued-topics`` collection, keyed by date."""

    def __init__(self, store: DocumentStore, max_retries: int = QUEUE_MAX_RETRIES):
        self.store = store
        self.max_retries = max_retries

    async def queue_failed_topic(
        self, topic: str, failure_reason: str, failure_stage: str, original_date: str
    ) -> str:
        """Queue ``topic`` for the next day and return that date."""
        target_date = next_date(original_date)
        queued = QueuedTopic(
            topic=topic,
            failure_reason=failure_reason,
            failure_stage=failure_stage,
            original_date=original_date,
            queued_date=datetime.now(UTC).isoformat(),
            retry_count=0,
            max_retries=self.max_retries,
        )

        try:
            await self.store.set_document(QUEUED_TOPICS_COLLECTION, target_date, queued.to_document())
        except Exception as e:
            logger.error("Failed to queue topic", topic=topic, failure_reason=failure_reason)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_SAVE_FAILED, f"Failed to queue topic: {e}", "queue"
            ) from e

        logger.info(
            "Topic queued for retry",
            target_date=target_date,
            topic=topic,
            failure_reason=failure_reason,
            failure_stage=failure_stage,
            original_date=original_date,
        )
        return target_date

    async def get_queued_topic(self, queue_date: str) -> QueuedTopic | None:
        try:
            document = await self.store.get_document(QUEUED_TOPICS_COLLECTION, queue_date)
        except Exception as e:
            logger.error("Failed to get queued topic", date=queue_date)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_NOT_FOUND,
                f"Failed to get queued topic for {queue_date}: {e}",
                "queue",
            ) from e

        if document is None:
            return None
        topic = QueuedTopic.from_document(document)
        logger.debug("Queued topic found", date=queue_date, topic=topic.topic)
        return topic

    async def get_queued_topics(self) -> list[QueuedTopic]:
        """All topics still waiting for a retry."""
        try:
            documents = await self.store.query_documents(
                QUEUED_TOPICS_COLLECTION,
                [QueryFilter("status", "==", QueuedTopicStatus.PENDING.value)],
            )
        except Exception as e:
            logger.error("Failed to list queued topics")
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_NOT_FOUND, f"Failed to list queued topics: {e}", "queue"
            ) from e

        logger.debug("Listed pending queued topics", count=len(documents))
        return [QueuedTopic.from_document(doc) for doc in documents]

    async def clear_queued_topic(self, queue_date: str) -> None:
        try:
            await self.store.delete_document(QUEUED_TOPICS_COLLECTION, queue_date)
        except Exception as e:
            logger.error("Failed to clear queued topic", date=queue_date)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_CLEAR_FAILED,
                f"Failed to clear queued topic for {queue_date}: {e}",
                "queue",
            ) from e
        logger.info("Queued topic cleared", date=queue_date)

    async def increment_retry_count(self, queue_date: str) -> QueuedTopic | None:
        """
        Count one more attempt at the topic queued for ``queue_date``.

        Returns the updated topic, now ``processing``. Returns None when no
        topic is queued, or when this attempt uses up the last retry, in
        which case the topic is marked ``abandoned``.
        """
        try:
            document = await self.store.get_document(QUEUED_TOPICS_COLLECTION, queue_date)
            if document is None:
                logger.warning("Cannot increment retry count: topic not found", date=queue_date)
                return None

            topic = QueuedTopic.from_document(document)
            retry_count = topic.retry_count + 1

            if retry_count >= topic.max_retries:
                await self.store.update_document(
                    QUEUED_TOPICS_COLLECTION,
                    queue_date,
                    {"status": QueuedTopicStatus.ABANDONED.value, "retryCount": retry_count},
                )
                logger.warning(
                    "Topic abandoned after max retries",
                    date=queue_date,
                    topic=topic.topic,
                    retry_count=retry_count,
                    max_retries=topic.max_retries,
                )
                return None

            await self.store.update_document(
                QUEUED_TOPICS_COLLECTION,
                queue_date,
                {"retryCount": retry_count, "status": QueuedTopicStatus.PROCESSING.value},
            )
        except Exception as e:
            logger.error("Failed to increment retry count", date=queue_date)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_SAVE_FAILED,
                f"Failed to increment retry count for {queue_date}: {e}",
                "queue",
            ) from e

        logger.info(
            "Retry count incremented",
            date=queue_date,
            topic=topic.topic,
            retry_count=retry_count,
            max_retries=topic.max_retries,
        )
        return topic.model_copy(
            update={"retry_count": retry_count, "status": QueuedTopicStatus.PROCESSING.value}
        )

    async def requeue_topic(self, current_date: str, new_date: str) -> None:
        """Move a queued topic to ``new_date`` as pending."""
        topic = await self.get_queued_topic(current_date)
        if topic is None:
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_NOT_FOUND,
                f"Cannot requeue: topic not found for {current_date}",
                "queue",
            )

        requeued = topic.model_copy(
            update={
                "queued_date": datetime.now(UTC).isoformat(),
                "status": QueuedTopicStatus.PENDING.value,
            }
        )
        try:
            await self.store.set_document(QUEUED_TOPICS_COLLECTION, new_date, requeued.to_document())
            await self.store.delete_document(QUEUED_TOPICS_COLLECTION, current_date)
        except Exception as e:
            logger.error("Failed to requeue topic", current_date=current_date, new_date=new_date)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_SAVE_FAILED,
                f"Failed to requeue topic from {current_date} to {new_date}: {e}",
                "queue",
            ) from e

        logger.info(
            "Topic requeued to new date",
            current_date=current_date,
            new_date=new_date,
            topic=topic.topic,
        )

    async def mark_topic_processing(self, queue_date: str) -> None:
        try:
            await self.store.update_document(
                QUEUED_TOPICS_COLLECTION,
                queue_date,
                {"status": QueuedTopicStatus.PROCESSING.value},
            )
        except Exception as e:
            logger.error("Failed to mark topic as processing", date=queue_date)
            raise NexusError.critical(
                NEXUS_QUEUE_TOPIC_SAVE_FAILED,
                f"Failed to mark topic as processing for {queue_date}: {e}",
                "queue",
            ) from e
        logger.debug("Topic marked as processing", date=queue_date)

    async def check_today_queued_topic(self, queue_date: str | None = None) -> QueuedTopic | None:
        """The pending topic queued for ``queue_date`` (default today), if any."""
        queue_date = queue_date or datetime.now(UTC).date().isoformat()
        topic = await self.get_queued_topic(queue_date)
        if topic is not None and topic.status == QueuedTopicStatus.PENDING:
            return topic
        return None
