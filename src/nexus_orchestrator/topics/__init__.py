"""Queue of topics waiting for another attempt."""

from .manager import TopicQueue, next_date
from .models import QUEUE_MAX_RETRIES, QUEUED_TOPICS_COLLECTION, QueuedTopic, QueuedTopicStatus

__all__ = [
    "TopicQueue",
    "next_date",
    "QUEUE_MAX_RETRIES",
    "QUEUED_TOPICS_COLLECTION",
    "QueuedTopic",
    "QueuedTopicStatus",
]
