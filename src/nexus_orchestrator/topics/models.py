"""Topics queued for another attempt after a skipped run."""

from enum import StrEnum

from ..storage.models import DocumentModel

QUEUED_TOPICS_COLLECTION = "queued-topics"
QUEUE_MAX_RETRIES = 2


class QueuedTopicStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    ABANDONED = "abandoned"


class QueuedTopic(DocumentModel):
    topic: str
    failure_reason: str
    failure_stage: str
    original_date: str
    queued_date: str
    retry_count: int = 0
    max_retries: int = QUEUE_MAX_RETRIES
    status: QueuedTopicStatus = QueuedTopicStatus.PENDING
