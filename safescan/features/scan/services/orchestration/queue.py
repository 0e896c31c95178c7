from abc import ABC, abstractmethod

from safescan.features.scan.schemas.scan import QueueMessage
from safescan.platform.logger import get_logger

logger = get_logger(__name__)


class QueueError(Exception):
    """The message could not be handed to the broker."""


class ScanQueue(ABC):
    @abstractmethod
    def enqueue(self, message: QueueMessage) -> None:
        """Publish one job message; raise QueueError on failure."""


class CeleryScanQueue(ScanQueue):
    def enqueue(self, message: QueueMessage) -> None:
        from safescan.features.scan.workers.tasks import process_scan_job

        try:
            process_scan_job.delay(message.to_wire())
        except Exception as e:
            # kombu surfaces broker trouble as a wide range of exception types
            raise QueueError(str(e)) from e
        logger.info(f"[{message.job_id}] Enqueued scan of {message.url}")
