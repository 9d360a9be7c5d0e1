from dataclasses import dataclass

import structlog
from kafka.errors import KafkaError

from analytics_pipeline.core.errors import PublishError
from analytics_pipeline.schemas.event import AnalyticsEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class Placement:
    """Where the broker put a message"""
    partition: int
    offset: int


class EventPublisher:
    """Publishes one event per call and blocks until the broker acknowledges it"""

    def __init__(self, producer, topic: str, partition: int, timeout: float | None = None):
        self.producer = producer
        self.topic = topic
        self.partition = partition
        self.timeout = timeout

    def publish(self, event: AnalyticsEvent) -> Placement:
        """
        Append the event to the topic.

        The producer's own retry budget is spent before this returns;
        nothing is retried here. timeout must outlast the producer's
        delivery_timeout_ms, otherwise the caller can see a failure for a
        message the broker later appends. None waits on the producer alone.

        Raises:
            PublishError: the broker did not acknowledge the message
        """
        payload = event.to_wire()

        try:
            future = self.producer.send(self.topic, value=payload, partition=self.partition)
            metadata = future.get(timeout=self.timeout)
        except KafkaError as e:
            logger.error("event_publish_failed", topic=self.topic, event_type=event.event_type, error=str(e))
            raise PublishError("Failed to publish event", cause=e) from e

        placement = Placement(partition=metadata.partition, offset=metadata.offset)

        logger.info(
            "event_published",
            partition=placement.partition,
            offset=placement.offset,
            event_type=event.event_type,
            page=event.page
        )
        return placement

    def close(self):
        """Flush and close the producer"""
        try:
            self.producer.flush(timeout=self.timeout)
            self.producer.close(timeout=self.timeout)
            logger.info("kafka_producer_closed")
        except KafkaError as e:
            logger.error("kafka_producer_close_failed", error=str(e))
