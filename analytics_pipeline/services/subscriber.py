import threading
from enum import Enum
from typing import Callable

import structlog
from kafka.errors import KafkaError

from analytics_pipeline.core.errors import ConsumeError, InvalidPayload, PersistenceError
from analytics_pipeline.core.retry import retry_fixed
from analytics_pipeline.schemas.event import AnalyticsEvent
from analytics_pipeline.services.storage import EventStore

logger = structlog.get_logger()


class SubscriberState(Enum):
    STARTING = "starting"
    LISTENING = "listening"
    PROCESSING = "processing"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class EventSubscriber:
    """
    Single sequential consumption loop: topic partition -> analytics_events.

    Messages are handled one at a time in offset order. A message that
    cannot be decoded is logged and skipped. A write that keeps failing
    after write_attempts tries is logged with its offset and skipped, so
    the loop never stops on a bad message. Only stop() ends the loop.
    """

    def __init__(
            self,
            consumer,
            store: EventStore,
            poll_timeout_ms: int = 1000,
            write_attempts: int = 3,
            write_retry_delay: float = 0.5,
            sleep: Callable[[float], object] | None = None
    ):
        self.consumer = consumer
        self.store = store
        self.poll_timeout_ms = poll_timeout_ms
        self.write_attempts = write_attempts
        self.write_retry_delay = write_retry_delay
        self.state = SubscriberState.STARTING
        self._stop_requested = threading.Event()
        # Waiting on the stop event keeps retries interruptible
        self._sleep = sleep or self._stop_requested.wait

    def stop(self) -> None:
        """Ask the loop to exit after the message in hand"""
        self._stop_requested.set()

    @property
    def stopping(self) -> bool:
        return self._stop_requested.is_set()

    def run(self) -> None:
        self.state = SubscriberState.LISTENING
        logger.info("subscriber_listening")

        try:
            while not self.stopping:
                try:
                    batches = self.consumer.poll(timeout_ms=self.poll_timeout_ms)
                except KafkaError as e:
                    error = ConsumeError("Failed to read from broker", cause=e)
                    logger.error("consume_error", error=str(error))
                    self._sleep(self.poll_timeout_ms / 1000)
                    continue

                for messages in batches.values():
                    for message in messages:
                        if self.stopping:
                            break
                        self.state = SubscriberState.PROCESSING
                        self.handle_message(message)
                        self.state = SubscriberState.LISTENING
        finally:
            self.shutdown()

    def handle_message(self, message) -> int | None:
        """Decode and store one message; returns the row id, or None if it was skipped"""
        try:
            event = AnalyticsEvent.from_wire(message.value)
        except InvalidPayload as e:
            logger.warning(
                "event_decode_failed",
                partition=message.partition,
                offset=message.offset,
                error=str(e)
            )
            return None

        try:
            record_id = retry_fixed(
                lambda: self.store.insert(event),
                attempts=self.write_attempts,
                delay=self.write_retry_delay,
                description="event_persist",
                retry_on=(PersistenceError,),
                sleep=self._sleep
            )
        except PersistenceError as e:
            logger.error(
                "event_persist_failed",
                partition=message.partition,
                offset=message.offset,
                event_type=event.event_type,
                error=str(e)
            )
            return None
        except Exception as e:
            # Driver errors outside SQLAlchemy's hierarchy must not end the loop
            logger.exception(
                "event_persist_failed",
                partition=message.partition,
                offset=message.offset,
                event_type=event.event_type,
                error=f"{type(e).__name__}: {e}"
            )
            return None

        logger.info(
            "event_persisted",
            id=record_id,
            event_type=event.event_type,
            page=event.page,
            partition=message.partition,
            offset=message.offset
        )
        return record_id

    def shutdown(self) -> None:
        self.state = SubscriberState.SHUTTING_DOWN
        logger.info("subscriber_shutting_down")
        try:
            self.consumer.close()
        except KafkaError as e:
            logger.error("kafka_consumer_close_failed", error=str(e))
        self.state = SubscriberState.STOPPED
        logger.info("subscriber_stopped")
