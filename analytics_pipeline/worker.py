"""
Subscriber Worker - Persists events from the Kafka topic

Usage:
    analytics-subscriber
"""
import signal
import sys

from kafka.errors import KafkaError
from sqlalchemy.exc import SQLAlchemyError
import structlog

from analytics_pipeline.core.config import Settings, settings
from analytics_pipeline.core.database import create_db_engine, init_db, wait_for_database
from analytics_pipeline.core.errors import TransportAuthError
from analytics_pipeline.core.logging import configure_logging
from analytics_pipeline.core.retry import retry_fixed
from analytics_pipeline.services.storage import EventStore
from analytics_pipeline.services.subscriber import EventSubscriber
from analytics_pipeline.transport.kafka import create_consumer

logger = structlog.get_logger()


def install_signal_handlers(subscriber: EventSubscriber) -> None:
    """Stop the loop on SIGTERM/SIGINT"""

    def _handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        subscriber.stop()

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def build_subscriber(settings: Settings) -> EventSubscriber:
    engine = create_db_engine(settings)
    wait_for_database(engine, settings)
    init_db(engine)

    consumer = retry_fixed(
        lambda: create_consumer(settings),
        attempts=settings.startup_attempts,
        delay=settings.startup_delay_seconds,
        description="kafka_connect",
        retry_on=(KafkaError,)
    )

    return EventSubscriber(
        consumer,
        EventStore(engine),
        poll_timeout_ms=settings.consumer_poll_timeout_ms,
        write_attempts=settings.write_attempts,
        write_retry_delay=settings.write_retry_delay_seconds
    )


def main():
    """Main worker loop"""
    configure_logging(settings.debug)

    try:
        subscriber = build_subscriber(settings)
    except (SQLAlchemyError, KafkaError, TransportAuthError) as e:
        logger.error("worker_startup_failed", error=str(e))
        sys.exit(1)

    install_signal_handlers(subscriber)
    logger.info("worker_started", topic=settings.kafka_topic, partition=settings.kafka_partition)

    try:
        subscriber.run()
    finally:
        subscriber.store.engine.dispose()
        logger.info("worker_stopped")


if __name__ == "__main__":
    main()
