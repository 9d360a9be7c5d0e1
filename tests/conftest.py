import threading
from collections import namedtuple
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from analytics_pipeline.core.config import Settings
from analytics_pipeline.core.context import ServiceContext
from analytics_pipeline.core.database import init_db
from analytics_pipeline.services.publisher import EventPublisher
from analytics_pipeline.services.storage import EventStore

ConsumerRecord = namedtuple("ConsumerRecord", ["topic", "partition", "offset", "value"])


class FakeFuture:
    def __init__(self, metadata=None, error=None):
        self.metadata = metadata
        self.error = error
        self.waited = []

    def get(self, timeout=None):
        self.waited.append(timeout)
        if self.error:
            raise self.error
        return self.metadata


class FakeProducer:
    """Stands in for KafkaProducer: appends to an in-memory log and counts sends"""

    def __init__(self):
        self.log = []
        self.send_calls = 0
        self.error = None
        self.closed = False
        self.futures = []
        self._lock = threading.Lock()

    def send(self, topic, value=None, partition=None):
        with self._lock:
            self.send_calls += 1
            if self.error:
                future = FakeFuture(error=self.error)
            else:
                offset = len(self.log)
                self.log.append(ConsumerRecord(topic, partition, offset, value))
                future = FakeFuture(metadata=SimpleNamespace(topic=topic, partition=partition, offset=offset))
            self.futures.append(future)
        return future

    def flush(self, timeout=None):
        pass

    def close(self, timeout=None):
        self.closed = True


class FakeConsumer:
    """Stands in for KafkaConsumer: each poll returns the next scripted item.

    An item is a list of records, or an exception to raise. When the
    script runs out, on_exhausted is called (typically subscriber.stop).
    """

    def __init__(self, script):
        self.script = list(script)
        self.on_exhausted = None
        self.closed = False
        self.polls = 0

    def poll(self, timeout_ms=None):
        self.polls += 1
        if not self.script:
            if self.on_exhausted:
                self.on_exhausted()
            return {}
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return {("portfolio-analytics-events", 0): item}

    def close(self):
        self.closed = True


@pytest.fixture
def test_settings():
    return Settings(
        kafka_user="analytics",
        kafka_password="pencil",
        database_url="sqlite://",
        startup_attempts=1,
        startup_delay_seconds=0,
        write_retry_delay_seconds=0
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return EventStore(engine)


@pytest.fixture
def fake_producer():
    return FakeProducer()


@pytest.fixture
def publisher(fake_producer, test_settings):
    return EventPublisher(
        fake_producer,
        topic=test_settings.kafka_topic,
        partition=test_settings.kafka_partition
    )


@pytest.fixture
def context(test_settings, store, publisher):
    return ServiceContext(settings=test_settings, store=store, publisher=publisher)


@pytest.fixture
def valid_event():
    return {
        "event_type": "page_view",
        "page": "/projects",
        "timestamp": "2024-02-01T10:00:00Z",
        "session_id": "sess_123",
        "screen_width": 1920,
        "screen_height": 1080
    }


@pytest.fixture
def make_consumer():
    return FakeConsumer


@pytest.fixture
def make_record():
    def _make(offset, value, partition=0):
        return ConsumerRecord("portfolio-analytics-events", partition, offset, value)
    return _make
