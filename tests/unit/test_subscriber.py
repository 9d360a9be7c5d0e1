import json

import pytest
from kafka.errors import KafkaConnectionError
from sqlalchemy import select

from analytics_pipeline.core.errors import PersistenceError
from analytics_pipeline.models.event import AnalyticsEventRecord
from analytics_pipeline.services.subscriber import EventSubscriber, SubscriberState


def wire(event_type, page="/"):
    return json.dumps({
        "event_type": event_type,
        "page": page,
        "timestamp": "2024-02-01T10:00:00Z",
        "session_id": "sess_1"
    }).encode("utf-8")


def stored_rows(store):
    with store.Session() as session:
        return session.execute(
            select(AnalyticsEventRecord).order_by(AnalyticsEventRecord.id)
        ).scalars().all()


def run_to_completion(consumer, store, **kwargs):
    subscriber = EventSubscriber(consumer, store, poll_timeout_ms=10, sleep=lambda _: None, **kwargs)
    consumer.on_exhausted = subscriber.stop
    subscriber.run()
    return subscriber


class FlakyStore:
    """Fails the first `failures` inserts, then delegates"""

    def __init__(self, store, failures):
        self.store = store
        self.failures = failures
        self.attempts = 0

    def insert(self, event):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise PersistenceError("connection reset")
        return self.store.insert(event)


def test_corrupt_message_is_skipped_and_loop_continues(store, make_consumer, make_record):
    consumer = make_consumer([[
        make_record(0, wire("A")),
        make_record(1, b"\x00not json"),
        make_record(2, wire("B")),
    ]])

    run_to_completion(consumer, store)

    assert [row.event_type for row in stored_rows(store)] == ["A", "B"]


def test_messages_are_stored_in_offset_order_across_polls(store, make_consumer, make_record):
    consumer = make_consumer([
        [make_record(0, wire("first")), make_record(1, wire("second"))],
        [],
        [make_record(2, wire("third"))],
    ])

    run_to_completion(consumer, store)

    assert [row.event_type for row in stored_rows(store)] == ["first", "second", "third"]


def test_row_is_a_faithful_copy_of_the_message(store, make_consumer, make_record):
    payload = json.dumps({
        "event_type": "page_view",
        "page": "/about",
        "timestamp": "2024-02-01T10:00:00Z",
        "session_id": "sess_9",
        "user_agent": "Mozilla/5.0",
        "screen_width": 390,
        "screen_height": 844
    }).encode("utf-8")

    run_to_completion(make_consumer([[make_record(0, payload)]]), store)

    row = stored_rows(store)[0]
    assert (row.page, row.session_id, row.user_agent, row.screen_width, row.screen_height) == \
        ("/about", "sess_9", "Mozilla/5.0", 390, 844)
    assert row.created_at is not None


def test_transport_error_does_not_stop_the_loop(store, make_consumer, make_record):
    consumer = make_consumer([
        KafkaConnectionError("broker went away"),
        [make_record(0, wire("after-error"))],
    ])

    subscriber = run_to_completion(consumer, store)

    assert [row.event_type for row in stored_rows(store)] == ["after-error"]
    assert subscriber.state is SubscriberState.STOPPED


def test_transient_write_failure_is_retried(store, make_consumer, make_record):
    flaky = FlakyStore(store, failures=2)

    run_to_completion(make_consumer([[make_record(0, wire("A"))]]), flaky, write_attempts=3)

    assert flaky.attempts == 3
    assert [row.event_type for row in stored_rows(store)] == ["A"]


def test_persistent_write_failure_skips_message(store, make_consumer, make_record):
    flaky = FlakyStore(store, failures=3)
    consumer = make_consumer([[make_record(0, wire("lost")), make_record(1, wire("kept"))]])

    run_to_completion(consumer, flaky, write_attempts=3)

    assert [row.event_type for row in stored_rows(store)] == ["kept"]


def test_handle_message_returns_row_id(store, make_record):
    subscriber = EventSubscriber(None, store)

    assert subscriber.handle_message(make_record(0, wire("A"))) == 1
    assert subscriber.handle_message(make_record(1, b"")) is None


def test_stop_releases_consumer(store, make_consumer):
    consumer = make_consumer([])

    subscriber = run_to_completion(consumer, store)

    assert consumer.closed
    assert subscriber.state is SubscriberState.STOPPED


def test_stop_mid_batch_leaves_rest_unprocessed(store, make_consumer, make_record):
    consumer = make_consumer([[make_record(0, wire("A")), make_record(1, wire("B"))]])
    subscriber = EventSubscriber(consumer, store, poll_timeout_ms=10)

    original_insert = store.insert

    def insert_then_stop(event):
        subscriber.stop()
        return original_insert(event)

    store.insert = insert_then_stop
    subscriber.run()

    assert [row.event_type for row in stored_rows(store)] == ["A"]
    assert consumer.closed


def test_state_starts_as_starting(store, make_consumer):
    assert EventSubscriber(make_consumer([]), store).state is SubscriberState.STARTING


@pytest.mark.parametrize("value", [b"{}", b"null", b"42"])
def test_structurally_wrong_messages_are_skipped(store, make_consumer, make_record, value):
    run_to_completion(make_consumer([[make_record(0, value), make_record(1, wire("ok"))]]), store)

    assert [row.event_type for row in stored_rows(store)] == ["ok"]


class BrokenDriverStore:
    """Raises a non-SQLAlchemy error on the first insert, then delegates"""

    def __init__(self, store):
        self.store = store
        self.attempts = 0

    def insert(self, event):
        self.attempts += 1
        if self.attempts == 1:
            raise OverflowError("Python int too large to convert to SQLite INTEGER")
        return self.store.insert(event)


def test_unexpected_write_error_skips_message_without_ending_loop(store, make_consumer, make_record):
    broken = BrokenDriverStore(store)
    consumer = make_consumer([[make_record(0, wire("lost")), make_record(1, wire("kept"))]])

    subscriber = run_to_completion(consumer, broken, write_attempts=3)

    assert broken.attempts == 2
    assert [row.event_type for row in stored_rows(store)] == ["kept"]
    assert subscriber.state is SubscriberState.STOPPED


def test_oversized_screen_width_is_skipped_and_next_event_stored(store, make_consumer, make_record):
    oversized = json.dumps({**json.loads(wire("huge")), "screen_width": 2**70}).encode("utf-8")
    consumer = make_consumer([[make_record(0, oversized), make_record(1, wire("normal"))]])

    run_to_completion(consumer, store)

    assert [row.event_type for row in stored_rows(store)] == ["normal"]
