from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine

from analytics_pipeline.core.errors import PersistenceError
from analytics_pipeline.schemas.event import AnalyticsEvent
from analytics_pipeline.services.storage import EventStore


def make_event(event_type="page_view", **overrides):
    return AnalyticsEvent(
        event_type=event_type,
        page=overrides.pop("page", "/"),
        timestamp=datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc),
        session_id=overrides.pop("session_id", "sess_1"),
        **overrides
    )


def test_insert_assigns_increasing_ids(store):
    first = store.insert(make_event())
    second = store.insert(make_event())

    assert second > first


def test_stats_on_empty_table(store):
    assert store.get_stats() == {"total_events": 0, "events_by_type": {}}


def test_stats_group_by_event_type(store):
    for event_type in ("page_view", "click", "page_view"):
        store.insert(make_event(event_type))

    assert store.get_stats() == {
        "total_events": 3,
        "events_by_type": {"page_view": 2, "click": 1}
    }


def test_unreachable_database_raises_persistence_error():
    store = EventStore(create_engine("sqlite:////nonexistent-dir/analytics.db"))

    with pytest.raises(PersistenceError):
        store.ping()
    with pytest.raises(PersistenceError):
        store.insert(make_event())
    with pytest.raises(PersistenceError):
        store.get_stats()
