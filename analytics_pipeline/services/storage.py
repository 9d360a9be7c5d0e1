from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
import structlog

from analytics_pipeline.core.database import ping
from analytics_pipeline.core.errors import PersistenceError
from analytics_pipeline.models.event import AnalyticsEventRecord
from analytics_pipeline.schemas.event import AnalyticsEvent

logger = structlog.get_logger()


class EventStore:
    """Persistence sink for analytics events. Every call is one short transaction."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def insert(self, event: AnalyticsEvent) -> int:
        """Store one event and return its generated id"""
        record = AnalyticsEventRecord(
            event_type=event.event_type,
            page=event.page,
            timestamp=event.timestamp,
            session_id=event.session_id,
            user_agent=event.user_agent,
            screen_width=event.screen_width,
            screen_height=event.screen_height
        )

        try:
            with self.Session() as session:
                session.add(record)
                session.commit()
                return record.id
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to insert event", cause=e) from e

    def get_stats(self) -> dict:
        """Total row count and row count per event_type"""
        try:
            with self.Session() as session:
                total = session.execute(
                    select(func.count()).select_from(AnalyticsEventRecord)
                ).scalar_one()

                rows = session.execute(
                    select(AnalyticsEventRecord.event_type, func.count())
                    .group_by(AnalyticsEventRecord.event_type)
                ).all()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to query event stats", cause=e) from e

        return {
            "total_events": total,
            "events_by_type": {event_type: count for event_type, count in rows}
        }

    def ping(self) -> None:
        try:
            ping(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError("Database connection failed", cause=e) from e
