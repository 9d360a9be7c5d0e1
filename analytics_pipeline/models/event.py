# SQLAlchemy models

from sqlalchemy import Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AnalyticsEventRecord(Base):
    __tablename__ = "analytics_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False, index=True)
    page = Column(String(255), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    session_id = Column(String(100), nullable=False)
    user_agent = Column(Text, nullable=True)
    screen_width = Column(Integer, nullable=True)
    screen_height = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
