# DB connections

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
import structlog

from analytics_pipeline.core.config import Settings
from analytics_pipeline.core.retry import retry_fixed
from analytics_pipeline.models.event import Base

logger = structlog.get_logger()


def create_db_engine(settings: Settings) -> Engine:
    """Pooled engine shared by the subscriber write path and the stats read path"""
    return create_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=0,
        pool_pre_ping=True
    )


def ping(engine: Engine) -> None:
    """Raise if the database cannot answer a trivial query"""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def wait_for_database(engine: Engine, settings: Settings) -> None:
    """Probe the database with a bounded fixed-delay retry"""
    retry_fixed(
        lambda: ping(engine),
        attempts=settings.startup_attempts,
        delay=settings.startup_delay_seconds,
        description="database_connect"
    )
    logger.info("database_connected")


def init_db(engine: Engine) -> None:
    """Create the events table if it does not exist yet"""
    Base.metadata.create_all(engine)
    logger.info("database_table_ready")
