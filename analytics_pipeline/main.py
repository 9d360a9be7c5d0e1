from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from kafka.errors import KafkaError
from sqlalchemy.exc import SQLAlchemyError
import structlog
import time
import uvicorn

from analytics_pipeline.core.config import Settings, settings
from analytics_pipeline.core.context import ServiceContext
from analytics_pipeline.core.database import create_db_engine, init_db, wait_for_database
from analytics_pipeline.core.logging import configure_logging
from analytics_pipeline.core.retry import retry_fixed
from analytics_pipeline.api import events, stats
from analytics_pipeline.services.publisher import EventPublisher
from analytics_pipeline.services.storage import EventStore
from analytics_pipeline.transport.kafka import create_producer

logger = structlog.get_logger()


def build_context(settings: Settings) -> ServiceContext:
    """Connect to Kafka and the database, retrying each a bounded number of times"""
    producer = retry_fixed(
        lambda: create_producer(settings),
        attempts=settings.startup_attempts,
        delay=settings.startup_delay_seconds,
        description="kafka_connect",
        retry_on=(KafkaError,)
    )
    publisher = EventPublisher(
        producer,
        topic=settings.kafka_topic,
        partition=settings.kafka_partition,
        timeout=settings.publish_timeout_seconds
    )

    engine = create_db_engine(settings)
    try:
        wait_for_database(engine, settings)
        init_db(engine)
    except SQLAlchemyError:
        publisher.close()
        raise

    return ServiceContext(settings=settings, store=EventStore(engine), publisher=publisher)


def create_app(context: ServiceContext | None = None, app_settings: Settings = settings) -> FastAPI:
    """
    Build the API.

    Without a context the lifespan connects to Kafka and the database on
    startup and closes them on shutdown. Passing a context skips that.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle events"""
        logger.info("application_startup", app_name=app_settings.app_name)
        owns_context = context is None
        if owns_context:
            app.state.context = build_context(app_settings)
        yield
        if owns_context:
            app.state.context.close()
        logger.info("application_shutdown")

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        debug=app_settings.debug,
        lifespan=lifespan
    )
    if context is not None:
        app.state.context = context

    # Middleware for logging requests
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )

        return response

    # Include routers
    app.include_router(events.router)
    app.include_router(stats.router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": app_settings.app_name,
            "version": app_settings.app_version,
            "status": "running"
        }

    return app


app = create_app()


def serve():
    """Run the publisher API"""
    configure_logging(settings.debug)
    logger.info("server_starting", port=settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
