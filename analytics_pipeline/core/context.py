from dataclasses import dataclass

from fastapi import Request

from analytics_pipeline.core.config import Settings
from analytics_pipeline.services.publisher import EventPublisher
from analytics_pipeline.services.storage import EventStore


@dataclass
class ServiceContext:
    """Long-lived handles built once at startup and handed to every request"""
    settings: Settings
    store: EventStore
    publisher: EventPublisher

    def close(self) -> None:
        self.publisher.close()
        self.store.engine.dispose()


def get_context(request: Request) -> ServiceContext:
    """Dependency for getting the service context"""
    return request.app.state.context
