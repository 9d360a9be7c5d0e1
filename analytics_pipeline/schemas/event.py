# Pydantic schemas

from datetime import datetime

from pydantic import BaseModel, Field, ValidationError, field_validator

from analytics_pipeline.core.errors import InvalidPayload

# screen_width/screen_height are stored in 32-bit INTEGER columns
INT32_MAX = 2**31 - 1


class AnalyticsEvent(BaseModel):
    """
    One analytics event, as submitted over HTTP and carried on the topic.

    Unknown fields are ignored. The timestamp is always caller-supplied;
    user_agent is the only field the server may fill in.
    """

    event_type: str = Field(..., min_length=1, max_length=50)
    page: str = Field(..., min_length=1, max_length=255)
    timestamp: datetime
    session_id: str = Field(..., min_length=1, max_length=100)
    user_agent: str | None = None
    screen_width: int | None = Field(default=None, ge=0, le=INT32_MAX)
    screen_height: int | None = Field(default=None, ge=0, le=INT32_MAX)

    @field_validator('event_type', 'page', 'session_id')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Field cannot be empty or whitespace')
        return v

    def with_user_agent(self, user_agent: str | None) -> "AnalyticsEvent":
        """Return a copy with user_agent filled in, unless the caller already sent one"""
        if self.user_agent or not user_agent:
            return self
        return self.model_copy(update={"user_agent": user_agent})

    def to_wire(self) -> bytes:
        """Encode as the JSON payload published to the topic"""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_wire(cls, payload: bytes | str | None) -> "AnalyticsEvent":
        """Decode a topic payload or request body, raising InvalidPayload on any defect"""
        if not payload:
            raise InvalidPayload("Empty event payload")
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise InvalidPayload("Invalid event payload", cause=e) from e


class PublishResponse(BaseModel):
    """Response for an accepted event"""

    status: str = "success"
    message: str = "Event queued"
    partition: int
    offset: int


class StatsResponse(BaseModel):
    """Aggregate counts over stored events"""

    total_events: int
    events_by_type: dict[str, int]


class HealthResponse(BaseModel):
    status: str
    database: str
