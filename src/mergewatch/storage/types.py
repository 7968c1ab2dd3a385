from datetime import datetime, timedelta, timezone

import pydantic


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryHistory(pydantic.BaseModel):
    """Retry history for the builds of a single commit."""

    model_config = pydantic.ConfigDict(extra="forbid", frozen=True)

    # Number of retries already issued
    retry_count: int = pydantic.Field(ge=0)
    last_update: datetime

    @pydantic.field_validator("last_update")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps were written in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @pydantic.field_serializer("last_update")
    def serialize_last_update(self, value: datetime) -> str:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def age(self, now: datetime) -> timedelta:
        return now - self.last_update
