from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel

RFC3339_UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp(moment: datetime | None = None) -> str:
    value = moment if moment is not None else datetime.now(timezone.utc)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(RFC3339_UTC_FORMAT)


class ReleasedBody(BaseModel):
    timestamp: str

    @classmethod
    def now(cls) -> "ReleasedBody":
        return cls(timestamp=utc_timestamp())
