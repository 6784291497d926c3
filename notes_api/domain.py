from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum


class ContentType(IntEnum):
    """Where a note's content lives."""

    SQL = 1
    FILE = 2

    @classmethod
    def coerce(cls, value: int) -> "ContentType | int":
        """Return the matching member, or the raw value when it is unknown."""
        try:
            return cls(value)
        except ValueError:
            return value


@dataclass
class NoteRecord:
    """Metadata for a single note, independent of the backend that stores it."""

    id: int | str
    title: str
    created_on: datetime | None = None
    updated_on: datetime | None = None
    content_type: ContentType | int = ContentType.SQL
    path: str | None = None


def utc_now() -> datetime:
    """Return the current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)
