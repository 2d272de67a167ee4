"""
Portable column types.

The same models run on PostgreSQL (production) and SQLite (dev/tests):
- GUID: native UUID on PostgreSQL, CHAR(36) elsewhere
- JSONType: JSONB on PostgreSQL, JSON elsewhere
- TimeOfDay: "HH:MM" string column exposed as datetime.time
"""

import uuid
from datetime import time

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects import postgresql


class GUID(TypeDecorator):
    """UUID column that degrades to CHAR(36) outside PostgreSQL."""

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON elsewhere."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)


class TimeOfDay(TypeDecorator):
    """Local time-of-day stored as a zero-padded "HH:MM" string.

    String storage keeps comparisons identical across dialects and matches
    what the authoring UI writes (e.g. "18:30").
    """

    impl = String(5)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, time):
            return value.strftime("%H:%M")
        return parse_time_of_day(str(value)).strftime("%H:%M")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_time_of_day(value)


def parse_time_of_day(raw: str) -> time:
    """Parse "H:MM", "HH:MM" or "HH:MM:SS" into a time."""
    parts = raw.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time of day: {raw!r}")
    hour, minute = int(parts[0]), int(parts[1])
    return time(hour=hour, minute=minute)
