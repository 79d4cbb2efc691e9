"""
Column types shared by the pipeline tables.

The same models run on PostgreSQL (production) and SQLite (development and
tests), so identifiers, JSON payloads and timestamps go through these types:

- GUID: native UUID on PostgreSQL, CHAR(36) text on SQLite. Accepts UUIDs or
  their string form and always loads as uuid.UUID.
- JSONType: JSONB on PostgreSQL, JSON on SQLite.
- UTCDateTime: naive UTC on both. Aware values, including query bounds, are
  converted to UTC before they reach the store.
"""

import uuid

from sqlalchemy import JSON, DateTime, String, TypeDecorator
from sqlalchemy.dialects import postgresql

from ecobin.timeutil import to_naive_utc


class GUID(TypeDecorator):
    """bin_id, user_id, event_id and row ids."""

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        # Raises ValueError for a malformed id instead of storing it
        value = value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator):
    """Event payloads, hourly counts, insight lists and anomaly details."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)


class UTCDateTime(TypeDecorator):
    """TIMESTAMP WITHOUT TIME ZONE holding UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_naive_utc(value)
