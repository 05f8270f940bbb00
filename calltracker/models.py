"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import Column, Enum, Integer, String
from sqlalchemy.types import TypeDecorator

from calltracker.duration import parse_timestamp
from calltracker.storage import Base

# Fixed width so that lexical order matches chronological order;
# the year is zero-padded separately since %Y is not padded everywhere
TIMESTAMP_SUFFIX_FORMAT = "-%m-%dT%H:%M:%S.%fZ"


class CallStatus(str, enum.Enum):
    STARTED = "started"
    ENDED = "ended"
    # Reserved for rejected calls, never written by ingestion
    FAILED = "failed"


class UTCTimestamp(TypeDecorator):
    """
    Stores aware datetimes as ISO-8601 UTC strings and loads them back as
    aware UTC datetimes.
    """
    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        instant = parse_timestamp(value)
        return f"{instant.year:04d}" + instant.strftime(TIMESTAMP_SUFFIX_FORMAT)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_timestamp(value)


class Call(Base):
    """
    SQLAlchemy model for one tracked phone call.

    Table: calls
    Primary Key: id (caller supplied; a second insert with the same id fails)

    duration and ended are set together, exactly once, when the call leaves
    the 'started' status.
    """
    __tablename__ = "calls"

    id = Column(String, primary_key=True, index=True)
    from_number = Column(String(16), nullable=False)
    to_number = Column(String(16), nullable=False)
    started = Column(UTCTimestamp, nullable=False, index=True)
    ended = Column(UTCTimestamp, nullable=True)
    duration = Column(Integer, nullable=True)
    status = Column(
        Enum(
            CallStatus,
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=CallStatus.STARTED,
        index=True,
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"<Call id={self.id} status={status} duration={self.duration}>"
