from datetime import datetime, timezone

from sqlalchemy import BigInteger, Integer

from lendloop.extensions import db

# Use BIGINT in PostgreSQL, but INTEGER in SQLite so autoincrement works.
PKType = BigInteger().with_variant(Integer, "sqlite")
Money = db.Numeric(12, 2)


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    # SQLite drops tzinfo on DateTime(timezone=True) columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
