"""
Database compatibility layer.

JSONType: JSONB on PostgreSQL (prod), JSON on SQLite (dev/tests).
"""

from sqlalchemy import JSON, TypeDecorator
from sqlalchemy.dialects import postgresql


class JSONType(TypeDecorator):
    """Platform-independent JSON type.

    Uses JSONB on PostgreSQL, JSON on SQLite.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)
