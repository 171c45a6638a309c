"""
Declarative base and shared columns for the ledger models.

Every table gets an integer id, a UUID that can be handed to other
systems, and created/updated timestamps in UTC.
"""

import uuid as uuid_lib
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base, validates

from perfumery.utils.datetime_utils import utc_now

Base = declarative_base()


class BaseModel(Base):
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    # SQLite has no UUID type
    uuid = Column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid_lib.uuid4()), index=True
    )

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self, include_relationships: bool = False) -> Dict[str, Any]:
        """
        Column values as a plain dict.

        Quantities and money come back as strings (e.g. "4802.4900") and
        datetimes as ISO strings, so the dict can be JSON-encoded without
        losing precision.

        Args:
            include_relationships: Also serialize loaded relationships, one
                level deep (formula lines, QC checks, components, ...)
        """
        result = {
            column.name: _serialize(getattr(self, column.name)) for column in self.__table__.columns
        }
        if not include_relationships:
            return result

        for rel in self.__mapper__.relationships:
            related = getattr(self, rel.key)
            if related is None:
                result[rel.key] = None
            elif rel.uselist:
                result[rel.key] = [child.to_dict() for child in related]
            else:
                result[rel.key] = related.to_dict()
        return result

    @validates("uuid")
    def _validate_uuid(self, _key: str, value: Any) -> str:
        return value if value is None else str(value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value
