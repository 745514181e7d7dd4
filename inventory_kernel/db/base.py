"""
Declarative base shared by every ledger table.

Column types come from the annotation map so models only spell out what
is unusual about a column:

* ``Decimal``  -> Numeric(38, 9); quantities are ints, money never float
* ``datetime`` -> DateTime(timezone=True)
* ``UUID``     -> String(36) via ``UUIDString``, portable to SQLite
* ``int``      -> BigInteger, for sequence numbers and quantities

Nothing in here may import models, services or selectors.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID values stored as their 36-character text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    # movements, links, parties and queue rows all key on a random UUID
    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
