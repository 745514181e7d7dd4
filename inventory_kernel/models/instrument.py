"""
Module: inventory_kernel.models.instrument
Responsibility: ORM persistence for checks and installments.  An instrument
    names its counterparty by free text; its owner is resolved separately
    through entity_links.
Architecture position: Kernel > Models.  May import from db/base.py only.

Failure modes:
    - IntegrityError on duplicate (entity_type, entity_id).
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class InstrumentModel(Base):
    """A check or installment."""

    __tablename__ = "instruments"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_instrument_entity"),
        Index("idx_instrument_status", "status"),
        Index("idx_instrument_reference", "reference_id"),
    )

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    counterparty_name: Mapped[str] = mapped_column(String(255), nullable=False)

    counterparty_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Sale or purchase that produced the instrument
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    status_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Instrument {self.entity_type}:{self.entity_id} {self.amount} {self.status}>"
