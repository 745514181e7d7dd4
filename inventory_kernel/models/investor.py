"""
Module: inventory_kernel.models.investor
Responsibility: ORM persistence for the investor register.  An investor's
    invested_amount is the capital side of its ownership partition.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class Investor(Base):
    """A party that funds stock it owns, sold through the business."""

    __tablename__ = "investors"

    __table_args__ = (UniqueConstraint("investor_id", name="uq_investor_id"),)

    investor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    invested_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Investor {self.investor_id}: {self.name}>"
