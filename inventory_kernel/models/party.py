"""
Module: inventory_kernel.models.party
Responsibility: ORM persistence for the owner directory (customers,
    suppliers, employees) and their unsettled debts.  These rows are the
    read side the reconciliation engine scores checks against.
Architecture position: Kernel > Models.  May import from db/base.py only.

Failure modes:
    - IntegrityError on duplicate (party_type, party_code).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class PartyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Party(Base):
    """
    A customer, supplier or employee checks can be linked to.

    ``party_type`` holds a LinkOwnerType value.  ``last_transaction_at``
    breaks ties between equally-scored match candidates.
    """

    __tablename__ = "parties"

    __table_args__ = (
        UniqueConstraint("party_type", "party_code", name="uq_party_type_code"),
        Index("idx_party_type", "party_type"),
    )

    party_code: Mapped[str] = mapped_column(String(64), nullable=False)

    party_type: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PartyStatus.ACTIVE.value)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_transaction_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Party {self.party_type}:{self.party_code} {self.name}>"


class OutstandingDebt(Base):
    """An unsettled amount for a party, used as amount evidence in matching."""

    __tablename__ = "outstanding_debts"

    __table_args__ = (
        Index("idx_debt_party", "party_type", "party_code"),
        Index("idx_debt_open", "is_settled"),
    )

    party_code: Mapped[str] = mapped_column(String(64), nullable=False)

    party_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    document_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<OutstandingDebt {self.party_type}:{self.party_code} {self.amount}>"
