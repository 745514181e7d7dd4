"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for the append-only movement log, the single
    source of truth for stock quantities.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by the listeners in
      db/immutability.py.
    - Idempotency: idempotency_key is UNIQUE, so a key can produce at most
      one movement even across processes.
    - Ordering: seq is UNIQUE and assigned in ledger order.

Failure modes:
    - IntegrityError on duplicate idempotency_key or seq.  MovementLedger
      resolves the key case by re-reading the existing row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class InventoryMovement(Base):
    """
    One immutable stock movement.

    ``quantity`` is signed: positive inbound, negative outbound, never zero.
    ``owner_id`` is NULL for company stock.
    """

    __tablename__ = "inventory_movements"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_movement_idempotency_key"),
        UniqueConstraint("seq", name="uq_movement_seq"),
        Index("idx_movement_pair", "product_id", "owner_type", "owner_id", "seq"),
        Index("idx_movement_owner", "owner_type", "owner_id"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    kind: Mapped[str] = mapped_column(String(32), nullable=False)

    owner_type: Mapped[str] = mapped_column(String(20), nullable=False)

    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Total value of the movement, never a unit price
    value_amount: Mapped[Decimal] = mapped_column(nullable=False)

    reference_id: Mapped[str] = mapped_column(String(128), nullable=False)

    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    corrects_movement_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement #{self.seq} {self.kind} {self.product_id} "
            f"{self.quantity:+d} {self.owner_type}:{self.owner_id or '-'}>"
        )
