"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only queries over the movement log: from-scratch stock
    replay, movement lookup by id or idempotency key, and the ORM-to-DTO
    mapping every reader of movements shares.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Replay is always a SUM over the log itself; it never consults the
      ledger's running aggregate, so it can be used to verify it.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.sql import Select

from inventory_kernel.domain.clock import ensure_utc
from inventory_kernel.domain.values import Movement, MovementKind, OwnerRef, OwnerType
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.selectors.base import BaseSelector


PairKey = tuple[str, str, str | None]


def pair_key(product_id: str, owner: OwnerRef) -> PairKey:
    """Key of one (product, owner) stock pair."""
    return (product_id, owner.owner_type.value, owner.owner_id)


def movement_from_row(row: InventoryMovement) -> Movement:
    return Movement(
        id=row.id,
        seq=row.seq,
        product_id=row.product_id,
        quantity=row.quantity,
        kind=MovementKind(row.kind),
        owner=OwnerRef(OwnerType(row.owner_type), row.owner_id),
        value_amount=row.value_amount,
        reference_id=row.reference_id,
        reference_type=row.reference_type,
        idempotency_key=row.idempotency_key,
        payload_hash=row.payload_hash,
        recorded_at=ensure_utc(row.recorded_at),
        notes=row.notes,
        corrects_movement_id=row.corrects_movement_id,
    )


def filter_owner(stmt: Select, owner: OwnerRef | None) -> Select:
    """Restrict a movement query to one owner (NULL-safe for the company)."""
    if owner is None:
        return stmt
    stmt = stmt.where(InventoryMovement.owner_type == owner.owner_type.value)
    if owner.owner_id is None:
        return stmt.where(InventoryMovement.owner_id.is_(None))
    return stmt.where(InventoryMovement.owner_id == owner.owner_id)


@dataclass(frozen=True)
class PairStock:
    product_id: str
    owner: OwnerRef
    quantity: int

    @property
    def key(self) -> PairKey:
        return pair_key(self.product_id, self.owner)


class StockSelector(BaseSelector):
    """Read-only access to the movement log."""

    def replay_stock(self, product_id: str, owner: OwnerRef | None = None) -> int:
        """Sum of quantities for the product (and owner, if given)."""
        stmt = select(func.coalesce(func.sum(InventoryMovement.quantity), 0)).where(
            InventoryMovement.product_id == product_id
        )
        return int(self.session.scalar(filter_owner(stmt, owner)) or 0)

    def all_pairs(self) -> list[PairStock]:
        """Replayed stock of every (product, owner) pair that has movements."""
        stmt = (
            select(
                InventoryMovement.product_id,
                InventoryMovement.owner_type,
                InventoryMovement.owner_id,
                func.sum(InventoryMovement.quantity),
            )
            .group_by(
                InventoryMovement.product_id,
                InventoryMovement.owner_type,
                InventoryMovement.owner_id,
            )
            .order_by(
                InventoryMovement.product_id,
                InventoryMovement.owner_type,
                InventoryMovement.owner_id,
            )
        )
        return [
            PairStock(product_id, OwnerRef(OwnerType(owner_type), owner_id), int(qty or 0))
            for product_id, owner_type, owner_id, qty in self.session.execute(stmt)
        ]

    def owners_of(self, product_id: str) -> list[OwnerRef]:
        """Every owner that has at least one movement for the product."""
        stmt = (
            select(InventoryMovement.owner_type, InventoryMovement.owner_id)
            .where(InventoryMovement.product_id == product_id)
            .distinct()
        )
        owners = [OwnerRef(OwnerType(t), oid) for t, oid in self.session.execute(stmt)]
        return sorted(owners, key=lambda o: o.key)

    def get_by_idempotency_key(self, idempotency_key: str) -> Movement | None:
        row = self.session.scalar(
            select(InventoryMovement).where(InventoryMovement.idempotency_key == idempotency_key)
        )
        return movement_from_row(row) if row is not None else None

    def get_movement(self, movement_id: UUID) -> Movement | None:
        row = self.session.get(InventoryMovement, movement_id)
        return movement_from_row(row) if row is not None else None

    def movements_for_reference(self, reference_type: str, reference_id: str) -> list[Movement]:
        stmt = (
            select(InventoryMovement)
            .where(
                InventoryMovement.reference_type == reference_type,
                InventoryMovement.reference_id == reference_id,
            )
            .order_by(InventoryMovement.seq)
        )
        return [movement_from_row(row) for row in self.session.scalars(stmt)]

    def max_seq(self) -> int:
        return int(self.session.scalar(select(func.coalesce(func.max(InventoryMovement.seq), 0))) or 0)
