"""
Module: inventory_kernel.models.entity_link
Responsibility: ORM persistence for instrument-to-owner links.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one active link per (entity_type, entity_id), by unique
      constraint.  Relinking updates the row in place; unlinking deletes it.
      The instrument itself is never touched.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class EntityLinkModel(Base):
    """The active owner link of one check or installment."""

    __tablename__ = "entity_links"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_entity_link_entity"),
        Index("idx_entity_link_owner", "owner_type", "owner_id"),
    )

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)

    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    owner_type: Mapped[str] = mapped_column(String(20), nullable=False)

    confidence: Mapped[str] = mapped_column(String(10), nullable=False)

    linked_by: Mapped[str] = mapped_column(String(10), nullable=False)

    score: Mapped[Decimal | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EntityLink {self.entity_type}:{self.entity_id} -> "
            f"{self.owner_type}:{self.owner_id} ({self.confidence}/{self.linked_by})>"
        )
