"""
Module: inventory_kernel.models.pending_operation
Responsibility: ORM persistence for orchestrator operations that exhausted
    their retries and were queued for replay instead of failing hard.
Architecture position: Kernel > Models.  May import from db/base.py only.

Replaying a queued operation is safe because every movement it appends is
keyed by the same idempotency keys as the first attempt.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class PendingStatus(str, Enum):
    QUEUED = "queued"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PendingOperation(Base):
    """One queued orchestrator operation."""

    __tablename__ = "pending_operations"

    __table_args__ = (
        UniqueConstraint("operation_type", "reference_id", name="uq_pending_operation"),
        Index("idx_pending_status", "status"),
    )

    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(128), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PendingStatus.QUEUED.value)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<PendingOperation {self.operation_type}:{self.reference_id} {self.status}>"
