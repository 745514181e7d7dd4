"""
Module: inventory_kernel.models.product
Responsibility: ORM persistence for the product catalog.  A movement may
    only be appended for a product that exists here and is active.
Architecture position: Kernel > Models.  May import from db/base.py only.

Failure modes:
    - IntegrityError on duplicate product_id (uq_product_id constraint).
"""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class Product(Base):
    """
    Catalog entry for a stocked product.

    Stock quantities are never stored here; they are derived from the
    movement log.  ``min_stock`` is the low-stock alert threshold.
    """

    __tablename__ = "products"

    __table_args__ = (UniqueConstraint("product_id", name="uq_product_id"),)

    # Business key used by every movement
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)

    min_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Product {self.product_id}: {self.name}>"
