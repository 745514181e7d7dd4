"""
Service layer for the product catalog and the investor register.

Returns ProductInfo / InvestorInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from inventory_kernel.exceptions import InvestorNotFoundError, ProductNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.investor import Investor
from inventory_kernel.models.product import Product
from inventory_kernel.services.base import BaseService

logger = get_logger("services.catalog")


@dataclass(frozen=True)
class ProductInfo:
    product_id: str
    name: str
    unit: str | None
    min_stock: int
    is_active: bool


@dataclass(frozen=True)
class InvestorInfo:
    investor_id: str
    name: str
    phone: str | None
    invested_amount: Decimal
    is_active: bool


class CatalogService(BaseService):
    """Products and investors. Flush-only; the caller commits."""

    def _product_dto(self, row: Product) -> ProductInfo:
        return ProductInfo(
            product_id=row.product_id,
            name=row.name,
            unit=row.unit,
            min_stock=row.min_stock,
            is_active=row.is_active,
        )

    def _investor_dto(self, row: Investor) -> InvestorInfo:
        return InvestorInfo(
            investor_id=row.investor_id,
            name=row.name,
            phone=row.phone,
            invested_amount=row.invested_amount,
            is_active=row.is_active,
        )

    def _get_product(self, product_id: str) -> Product:
        row = self.session.scalar(select(Product).where(Product.product_id == product_id))
        if row is None:
            raise ProductNotFoundError(product_id)
        return row

    def _get_investor(self, investor_id: str) -> Investor:
        row = self.session.scalar(select(Investor).where(Investor.investor_id == investor_id))
        if row is None:
            raise InvestorNotFoundError(investor_id)
        return row

    # Products

    def register_product(
        self,
        product_id: str,
        name: str,
        *,
        min_stock: int = 0,
        unit: str | None = None,
    ) -> ProductInfo:
        if min_stock < 0:
            raise ValueError("min_stock must be >= 0")
        row = Product(
            product_id=product_id,
            name=name,
            unit=unit,
            min_stock=min_stock,
            is_active=True,
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.info("product_registered", extra={"product_id": product_id, "min_stock": min_stock})
        return self._product_dto(row)

    def get_product(self, product_id: str) -> ProductInfo:
        return self._product_dto(self._get_product(product_id))

    def find_product(self, product_id: str) -> ProductInfo | None:
        row = self.session.scalar(select(Product).where(Product.product_id == product_id))
        return self._product_dto(row) if row is not None else None

    def set_min_stock(self, product_id: str, min_stock: int) -> ProductInfo:
        if min_stock < 0:
            raise ValueError("min_stock must be >= 0")
        row = self._get_product(product_id)
        row.min_stock = min_stock
        self.session.flush()
        return self._product_dto(row)

    def deactivate_product(self, product_id: str) -> ProductInfo:
        """Block further movements for the product. History is kept."""
        row = self._get_product(product_id)
        row.is_active = False
        self.session.flush()
        logger.info("product_deactivated", extra={"product_id": product_id})
        return self._product_dto(row)

    # Investors

    def register_investor(
        self,
        investor_id: str,
        name: str,
        invested_amount: Decimal = Decimal("0"),
        *,
        phone: str | None = None,
    ) -> InvestorInfo:
        if invested_amount < 0:
            raise ValueError("invested_amount must be >= 0")
        row = Investor(
            investor_id=investor_id,
            name=name,
            phone=phone,
            invested_amount=invested_amount,
            is_active=True,
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "investor_registered",
            extra={"investor_id": investor_id, "invested_amount": invested_amount},
        )
        return self._investor_dto(row)

    def get_investor(self, investor_id: str) -> InvestorInfo:
        return self._investor_dto(self._get_investor(investor_id))

    def find_investor(self, investor_id: str) -> InvestorInfo | None:
        row = self.session.scalar(select(Investor).where(Investor.investor_id == investor_id))
        return self._investor_dto(row) if row is not None else None

    def add_investment(self, investor_id: str, amount: Decimal) -> InvestorInfo:
        """Increase an investor's capital. Withdrawals are negative amounts."""
        row = self._get_investor(investor_id)
        new_total = row.invested_amount + amount
        if new_total < 0:
            raise ValueError(
                f"Investment for {investor_id} cannot go below zero ({new_total})"
            )
        row.invested_amount = new_total
        self.session.flush()
        logger.info(
            "investor_capital_changed",
            extra={"investor_id": investor_id, "delta": amount, "invested_amount": new_total},
        )
        return self._investor_dto(row)

    def list_investors(self) -> list[InvestorInfo]:
        rows = self.session.scalars(select(Investor).order_by(Investor.investor_id))
        return [self._investor_dto(r) for r in rows]
