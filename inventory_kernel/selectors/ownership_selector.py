"""
Module: inventory_kernel.selectors.ownership_selector
Responsibility: Ownership partition read model.  Answers "what does this
    owner hold, what is it worth, and how much capital is left" purely by
    aggregating the movement log, plus the advisory availability check the
    orchestrator runs before appending.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - No stored balances: every figure is a GROUP BY over movements, so a
      partition always agrees with a replay of the log.
    - remaining_capital = total_investment - total_spent + total_sales_value.

Failure modes:
    - InvestorNotFoundError when a partition or capital figure is requested
      for an investor that is not registered.

Non-goals:
    - validate_availability is advisory.  It takes no lock; the ledger's
      append-time check is the authority.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import case, func, select

from inventory_kernel.domain.values import OwnerRef, OwnerType
from inventory_kernel.exceptions import InvestorNotFoundError
from inventory_kernel.models.investor import Investor
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.models.product import Product
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.stock_selector import StockSelector, filter_owner

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    if value is None:
        return _ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class Holding:
    product_id: str
    current_stock: int
    current_value: Decimal


@dataclass(frozen=True)
class OwnershipPartition:
    """Everything one owner holds, and the capital position behind it."""

    owner: OwnerRef
    holdings: tuple[Holding, ...]
    total_investment: Decimal
    total_spent: Decimal
    total_sales_value: Decimal

    @property
    def remaining_capital(self) -> Decimal:
        return self.total_investment - self.total_spent + self.total_sales_value

    @property
    def total_stock_value(self) -> Decimal:
        return sum((h.current_value for h in self.holdings), _ZERO)

    @property
    def total_units(self) -> int:
        return sum(h.current_stock for h in self.holdings)

    def holding(self, product_id: str) -> Holding | None:
        for h in self.holdings:
            if h.product_id == product_id:
                return h
        return None


@dataclass(frozen=True)
class Availability:
    product_id: str
    owner: OwnerRef
    available: bool
    current_stock: int
    requested: int
    shortfall: int


@dataclass(frozen=True)
class CapitalCheck:
    investor_id: str
    sufficient: bool
    remaining_capital: Decimal
    requested: Decimal


@dataclass(frozen=True)
class LowStockAlert:
    product_id: str
    name: str
    current_stock: int
    min_stock: int

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_stock <= 0


class OwnershipSelector(BaseSelector):
    """Ownership partition and availability queries."""

    def partition_for(self, owner: OwnerRef) -> OwnershipPartition:
        total_investment = self._investment_for(owner)

        inbound = InventoryMovement.quantity > 0
        stmt = (
            select(
                InventoryMovement.product_id,
                func.sum(InventoryMovement.quantity),
                func.sum(case((inbound, InventoryMovement.quantity), else_=0)),
                func.sum(case((inbound, InventoryMovement.value_amount), else_=0)),
                func.sum(case((~inbound, InventoryMovement.value_amount), else_=0)),
            )
            .group_by(InventoryMovement.product_id)
            .order_by(InventoryMovement.product_id)
        )
        stmt = filter_owner(stmt, owner)

        holdings: list[Holding] = []
        total_spent = _ZERO
        total_sales = _ZERO
        for product_id, stock, in_qty, in_value, out_value in self.session.execute(stmt):
            stock = int(stock or 0)
            in_qty = int(in_qty or 0)
            in_value = _dec(in_value)
            total_spent += in_value
            total_sales += _dec(out_value)
            if stock == 0:
                continue
            unit_cost = (in_value / in_qty) if in_qty > 0 else _ZERO
            holdings.append(
                Holding(
                    product_id=product_id,
                    current_stock=stock,
                    current_value=(unit_cost * stock).quantize(_CENT, rounding=ROUND_HALF_UP),
                )
            )

        return OwnershipPartition(
            owner=owner,
            holdings=tuple(holdings),
            total_investment=total_investment,
            total_spent=total_spent,
            total_sales_value=total_sales,
        )

    def remaining_capital(self, investor_id: str) -> Decimal:
        return self.partition_for(OwnerRef.investor(investor_id)).remaining_capital

    def investor_capital_check(self, investor_id: str, amount: Decimal) -> CapitalCheck:
        """Whether the investor can fund a purchase of ``amount``. Advisory, like availability."""
        if amount < 0:
            raise ValueError("amount must be >= 0")
        remaining = self.remaining_capital(investor_id)
        return CapitalCheck(
            investor_id=investor_id,
            sufficient=remaining >= amount,
            remaining_capital=remaining,
            requested=amount,
        )

    def validate_availability(
        self, product_id: str, owner: OwnerRef, requested_qty: int
    ) -> Availability:
        if requested_qty <= 0:
            raise ValueError("requested_qty must be positive")
        current = StockSelector(self.session).replay_stock(product_id, owner)
        return Availability(
            product_id=product_id,
            owner=owner,
            available=current >= requested_qty,
            current_stock=current,
            requested=requested_qty,
            shortfall=max(0, requested_qty - current),
        )

    def low_stock_products(self, owner: OwnerRef | None = None) -> list[LowStockAlert]:
        """Active products whose stock is at or below their min_stock."""
        stock_subq = filter_owner(
            select(
                InventoryMovement.product_id.label("product_id"),
                func.sum(InventoryMovement.quantity).label("stock"),
            ).group_by(InventoryMovement.product_id),
            owner,
        ).subquery()

        stmt = (
            select(Product.product_id, Product.name, Product.min_stock, stock_subq.c.stock)
            .outerjoin(stock_subq, stock_subq.c.product_id == Product.product_id)
            .where(Product.is_active.is_(True))
            .order_by(Product.product_id)
        )
        alerts = []
        for product_id, name, min_stock, stock in self.session.execute(stmt):
            current = int(stock or 0)
            if current <= min_stock:
                alerts.append(LowStockAlert(product_id, name, current, min_stock))
        return alerts

    def _investment_for(self, owner: OwnerRef) -> Decimal:
        if owner.owner_type == OwnerType.COMPANY:
            return _ZERO
        amount = self.session.scalar(
            select(Investor.invested_amount).where(Investor.investor_id == owner.owner_id)
        )
        if amount is None:
            raise InvestorNotFoundError(owner.owner_id or "")
        return _dec(amount)
