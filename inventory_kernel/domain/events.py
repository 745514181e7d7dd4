"""
Events -- Inbound business events and outbound cash-flow records.

Responsibility:
    Frozen dataclasses for the events the integration orchestrator accepts
    (sales, purchases, investor transactions, returns, transfers) and the
    CashFlowEntry it emits.  ``from_dict`` constructors turn loosely-typed
    payloads into these types and raise InvalidEventError on bad input;
    ``to_dict`` gives the inverse, used to queue an event for replay.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - InvalidEventError from ``from_dict`` and ``validate``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from inventory_kernel.domain.linking import EntityType
from inventory_kernel.exceptions import InvalidEventError


class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    PARTIAL = "partial"


class InvestorTransactionKind(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


class CashFlowDirection(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


def _to_decimal(value: Any, event_type: str, reference_id: str | None, name: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidEventError(event_type, reference_id, f"{name} is not a number: {value!r}")
    if not result.is_finite():
        raise InvalidEventError(event_type, reference_id, f"{name} must be finite")
    return result


def _to_int(value: Any, event_type: str, reference_id: str | None, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidEventError(event_type, reference_id, f"{name} must be an integer")
    if isinstance(value, int):
        return value
    try:
        as_decimal = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidEventError(event_type, reference_id, f"{name} must be an integer")
    if as_decimal != as_decimal.to_integral_value():
        raise InvalidEventError(event_type, reference_id, f"{name} must be a whole number")
    return int(as_decimal)


def _to_date(value: Any, event_type: str, reference_id: str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidEventError(event_type, reference_id, f"bad date {value!r}")


@dataclass(frozen=True, slots=True)
class EventLine:
    """One product line of a sale, purchase or return."""

    product_id: str
    quantity: int
    unit_value: Decimal

    @property
    def line_value(self) -> Decimal:
        return self.unit_value * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_value": str(self.unit_value),
        }


@dataclass(frozen=True, slots=True)
class InstrumentSpec:
    """A check or installment carried by a sale or purchase."""

    entity_id: str
    entity_type: EntityType
    amount: Decimal
    counterparty_name: str
    counterparty_phone: str | None = None
    due_date: date | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], event_type: str, reference_id: str) -> InstrumentSpec:
        try:
            entity_type = EntityType(data.get("entity_type", "check"))
        except ValueError:
            raise InvalidEventError(
                event_type, reference_id, f"unknown instrument type {data.get('entity_type')!r}"
            )
        entity_id = data.get("entity_id")
        if not entity_id:
            raise InvalidEventError(event_type, reference_id, "instrument entity_id is required")
        return cls(
            entity_id=str(entity_id),
            entity_type=entity_type,
            amount=_to_decimal(data.get("amount"), event_type, reference_id, "instrument amount"),
            counterparty_name=str(data.get("counterparty_name") or ""),
            counterparty_phone=data.get("counterparty_phone"),
            due_date=_to_date(data.get("due_date"), event_type, reference_id),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type.value,
            "amount": str(self.amount),
            "counterparty_name": self.counterparty_name,
            "counterparty_phone": self.counterparty_phone,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        }


def _parse_lines(data: Mapping[str, Any], event_type: str, reference_id: str) -> tuple[EventLine, ...]:
    raw_lines = data.get("lines") or ()
    lines = []
    for raw in raw_lines:
        lines.append(
            EventLine(
                product_id=str(raw.get("product_id") or ""),
                quantity=_to_int(raw.get("quantity"), event_type, reference_id, "quantity"),
                unit_value=_to_decimal(
                    raw.get("unit_value", "0"), event_type, reference_id, "unit_value"
                ),
            )
        )
    return tuple(lines)


def _validate_lines(lines: tuple[EventLine, ...], event_type: str, reference_id: str) -> None:
    if not lines:
        raise InvalidEventError(event_type, reference_id, "at least one line is required")
    for index, line in enumerate(lines):
        if not line.product_id:
            raise InvalidEventError(event_type, reference_id, f"line {index}: product_id is required")
        if line.quantity <= 0:
            raise InvalidEventError(event_type, reference_id, f"line {index}: quantity must be positive")
        if line.unit_value < 0:
            raise InvalidEventError(event_type, reference_id, f"line {index}: unit_value must be >= 0")


@dataclass(frozen=True, slots=True)
class _TradeEvent:
    id: str
    lines: tuple[EventLine, ...]
    counterparty_ref: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str | None = None
    instruments: tuple[InstrumentSpec, ...] = ()

    event_type = "trade"
    counterparty_key = "counterparty_ref"

    @property
    def total_value(self) -> Decimal:
        return sum((line.line_value for line in self.lines), Decimal("0"))

    def validate(self) -> None:
        if not self.id:
            raise InvalidEventError(self.event_type, None, "id is required")
        _validate_lines(self.lines, self.event_type, self.id)
        seen: set[tuple[str, str]] = set()
        for instrument in self.instruments:
            key = (instrument.entity_type.value, instrument.entity_id)
            if key in seen:
                raise InvalidEventError(
                    self.event_type, self.id, f"duplicate instrument {instrument.entity_id}"
                )
            seen.add(key)
            if instrument.amount <= 0:
                raise InvalidEventError(
                    self.event_type, self.id, f"instrument {instrument.entity_id} amount must be positive"
                )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lines": [line.to_dict() for line in self.lines],
            self.counterparty_key: self.counterparty_ref,
            "payment_status": self.payment_status.value,
            "payment_method": self.payment_method,
            "instruments": [instrument.to_dict() for instrument in self.instruments],
        }

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any], counterparty_key: str):
        reference_id = str(data.get("id") or "")
        try:
            payment_status = PaymentStatus(data.get("payment_status", "pending"))
        except ValueError:
            raise InvalidEventError(
                cls.event_type, reference_id, f"unknown payment_status {data.get('payment_status')!r}"
            )
        return cls(
            id=reference_id,
            lines=_parse_lines(data, cls.event_type, reference_id),
            counterparty_ref=data.get(counterparty_key),
            payment_status=payment_status,
            payment_method=data.get("payment_method"),
            instruments=tuple(
                InstrumentSpec.from_dict(raw, cls.event_type, reference_id)
                for raw in data.get("instruments") or ()
            ),
        )


@dataclass(frozen=True, slots=True)
class SaleEvent(_TradeEvent):
    """A customer sale. ``counterparty_ref`` is the customer reference."""

    event_type = "sale"
    counterparty_key = "customer_ref"

    @property
    def customer_ref(self) -> str | None:
        return self.counterparty_ref

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SaleEvent:
        return cls._from_dict(data, cls.counterparty_key)


@dataclass(frozen=True, slots=True)
class PurchaseEvent(_TradeEvent):
    """A supplier purchase. ``counterparty_ref`` is the supplier reference."""

    event_type = "purchase"
    counterparty_key = "supplier_ref"

    @property
    def supplier_ref(self) -> str | None:
        return self.counterparty_ref

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PurchaseEvent:
        return cls._from_dict(data, cls.counterparty_key)


@dataclass(frozen=True, slots=True)
class ReturnEvent:
    """Goods returned by a customer into company stock."""

    id: str
    lines: tuple[EventLine, ...]
    original_sale_id: str | None = None
    reason: str | None = None

    event_type = "return"

    def validate(self) -> None:
        if not self.id:
            raise InvalidEventError(self.event_type, None, "id is required")
        _validate_lines(self.lines, self.event_type, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lines": [line.to_dict() for line in self.lines],
            "original_sale_id": self.original_sale_id,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReturnEvent:
        reference_id = str(data.get("id") or "")
        return cls(
            id=reference_id,
            lines=_parse_lines(data, cls.event_type, reference_id),
            original_sale_id=data.get("original_sale_id"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True, slots=True)
class InvestorTransaction:
    """A purchase or sale of stock held by an investor. ``value`` is the total."""

    transaction_id: str
    investor_id: str
    kind: InvestorTransactionKind
    product_id: str
    quantity: int
    value: Decimal

    event_type = "investor_transaction"

    def validate(self) -> None:
        if not self.transaction_id:
            raise InvalidEventError(self.event_type, None, "transaction_id is required")
        if not self.investor_id:
            raise InvalidEventError(self.event_type, self.transaction_id, "investor_id is required")
        if not self.product_id:
            raise InvalidEventError(self.event_type, self.transaction_id, "product_id is required")
        if self.quantity <= 0:
            raise InvalidEventError(self.event_type, self.transaction_id, "quantity must be positive")
        if self.value < 0:
            raise InvalidEventError(self.event_type, self.transaction_id, "value must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "investor_id": self.investor_id,
            "kind": self.kind.value,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "value": str(self.value),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InvestorTransaction:
        reference_id = str(data.get("transaction_id") or "")
        try:
            kind = InvestorTransactionKind(data.get("kind"))
        except ValueError:
            raise InvalidEventError(cls.event_type, reference_id, f"unknown kind {data.get('kind')!r}")
        return cls(
            transaction_id=reference_id,
            investor_id=str(data.get("investor_id") or ""),
            kind=kind,
            product_id=str(data.get("product_id") or ""),
            quantity=_to_int(data.get("quantity"), cls.event_type, reference_id, "quantity"),
            value=_to_decimal(data.get("value", "0"), cls.event_type, reference_id, "value"),
        )


@dataclass(frozen=True, slots=True)
class TransferEvent:
    """
    Moves units of one product between owners at a stated total value.

    Owners are given as ``(owner_type, owner_id)``; the company has no id.
    """

    id: str
    product_id: str
    quantity: int
    value: Decimal
    from_owner: tuple[str, str | None]
    to_owner: tuple[str, str | None]
    notes: str | None = None

    event_type = "transfer"

    def validate(self) -> None:
        if not self.id:
            raise InvalidEventError(self.event_type, None, "id is required")
        if not self.product_id:
            raise InvalidEventError(self.event_type, self.id, "product_id is required")
        if self.quantity <= 0:
            raise InvalidEventError(self.event_type, self.id, "quantity must be positive")
        if self.value < 0:
            raise InvalidEventError(self.event_type, self.id, "value must be >= 0")
        if tuple(self.from_owner) == tuple(self.to_owner):
            raise InvalidEventError(self.event_type, self.id, "source and target owner are the same")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "value": str(self.value),
            "from_owner_type": self.from_owner[0],
            "from_owner_id": self.from_owner[1],
            "to_owner_type": self.to_owner[0],
            "to_owner_id": self.to_owner[1],
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransferEvent:
        reference_id = str(data.get("id") or "")
        return cls(
            id=reference_id,
            product_id=str(data.get("product_id") or ""),
            quantity=_to_int(data.get("quantity"), cls.event_type, reference_id, "quantity"),
            value=_to_decimal(data.get("value", "0"), cls.event_type, reference_id, "value"),
            from_owner=(data.get("from_owner_type", "company"), data.get("from_owner_id")),
            to_owner=(data.get("to_owner_type", "company"), data.get("to_owner_id")),
            notes=data.get("notes"),
        )


@dataclass(frozen=True, slots=True)
class CashFlowEntry:
    """Cash movement emitted when a paid sale or purchase completes."""

    amount: Decimal
    direction: CashFlowDirection
    reference_id: str
    reference_type: str
    category: str
    payment_method: str | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
