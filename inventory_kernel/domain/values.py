"""
Values -- Immutable, self-validating inventory value objects.

Responsibility:
    Owner references, the closed set of movement kinds with their rules, the
    MovementDraft submitted to the ledger and the Movement fact it returns.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Owner consistency: company owners carry no id, investor owners must.
    - Kind rules: every kind has a fixed direction and set of allowed owner
      types (KIND_RULES).  A draft that breaks its kind's rule never reaches
      storage.
    - Quantity is a non-zero int; value_amount is a non-negative Decimal.

Failure modes:
    - ValueError from OwnerRef construction.
    - InvalidMovementError from MovementDraft.validate().
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from inventory_kernel.exceptions import InvalidMovementError


class OwnerType(str, Enum):
    """Who holds title to a unit of stock."""

    COMPANY = "company"
    INVESTOR = "investor"


@dataclass(frozen=True, slots=True)
class OwnerRef:
    """
    Identifies a stock owner.

    The business itself is ``OwnerRef.company()`` (no id); an investor is
    ``OwnerRef.investor("INV-1")``.  Hashable, so it can key lock and
    aggregate maps.
    """

    owner_type: OwnerType
    owner_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.owner_type, OwnerType):
            object.__setattr__(self, "owner_type", OwnerType(self.owner_type))
        if self.owner_type == OwnerType.COMPANY and self.owner_id is not None:
            raise ValueError("Company owner must not carry an owner_id")
        if self.owner_type == OwnerType.INVESTOR and not self.owner_id:
            raise ValueError("Investor owner requires an owner_id")

    @classmethod
    def company(cls) -> OwnerRef:
        return cls(OwnerType.COMPANY, None)

    @classmethod
    def investor(cls, investor_id: str) -> OwnerRef:
        return cls(OwnerType.INVESTOR, investor_id)

    @property
    def is_company(self) -> bool:
        return self.owner_type == OwnerType.COMPANY

    @property
    def key(self) -> str:
        """Stable string form, e.g. ``company`` or ``investor:INV-1``."""
        if self.owner_id is None:
            return self.owner_type.value
        return f"{self.owner_type.value}:{self.owner_id}"

    def __str__(self) -> str:
        return self.key


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    EITHER = "either"


class MovementKind(str, Enum):
    """Closed set of movement kinds. Each has a rule in KIND_RULES."""

    PURCHASE = "purchase"
    SALE = "sale"
    INVESTOR_PURCHASE = "investor_purchase"
    INVESTOR_SALE = "investor_sale"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    RETURN = "return"


@dataclass(frozen=True, slots=True)
class KindRule:
    direction: Direction
    owner_types: frozenset[OwnerType]
    notes_required: bool = False


_ANY_OWNER = frozenset(OwnerType)

KIND_RULES: dict[MovementKind, KindRule] = {
    MovementKind.PURCHASE: KindRule(Direction.INBOUND, frozenset({OwnerType.COMPANY})),
    MovementKind.SALE: KindRule(Direction.OUTBOUND, frozenset({OwnerType.COMPANY})),
    MovementKind.INVESTOR_PURCHASE: KindRule(Direction.INBOUND, frozenset({OwnerType.INVESTOR})),
    MovementKind.INVESTOR_SALE: KindRule(Direction.OUTBOUND, frozenset({OwnerType.INVESTOR})),
    MovementKind.ADJUSTMENT: KindRule(Direction.EITHER, _ANY_OWNER, notes_required=True),
    MovementKind.TRANSFER: KindRule(Direction.EITHER, _ANY_OWNER),
    MovementKind.RETURN: KindRule(Direction.EITHER, _ANY_OWNER),
}


@dataclass(frozen=True, slots=True)
class MovementDraft:
    """
    A movement submitted for append.

    Contract:
        ``quantity`` is signed (positive inbound, negative outbound).
        ``value_amount`` is the total value of the movement, not a unit
        price.  ``idempotency_key`` identifies the business line that
        produced it; see inventory_kernel.utils.idempotency.
    """

    product_id: str
    quantity: int
    kind: MovementKind
    owner: OwnerRef
    value_amount: Decimal
    reference_id: str
    reference_type: str
    idempotency_key: str
    notes: str | None = None
    corrects_movement_id: UUID | None = None

    @property
    def direction(self) -> Direction:
        return Direction.INBOUND if self.quantity > 0 else Direction.OUTBOUND

    @property
    def is_outbound(self) -> bool:
        return self.quantity < 0

    def validate(self) -> None:
        """
        Check the draft against its kind's rule.

        Raises:
            InvalidMovementError: On the first rule the draft breaks.
        """
        kind = self.kind.value if isinstance(self.kind, MovementKind) else str(self.kind)

        if not isinstance(self.kind, MovementKind):
            raise InvalidMovementError(f"unknown kind {self.kind!r}", kind, self.product_id)
        if not self.product_id:
            raise InvalidMovementError("product_id is required", kind)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidMovementError("quantity must be an integer", kind, self.product_id)
        if self.quantity == 0:
            raise InvalidMovementError("quantity must be non-zero", kind, self.product_id)
        if not isinstance(self.value_amount, Decimal) or self.value_amount < 0:
            raise InvalidMovementError(
                "value_amount must be a non-negative Decimal", kind, self.product_id
            )
        if not self.idempotency_key:
            raise InvalidMovementError("idempotency_key is required", kind, self.product_id)
        if not self.reference_id or not self.reference_type:
            raise InvalidMovementError(
                "reference_id and reference_type are required", kind, self.product_id
            )

        rule = KIND_RULES[self.kind]
        if rule.direction != Direction.EITHER and rule.direction != self.direction:
            raise InvalidMovementError(
                f"{kind} movements must be {rule.direction.value}", kind, self.product_id
            )
        if self.owner.owner_type not in rule.owner_types:
            raise InvalidMovementError(
                f"{kind} movements cannot belong to a {self.owner.owner_type.value} owner",
                kind,
                self.product_id,
            )
        if rule.notes_required and not (self.notes and self.notes.strip()):
            raise InvalidMovementError(f"{kind} movements require notes", kind, self.product_id)
        if self.corrects_movement_id is not None and self.kind != MovementKind.ADJUSTMENT:
            raise InvalidMovementError(
                "only adjustments may correct another movement", kind, self.product_id
            )

    def payload(self) -> dict[str, Any]:
        """Fields that define the movement's content, for payload hashing."""
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "kind": self.kind.value,
            "owner_type": self.owner.owner_type.value,
            "owner_id": self.owner.owner_id,
            "value_amount": str(self.value_amount),
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "notes": self.notes,
            "corrects_movement_id": (
                str(self.corrects_movement_id) if self.corrects_movement_id else None
            ),
        }


@dataclass(frozen=True, slots=True)
class Movement:
    """An appended movement. Immutable fact, ordered by ``seq``."""

    id: UUID
    seq: int
    product_id: str
    quantity: int
    kind: MovementKind
    owner: OwnerRef
    value_amount: Decimal
    reference_id: str
    reference_type: str
    idempotency_key: str
    payload_hash: str
    recorded_at: datetime
    notes: str | None = None
    corrects_movement_id: UUID | None = None

    @property
    def is_inbound(self) -> bool:
        return self.quantity > 0

    @property
    def is_outbound(self) -> bool:
        return self.quantity < 0
