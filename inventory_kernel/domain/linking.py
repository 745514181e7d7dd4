"""
Linking -- Value types for instrument-to-owner links.

Responsibility:
    Checks and installments (LinkableEntity) identify their counterparty by
    free text.  This module defines the records used to attach them to a
    customer, supplier or employee: the owner directory entry, outstanding
    debts used as amount evidence, and the EntityLink itself.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by the matching engine, the
    link store and the reconciliation service.

Invariants enforced:
    - Confidence is totally ordered (HIGH > MEDIUM > LOW) so thresholds and
      sorts compare tiers, never strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class EntityType(str, Enum):
    CHECK = "check"
    INSTALLMENT = "installment"


class LinkOwnerType(str, Enum):
    """Owner kinds an instrument can be linked to."""

    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    EMPLOYEE = "employee"


class LinkedBy(str, Enum):
    SYSTEM = "system"
    USER = "user"


class InstrumentStatus(str, Enum):
    PENDING = "pending"
    CASHED = "cashed"
    RETURNED = "returned"
    PAID = "paid"
    CANCELLED = "cancelled"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def at_least(self, floor: Confidence) -> bool:
        return self.rank >= floor.rank


_CONFIDENCE_RANK = {Confidence.LOW: 1, Confidence.MEDIUM: 2, Confidence.HIGH: 3}


@dataclass(frozen=True, slots=True)
class LinkableEntity:
    """A check or installment awaiting (or carrying) an owner link."""

    entity_id: str
    entity_type: EntityType
    amount: Decimal
    counterparty_name: str
    counterparty_phone: str | None = None
    due_date: date | None = None
    status: InstrumentStatus = InstrumentStatus.PENDING
    reference_id: str | None = None


@dataclass(frozen=True, slots=True)
class OwnerRecord:
    """One directory entry a check may belong to."""

    owner_id: str
    owner_type: LinkOwnerType
    name: str
    phone: str | None = None
    last_transaction_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DebtRecord:
    """An unsettled amount owed by or to an owner."""

    owner_id: str
    owner_type: LinkOwnerType
    amount: Decimal
    document_ref: str | None = None


@dataclass(frozen=True, slots=True)
class EntityLink:
    """The single active owner link of one instrument."""

    entity_id: str
    entity_type: EntityType
    owner_id: str
    owner_type: LinkOwnerType
    confidence: Confidence
    linked_by: LinkedBy
    created_at: datetime
    score: Decimal | None = None

    def same_owner(self, owner_id: str, owner_type: LinkOwnerType) -> bool:
        return self.owner_id == owner_id and self.owner_type == owner_type
