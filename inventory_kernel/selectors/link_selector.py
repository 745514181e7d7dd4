"""
Module: inventory_kernel.selectors.link_selector
Responsibility: Read-only queries over instruments and their owner links:
    instruments linked to an owner, per-owner instrument statistics with a
    credit-risk grade, overdue instruments, and pending instruments that
    have no link yet.
Architecture position: Kernel > Selectors.  Read-only.

Credit risk grading (per owner):
    bounce_rate  = returned / total instruments (percent)
    overdue_rate = overdue / pending instruments (percent)
    HIGH   if bounce_rate > 20 or overdue_rate > 50
    MEDIUM if bounce_rate > 10 or overdue_rate > 25
    LOW    otherwise
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from sqlalchemy import and_, select

from inventory_kernel.domain.clock import ensure_utc
from inventory_kernel.domain.linking import (
    Confidence,
    EntityLink,
    EntityType,
    InstrumentStatus,
    LinkableEntity,
    LinkedBy,
    LinkOwnerType,
)
from inventory_kernel.models.entity_link import EntityLinkModel
from inventory_kernel.models.instrument import InstrumentModel
from inventory_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class CreditRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class LinkedInstrument:
    instrument: LinkableEntity
    link: EntityLink


@dataclass(frozen=True)
class OwnerInstrumentStatistics:
    owner_id: str
    owner_type: LinkOwnerType
    total_count: int
    pending_count: int
    cashed_count: int
    returned_count: int
    overdue_count: int
    pending_amount: Decimal
    cashed_amount: Decimal
    returned_amount: Decimal
    overdue_amount: Decimal

    @property
    def bounce_rate(self) -> Decimal:
        if self.total_count == 0:
            return _ZERO
        return (Decimal(self.returned_count) * _HUNDRED / self.total_count).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

    @property
    def overdue_rate(self) -> Decimal:
        if self.pending_count == 0:
            return _ZERO
        return (Decimal(self.overdue_count) * _HUNDRED / self.pending_count).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

    @property
    def credit_risk(self) -> CreditRisk:
        if self.bounce_rate > 20 or self.overdue_rate > 50:
            return CreditRisk.HIGH
        if self.bounce_rate > 10 or self.overdue_rate > 25:
            return CreditRisk.MEDIUM
        return CreditRisk.LOW


def instrument_from_row(row: InstrumentModel) -> LinkableEntity:
    return LinkableEntity(
        entity_id=row.entity_id,
        entity_type=EntityType(row.entity_type),
        amount=row.amount,
        counterparty_name=row.counterparty_name,
        counterparty_phone=row.counterparty_phone,
        due_date=row.due_date,
        status=InstrumentStatus(row.status),
        reference_id=row.reference_id,
    )


def link_from_row(row: EntityLinkModel) -> EntityLink:
    return EntityLink(
        entity_id=row.entity_id,
        entity_type=EntityType(row.entity_type),
        owner_id=row.owner_id,
        owner_type=LinkOwnerType(row.owner_type),
        confidence=Confidence(row.confidence),
        linked_by=LinkedBy(row.linked_by),
        created_at=ensure_utc(row.created_at),
        score=row.score,
    )


def _is_overdue(instrument: LinkableEntity, as_of: date) -> bool:
    return (
        instrument.status == InstrumentStatus.PENDING
        and instrument.due_date is not None
        and instrument.due_date < as_of
    )


class LinkSelector(BaseSelector):
    """Instrument and link read model."""

    def _joined(self):
        return select(InstrumentModel, EntityLinkModel).join(
            EntityLinkModel,
            and_(
                EntityLinkModel.entity_type == InstrumentModel.entity_type,
                EntityLinkModel.entity_id == InstrumentModel.entity_id,
            ),
        )

    def links_for_owner(
        self, owner_id: str, owner_type: LinkOwnerType
    ) -> list[LinkedInstrument]:
        stmt = (
            self._joined()
            .where(
                EntityLinkModel.owner_id == owner_id,
                EntityLinkModel.owner_type == owner_type.value,
            )
            .order_by(InstrumentModel.due_date, InstrumentModel.entity_id)
        )
        return [
            LinkedInstrument(instrument_from_row(inst), link_from_row(link))
            for inst, link in self.session.execute(stmt)
        ]

    def owner_instrument_statistics(
        self, owner_id: str, owner_type: LinkOwnerType, as_of: date
    ) -> OwnerInstrumentStatistics:
        instruments = [li.instrument for li in self.links_for_owner(owner_id, owner_type)]

        def of(status: InstrumentStatus) -> list[LinkableEntity]:
            return [i for i in instruments if i.status == status]

        def total(items: list[LinkableEntity]) -> Decimal:
            return sum((i.amount for i in items), _ZERO)

        pending = of(InstrumentStatus.PENDING)
        cashed = of(InstrumentStatus.CASHED)
        returned = of(InstrumentStatus.RETURNED)
        overdue = [i for i in pending if _is_overdue(i, as_of)]

        return OwnerInstrumentStatistics(
            owner_id=owner_id,
            owner_type=owner_type,
            total_count=len(instruments),
            pending_count=len(pending),
            cashed_count=len(cashed),
            returned_count=len(returned),
            overdue_count=len(overdue),
            pending_amount=total(pending),
            cashed_amount=total(cashed),
            returned_amount=total(returned),
            overdue_amount=total(overdue),
        )

    def overdue_instruments(self, as_of: date) -> list[LinkableEntity]:
        stmt = (
            select(InstrumentModel)
            .where(
                InstrumentModel.status == InstrumentStatus.PENDING.value,
                InstrumentModel.due_date.is_not(None),
                InstrumentModel.due_date < as_of,
            )
            .order_by(InstrumentModel.due_date, InstrumentModel.entity_id)
        )
        return [instrument_from_row(row) for row in self.session.scalars(stmt)]

    def unlinked_instruments(self) -> list[LinkableEntity]:
        """Pending instruments with no owner link, oldest registration first."""
        stmt = (
            select(InstrumentModel)
            .outerjoin(
                EntityLinkModel,
                and_(
                    EntityLinkModel.entity_type == InstrumentModel.entity_type,
                    EntityLinkModel.entity_id == InstrumentModel.entity_id,
                ),
            )
            .where(
                EntityLinkModel.id.is_(None),
                InstrumentModel.status == InstrumentStatus.PENDING.value,
            )
            .order_by(InstrumentModel.created_at, InstrumentModel.entity_id)
        )
        return [instrument_from_row(row) for row in self.session.scalars(stmt)]
