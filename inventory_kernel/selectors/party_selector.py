"""
Module: inventory_kernel.selectors.party_selector
Responsibility: Read side of the owner directory.  Defines the
    OwnerDirectory protocol the reconciliation service depends on and the
    SQL selector that satisfies it over ``parties`` and
    ``outstanding_debts``.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Inactive parties and settled debts are never returned, so the matching
      engine cannot link a check to an owner that has left the directory.
    - Results are ordered (owner_type, owner_id) so that two reads of the
      same directory hand the engine identical input.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from sqlalchemy import select

from inventory_kernel.domain.clock import ensure_utc
from inventory_kernel.domain.linking import DebtRecord, LinkOwnerType, OwnerRecord
from inventory_kernel.models.party import OutstandingDebt, Party
from inventory_kernel.selectors.base import BaseSelector


@runtime_checkable
class OwnerDirectory(Protocol):
    """Source of owner records and open debts for matching."""

    def list_owners(self) -> Sequence[OwnerRecord]: ...

    def outstanding_debts(self) -> Sequence[DebtRecord]: ...


class PartySelector(BaseSelector):
    """SQL owner directory bound to the caller's session."""

    def list_owners(self, owner_type: LinkOwnerType | None = None) -> list[OwnerRecord]:
        stmt = select(Party).where(Party.is_active.is_(True))
        if owner_type is not None:
            stmt = stmt.where(Party.party_type == owner_type.value)
        stmt = stmt.order_by(Party.party_type, Party.party_code)
        return [
            OwnerRecord(
                owner_id=row.party_code,
                owner_type=LinkOwnerType(row.party_type),
                name=row.name,
                phone=row.phone,
                last_transaction_at=(
                    ensure_utc(row.last_transaction_at)
                    if row.last_transaction_at is not None
                    else None
                ),
            )
            for row in self.session.scalars(stmt)
        ]

    def outstanding_debts(self) -> list[DebtRecord]:
        stmt = (
            select(OutstandingDebt)
            .where(OutstandingDebt.is_settled.is_(False))
            .order_by(OutstandingDebt.party_type, OutstandingDebt.party_code, OutstandingDebt.amount)
        )
        return [
            DebtRecord(
                owner_id=row.party_code,
                owner_type=LinkOwnerType(row.party_type),
                amount=row.amount,
                document_ref=row.document_ref,
            )
            for row in self.session.scalars(stmt)
        ]


class StaticOwnerDirectory:
    """In-memory directory; used by tests and by callers that cache the directory."""

    def __init__(
        self,
        owners: Sequence[OwnerRecord] = (),
        debts: Sequence[DebtRecord] = (),
    ):
        self._owners = tuple(owners)
        self._debts = tuple(debts)

    def list_owners(self) -> tuple[OwnerRecord, ...]:
        return self._owners

    def outstanding_debts(self) -> tuple[DebtRecord, ...]:
        return self._debts
