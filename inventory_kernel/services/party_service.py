"""
Service layer for the owner directory.

Manages the customers, suppliers and employees that checks and
installments are linked to, and the outstanding debts used as amount
evidence when matching.  Flush-only; the caller commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.linking import LinkOwnerType
from inventory_kernel.exceptions import DebtNotFoundError, PartyNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.party import OutstandingDebt, Party, PartyStatus
from inventory_kernel.services.base import BaseService

logger = get_logger("services.party")


@dataclass(frozen=True)
class PartyInfo:
    party_code: str
    party_type: LinkOwnerType
    name: str
    phone: str | None
    is_active: bool
    last_transaction_at: datetime | None


class PartyService(BaseService):
    def _to_dto(self, row: Party) -> PartyInfo:
        return PartyInfo(
            party_code=row.party_code,
            party_type=LinkOwnerType(row.party_type),
            name=row.name,
            phone=row.phone,
            is_active=row.is_active,
            last_transaction_at=row.last_transaction_at,
        )

    def _get(self, party_type: LinkOwnerType, party_code: str) -> Party:
        row = self.session.scalar(
            select(Party).where(Party.party_type == party_type.value, Party.party_code == party_code)
        )
        if row is None:
            raise PartyNotFoundError(party_type.value, party_code)
        return row

    def create_party(
        self,
        party_code: str,
        party_type: LinkOwnerType,
        name: str,
        *,
        phone: str | None = None,
        last_transaction_at: datetime | None = None,
    ) -> PartyInfo:
        row = Party(
            party_code=party_code,
            party_type=party_type.value,
            name=name,
            phone=phone,
            status=PartyStatus.ACTIVE.value,
            is_active=True,
            last_transaction_at=last_transaction_at,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "party_created",
            extra={"party_code": party_code, "party_type": party_type.value},
        )
        return self._to_dto(row)

    def get_party(self, party_type: LinkOwnerType, party_code: str) -> PartyInfo:
        return self._to_dto(self._get(party_type, party_code))

    def deactivate_party(self, party_type: LinkOwnerType, party_code: str) -> PartyInfo:
        """Inactive parties drop out of the matching directory."""
        row = self._get(party_type, party_code)
        row.is_active = False
        row.status = PartyStatus.INACTIVE.value
        self.session.flush()
        return self._to_dto(row)

    def touch_transaction(
        self, party_type: LinkOwnerType, party_code: str, at: datetime | None = None
    ) -> PartyInfo:
        row = self._get(party_type, party_code)
        row.last_transaction_at = at or self.clock.now()
        self.session.flush()
        return self._to_dto(row)

    def record_debt(
        self,
        party_type: LinkOwnerType,
        party_code: str,
        amount: Decimal,
        document_ref: str | None = None,
    ) -> UUID:
        if amount <= 0:
            raise ValueError("debt amount must be positive")
        self._get(party_type, party_code)
        row = OutstandingDebt(
            party_code=party_code,
            party_type=party_type.value,
            amount=amount,
            document_ref=document_ref,
            is_settled=False,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "debt_recorded",
            extra={
                "party_code": party_code,
                "party_type": party_type.value,
                "amount": amount,
                "document_ref": document_ref,
            },
        )
        return row.id

    def settle_debt(self, debt_id: UUID) -> None:
        row = self.session.get(OutstandingDebt, debt_id)
        if row is None:
            raise DebtNotFoundError(str(debt_id))
        row.is_settled = True
        self.session.flush()
        logger.info("debt_settled", extra={"debt_id": str(debt_id)})
