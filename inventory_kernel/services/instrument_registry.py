"""
InstrumentRegistry -- persistence of checks and installments.

Responsibility:
    Registers the instruments a sale or purchase carries, looks them up,
    and records status changes (cashed, returned, paid, cancelled).  Owner
    links live in EntityLinkService; this registry never touches them.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Registration is idempotent on (entity_type, entity_id): registering
      an existing instrument returns the stored one unchanged.

Failure modes:
    - InstrumentNotFoundError from ``require`` and ``update_status``.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.linking import EntityType, InstrumentStatus, LinkableEntity
from inventory_kernel.exceptions import InstrumentNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.instrument import InstrumentModel
from inventory_kernel.selectors.link_selector import instrument_from_row

logger = get_logger("services.instrument_registry")


class InstrumentRegistry:
    def __init__(self, db: LedgerDatabase, clock: Clock | None = None):
        self._db = db
        self._clock = clock or SystemClock()

    def register(self, entity: LinkableEntity) -> tuple[LinkableEntity, bool]:
        """Store the instrument if new. Returns (stored, created)."""
        existing = self.get(entity.entity_type, entity.entity_id)
        if existing is not None:
            return existing, False
        try:
            with self._db.session_scope() as session:
                row = InstrumentModel(
                    entity_id=entity.entity_id,
                    entity_type=entity.entity_type.value,
                    amount=entity.amount,
                    counterparty_name=entity.counterparty_name,
                    counterparty_phone=entity.counterparty_phone,
                    due_date=entity.due_date,
                    status=entity.status.value,
                    reference_id=entity.reference_id,
                    created_at=self._clock.now(),
                )
                session.add(row)
                session.flush()
                stored = instrument_from_row(row)
        except IntegrityError:
            stored = self.require(entity.entity_type, entity.entity_id)
            return stored, False

        logger.info(
            "instrument_registered",
            extra={
                "entity_id": stored.entity_id,
                "entity_type": stored.entity_type.value,
                "amount": stored.amount,
                "reference_id": stored.reference_id,
            },
        )
        return stored, True

    def get(self, entity_type: EntityType, entity_id: str) -> LinkableEntity | None:
        with self._db.session_scope() as session:
            row = self._find(session, entity_type, entity_id)
            return instrument_from_row(row) if row is not None else None

    def require(self, entity_type: EntityType, entity_id: str) -> LinkableEntity:
        found = self.get(entity_type, entity_id)
        if found is None:
            raise InstrumentNotFoundError(entity_type.value, entity_id)
        return found

    def update_status(
        self, entity_type: EntityType, entity_id: str, status: InstrumentStatus
    ) -> LinkableEntity:
        with self._db.session_scope() as session:
            row = self._find(session, entity_type, entity_id)
            if row is None:
                raise InstrumentNotFoundError(entity_type.value, entity_id)
            previous = row.status
            row.status = status.value
            row.status_changed_at = self._clock.now()
            session.flush()
            updated = instrument_from_row(row)

        logger.info(
            "instrument_status_changed",
            extra={
                "entity_id": entity_id,
                "entity_type": entity_type.value,
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return updated

    @staticmethod
    def _find(session, entity_type: EntityType, entity_id: str) -> InstrumentModel | None:
        return session.scalar(
            select(InstrumentModel).where(
                InstrumentModel.entity_type == entity_type.value,
                InstrumentModel.entity_id == entity_id,
            )
        )
