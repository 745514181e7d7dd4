"""
EntityLinkService -- single-writer store for instrument owner links.

Responsibility:
    Creates, replaces and removes the one active owner link of a check or
    installment, resolving concurrent writers with a fixed rule: a user
    link is never replaced by a system write; otherwise the last writer
    wins.

Architecture position:
    Kernel > Services -- imperative shell.  Written to by the
    reconciliation service (system and user links).

Invariants enforced:
    - At most one active link per (entity_type, entity_id): writes for one
      entity are serialized by a per-entity lock and backed by a unique
      constraint.
    - User supremacy: put_link with linked_by=SYSTEM over a USER link is a
      no-op reported as SKIPPED_USER_LINK.

Failure modes:
    - OperationalError propagates for the caller to retry.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.linking import (
    Confidence,
    EntityLink,
    EntityType,
    LinkedBy,
    LinkOwnerType,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.entity_link import EntityLinkModel
from inventory_kernel.selectors.link_selector import link_from_row

logger = get_logger("services.entity_link")


class LinkWriteStatus(str, Enum):
    CREATED = "created"
    REPLACED = "replaced"
    PROMOTED = "promoted"
    UNCHANGED = "unchanged"
    SKIPPED_USER_LINK = "skipped_user_link"


@dataclass(frozen=True)
class LinkWriteOutcome:
    status: LinkWriteStatus
    link: EntityLink
    previous: EntityLink | None = None

    @property
    def changed(self) -> bool:
        return self.status in (
            LinkWriteStatus.CREATED,
            LinkWriteStatus.REPLACED,
            LinkWriteStatus.PROMOTED,
        )


class EntityLinkService:
    """
    Owner link store.

    Contract:
        Every method is its own unit of work.  ``put_link`` returns what it
        did instead of raising for the user-supremacy case.
    """

    def __init__(self, db: LedgerDatabase, clock: Clock | None = None):
        self._db = db
        self._clock = clock or SystemClock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, entity_type: EntityType, entity_id: str) -> threading.Lock:
        key = (entity_type.value, entity_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def get_link(self, entity_id: str, entity_type: EntityType) -> EntityLink | None:
        with self._db.session_scope() as session:
            row = self._find(session, entity_id, entity_type)
            return link_from_row(row) if row is not None else None

    def put_link(
        self,
        entity_id: str,
        entity_type: EntityType,
        owner_id: str,
        owner_type: LinkOwnerType,
        confidence: Confidence,
        linked_by: LinkedBy,
        score: Decimal | None = None,
    ) -> LinkWriteOutcome:
        with self._lock_for(entity_type, entity_id):
            try:
                outcome = self._put_locked(
                    entity_id, entity_type, owner_id, owner_type, confidence, linked_by, score
                )
            except IntegrityError:
                # Another process inserted first; apply the rule against its row.
                outcome = self._put_locked(
                    entity_id, entity_type, owner_id, owner_type, confidence, linked_by, score
                )

        log = logger.info if outcome.changed else logger.debug
        log(
            "entity_link_written",
            extra={
                "entity_id": entity_id,
                "entity_type": entity_type.value,
                "owner_id": owner_id,
                "owner_type": owner_type.value,
                "confidence": confidence.value,
                "linked_by": linked_by.value,
                "status": outcome.status.value,
            },
        )
        return outcome

    def _put_locked(
        self,
        entity_id: str,
        entity_type: EntityType,
        owner_id: str,
        owner_type: LinkOwnerType,
        confidence: Confidence,
        linked_by: LinkedBy,
        score: Decimal | None,
    ) -> LinkWriteOutcome:
        with self._db.session_scope() as session:
            row = self._find(session, entity_id, entity_type)
            now = self._clock.now()

            if row is None:
                row = EntityLinkModel(
                    entity_id=entity_id,
                    entity_type=entity_type.value,
                    owner_id=owner_id,
                    owner_type=owner_type.value,
                    confidence=confidence.value,
                    linked_by=linked_by.value,
                    score=score,
                    created_at=now,
                )
                session.add(row)
                session.flush()
                return LinkWriteOutcome(LinkWriteStatus.CREATED, link_from_row(row))

            previous = link_from_row(row)
            if linked_by == LinkedBy.SYSTEM and previous.linked_by == LinkedBy.USER:
                return LinkWriteOutcome(LinkWriteStatus.SKIPPED_USER_LINK, previous, previous)

            same_owner = previous.same_owner(owner_id, owner_type)
            if same_owner and previous.linked_by == linked_by and previous.confidence == confidence:
                return LinkWriteOutcome(LinkWriteStatus.UNCHANGED, previous, previous)

            status = (
                LinkWriteStatus.PROMOTED
                if same_owner and previous.linked_by == LinkedBy.SYSTEM and linked_by == LinkedBy.USER
                else LinkWriteStatus.REPLACED
            )
            row.owner_id = owner_id
            row.owner_type = owner_type.value
            row.confidence = confidence.value
            row.linked_by = linked_by.value
            row.score = score
            row.created_at = now
            session.flush()
            return LinkWriteOutcome(status, link_from_row(row), previous)

    def remove_link(self, entity_id: str, entity_type: EntityType) -> EntityLink | None:
        """Delete the link (never the instrument). Returns the removed link."""
        with self._lock_for(entity_type, entity_id):
            with self._db.session_scope() as session:
                row = self._find(session, entity_id, entity_type)
                if row is None:
                    return None
                removed = link_from_row(row)
                session.delete(row)

        logger.info(
            "entity_link_removed",
            extra={
                "entity_id": entity_id,
                "entity_type": entity_type.value,
                "owner_id": removed.owner_id,
                "owner_type": removed.owner_type.value,
            },
        )
        return removed

    @staticmethod
    def _find(session, entity_id: str, entity_type: EntityType) -> EntityLinkModel | None:
        return session.scalar(
            select(EntityLinkModel).where(
                EntityLinkModel.entity_type == entity_type.value,
                EntityLinkModel.entity_id == entity_id,
            )
        )
