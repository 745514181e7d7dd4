"""
inventory_services.reconciliation_service -- Smart linking of checks and installments.

Responsibility:
    Attaches checks and installments to the customer, supplier or employee
    they belong to.  Automatic linking scores the owner directory with the
    pure OwnerMatchingEngine and writes a system link only when the top
    candidate reaches the configured auto-link floor; everything else is
    reported for review.  Users can link, relink and unlink by hand.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes OwnerMatchingEngine (pure) with EntityLinkService and
    InstrumentRegistry (kernel I/O) and an OwnerDirectory.

Invariants enforced:
    - Never guess: below the floor, or with no candidate, nothing is
      written; the entity is returned as ReconciliationAmbiguous.
    - User supremacy: entities carrying a user link are skipped by
      auto_link, and the link store refuses system writes over user links.
    - Idempotence: auto_link over the same entities and directory writes
      the same links; a second run reports them as successful and unchanged.
    - Results are reported in input order even when scoring runs in
      parallel.

Failure modes:
    - Per-entity infrastructure errors are collected in
      ``SmartLinkingResult.errors``; one bad entity never aborts the batch.
    - manual_link and unlink return LinkResult(success=False, ...) instead
      of raising for unknown instruments or owners.

Usage:
    service = ReconciliationService(
        db, links=EntityLinkService(db, clock), instruments=InstrumentRegistry(db, clock),
        auto_link_floor=Confidence.MEDIUM,
    )
    result = service.auto_link(pending_checks)
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from inventory_engines.matching import MatchPolicy, OwnerCandidate, OwnerMatchingEngine
from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.linking import (
    Confidence,
    DebtRecord,
    EntityLink,
    EntityType,
    LinkableEntity,
    LinkedBy,
    LinkOwnerType,
    OwnerRecord,
)
from inventory_kernel.exceptions import InstrumentNotFoundError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.link_selector import LinkSelector
from inventory_kernel.selectors.party_selector import OwnerDirectory, PartySelector
from inventory_kernel.services.entity_link_service import EntityLinkService, LinkWriteStatus
from inventory_kernel.services.instrument_registry import InstrumentRegistry

logger = get_logger("services.reconciliation")


class DatabaseOwnerDirectory:
    """OwnerDirectory over the parties tables; each call is its own read."""

    def __init__(self, db: LedgerDatabase):
        self._db = db

    def list_owners(self) -> list[OwnerRecord]:
        with self._db.session_scope() as session:
            return PartySelector(session).list_owners()

    def outstanding_debts(self) -> list[DebtRecord]:
        with self._db.session_scope() as session:
            return PartySelector(session).outstanding_debts()


class ReviewReason(str, Enum):
    NO_CANDIDATE = "no_candidate"
    BELOW_FLOOR = "below_floor"


@dataclass(frozen=True)
class ReconciliationAmbiguous:
    """An entity that was not linked automatically, with what was found."""

    entity: LinkableEntity
    reason: ReviewReason
    candidates: tuple[OwnerCandidate, ...] = ()

    @property
    def best(self) -> OwnerCandidate | None:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True)
class LinkingError:
    entity_id: str
    entity_type: EntityType
    error_code: str
    message: str


@dataclass(frozen=True)
class SmartLinkingResult:
    total_processed: int
    successful_links: int
    errors: tuple[LinkingError, ...] = ()
    needs_review: tuple[ReconciliationAmbiguous, ...] = ()
    links: tuple[EntityLink, ...] = ()
    skipped_user_linked: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LinkResult:
    """Outcome of a manual link or unlink."""

    success: bool
    entity_id: str
    entity_type: EntityType
    link: EntityLink | None = None
    status: str = ""
    message: str = ""


class ReconciliationService:
    """
    Smart-linking service.

    Contract:
        ``auto_link_floor`` is required; there is no implicit default.
        Directory and debts are read once per ``auto_link`` call.
    Guarantees:
        - Writes go through EntityLinkService, which serializes writers
          per entity.
    Non-goals:
        - Does not create owners or debts; the directory is read-only here.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        *,
        links: EntityLinkService,
        instruments: InstrumentRegistry,
        auto_link_floor: Confidence,
        directory: OwnerDirectory | None = None,
        engine: OwnerMatchingEngine | None = None,
        policy: MatchPolicy | None = None,
        parallelism: int = 1,
    ):
        if not isinstance(auto_link_floor, Confidence):
            raise ValueError(f"auto_link_floor must be a Confidence, got {auto_link_floor!r}")
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self._db = db
        self._links = links
        self._instruments = instruments
        self._floor = auto_link_floor
        self._directory = directory if directory is not None else DatabaseOwnerDirectory(db)
        self._engine = engine or OwnerMatchingEngine()
        self._policy = policy or MatchPolicy()
        self._parallelism = parallelism

    @property
    def auto_link_floor(self) -> Confidence:
        return self._floor

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(
        self,
        entity: LinkableEntity,
        owners: Sequence[OwnerRecord],
        debts: Sequence[DebtRecord],
    ) -> list[OwnerCandidate]:
        return self._engine.match_candidates(
            entity=entity, owners=owners, debts=debts, policy=self._policy
        )

    def match_candidates(self, entity: LinkableEntity) -> list[OwnerCandidate]:
        """Ranked owner candidates for one entity. Read-only."""
        owners = self._directory.list_owners()
        debts = self._directory.outstanding_debts()
        return self._score(entity, owners, debts)

    def _score_all(
        self,
        entities: Sequence[LinkableEntity],
        owners: Sequence[OwnerRecord],
        debts: Sequence[DebtRecord],
    ) -> list[list[OwnerCandidate]]:
        if self._parallelism == 1 or len(entities) < 2:
            return [self._score(e, owners, debts) for e in entities]
        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="smart-link"
        ) as pool:
            return list(pool.map(lambda e: self._score(e, owners, debts), entities))

    # ------------------------------------------------------------------
    # Automatic linking
    # ------------------------------------------------------------------

    def auto_link(self, entities: Sequence[LinkableEntity]) -> SmartLinkingResult:
        t0 = time.monotonic()
        entities = list(entities)
        logger.info(
            "smart_linking_started",
            extra={"entity_count": len(entities), "auto_link_floor": self._floor.value},
        )

        owners = self._directory.list_owners()
        debts = self._directory.outstanding_debts()

        errors: list[LinkingError] = []
        review: list[ReconciliationAmbiguous] = []
        links: list[EntityLink] = []
        skipped: list[str] = []

        eligible: list[LinkableEntity] = []
        for entity in entities:
            try:
                existing = self._links.get_link(entity.entity_id, entity.entity_type)
            except Exception as exc:  # infrastructure failure for one entity
                errors.append(_linking_error(entity, exc))
                continue
            if existing is not None and existing.linked_by == LinkedBy.USER:
                skipped.append(entity.entity_id)
                continue
            eligible.append(entity)

        scored = self._score_all(eligible, owners, debts)

        for entity, candidates in zip(eligible, scored):
            with LogContext.bind(entity_id=entity.entity_id):
                if not candidates:
                    review.append(
                        ReconciliationAmbiguous(entity, ReviewReason.NO_CANDIDATE)
                    )
                    logger.info(
                        "entity_link_needs_review",
                        extra={"entity_type": entity.entity_type.value, "reason": "no_candidate"},
                    )
                    continue

                best = candidates[0]
                if not best.confidence.at_least(self._floor):
                    review.append(
                        ReconciliationAmbiguous(
                            entity, ReviewReason.BELOW_FLOOR, tuple(candidates)
                        )
                    )
                    logger.info(
                        "entity_link_needs_review",
                        extra={
                            "entity_type": entity.entity_type.value,
                            "reason": "below_floor",
                            "best_owner_id": best.owner_id,
                            "best_confidence": best.confidence.value,
                        },
                    )
                    continue

                try:
                    outcome = self._links.put_link(
                        entity.entity_id,
                        entity.entity_type,
                        best.owner_id,
                        best.owner_type,
                        best.confidence,
                        LinkedBy.SYSTEM,
                        best.score,
                    )
                except Exception as exc:  # collected per entity, batch continues
                    errors.append(_linking_error(entity, exc))
                    logger.warning(
                        "entity_auto_link_failed",
                        extra={"entity_type": entity.entity_type.value, "error": str(exc)},
                    )
                    continue

                if outcome.status == LinkWriteStatus.SKIPPED_USER_LINK:
                    skipped.append(entity.entity_id)
                    continue
                links.append(outcome.link)
                logger.info(
                    "entity_auto_linked",
                    extra={
                        "entity_type": entity.entity_type.value,
                        "owner_id": best.owner_id,
                        "owner_type": best.owner_type.value,
                        "confidence": best.confidence.value,
                        "score": best.score,
                        "status": outcome.status.value,
                    },
                )

        result = SmartLinkingResult(
            total_processed=len(entities),
            successful_links=len(links),
            errors=tuple(errors),
            needs_review=tuple(review),
            links=tuple(links),
            skipped_user_linked=tuple(skipped),
        )
        logger.info(
            "smart_linking_completed",
            extra={
                "total_processed": result.total_processed,
                "successful_links": result.successful_links,
                "needs_review": len(result.needs_review),
                "errors": len(result.errors),
                "skipped_user_linked": len(result.skipped_user_linked),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return result

    def auto_link_unlinked(self) -> SmartLinkingResult:
        """Run auto_link over every pending instrument that has no link."""
        with self._db.session_scope() as session:
            pending = LinkSelector(session).unlinked_instruments()
        return self.auto_link(pending)

    # ------------------------------------------------------------------
    # Manual linking
    # ------------------------------------------------------------------

    def manual_link(
        self,
        entity_id: str,
        entity_type: EntityType,
        owner_id: str,
        owner_type: LinkOwnerType,
        actor_id: str | None = None,
    ) -> LinkResult:
        """
        Link an instrument to an owner on a user's instruction.

        Overwrites any previous link with ``linked_by=user`` and high
        confidence.  Fails when the instrument or owner is unknown, or when
        the same user link already exists.
        """
        with LogContext.bind(entity_id=entity_id, actor_id=actor_id):
            try:
                self._instruments.require(entity_type, entity_id)
            except InstrumentNotFoundError as exc:
                logger.warning("manual_link_rejected", extra={"reason": exc.code})
                return LinkResult(False, entity_id, entity_type, status="instrument_not_found",
                                  message=str(exc))

            known = any(
                o.owner_id == owner_id and o.owner_type == owner_type
                for o in self._directory.list_owners()
            )
            if not known:
                logger.warning(
                    "manual_link_rejected",
                    extra={"reason": "owner_not_found", "owner_id": owner_id},
                )
                return LinkResult(
                    False,
                    entity_id,
                    entity_type,
                    status="owner_not_found",
                    message=f"{owner_type.value} {owner_id} is not in the owner directory",
                )

            outcome = self._links.put_link(
                entity_id, entity_type, owner_id, owner_type, Confidence.HIGH, LinkedBy.USER
            )
            if outcome.status == LinkWriteStatus.UNCHANGED:
                return LinkResult(
                    False,
                    entity_id,
                    entity_type,
                    link=outcome.link,
                    status="already_linked",
                    message="instrument is already linked to this owner by a user",
                )

            logger.info(
                "manual_link_recorded",
                extra={
                    "owner_id": owner_id,
                    "owner_type": owner_type.value,
                    "status": outcome.status.value,
                    "previous_owner_id": outcome.previous.owner_id if outcome.previous else None,
                },
            )
            return LinkResult(True, entity_id, entity_type, link=outcome.link,
                              status=outcome.status.value)

    def unlink(self, entity_id: str, entity_type: EntityType) -> LinkResult:
        removed = self._links.remove_link(entity_id, entity_type)
        if removed is None:
            return LinkResult(False, entity_id, entity_type, status="not_linked",
                              message="instrument has no link")
        return LinkResult(True, entity_id, entity_type, link=removed, status="removed")


def _linking_error(entity: LinkableEntity, exc: BaseException) -> LinkingError:
    return LinkingError(
        entity_id=entity.entity_id,
        entity_type=entity.entity_type,
        error_code=getattr(exc, "code", type(exc).__name__),
        message=str(exc),
    )
