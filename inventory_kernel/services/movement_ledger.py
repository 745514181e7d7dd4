"""
MovementLedger -- the append-only inventory movement log.

Responsibility:
    The only writer of movements.  Validates each draft against its kind's
    rule, serializes stock checks per (product, owner) pair, enforces
    idempotency by key and payload hash, assigns ledger sequence numbers,
    and maintains a running stock aggregate that can always be rebuilt
    from the log.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the integration
    orchestrator (through the RetryExecutor) and by operator tooling.

Invariants enforced:
    - Append-only: rows are inserted, never updated or deleted.
    - No negative protected stock: for protected owner types the check and
      the insert run under the pair lock against the running aggregate.
    - Idempotency: a repeated key with the same payload hash returns the
      original movement; with a different hash it raises.
    - Ledger replay: the aggregate for a pair is only written inside that
      pair's lock, after the insert committed.  When the outcome of a
      commit is unknown the pair is evicted and rebuilt from the log.

Failure modes:
    - InvalidMovementError / ProductNotFoundError: draft rejected, nothing
      written.
    - InsufficientStockError: protected stock would go negative.
    - IdempotencyConflictError: key reused with a different payload.
    - LockContentionError: pair lock not acquired within lock_timeout.
    - SequenceConflictError: another process claimed the same seq
      repeatedly.
    - OperationalError and friends propagate untouched for the caller's
      RetryExecutor to classify.

Non-goals:
    - Pair locks are in-process.  Several processes appending to the same
      pair need a database-level lock in front of this service.
    - Does NOT run inside a caller's transaction; every append is its own
      unit of work so the lock can cover the commit.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import Movement, MovementDraft, OwnerRef, OwnerType
from inventory_kernel.exceptions import (
    IdempotencyConflictError,
    InsufficientStockError,
    LockContentionError,
    ProductNotFoundError,
    SequenceConflictError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.models.product import Product
from inventory_kernel.selectors.stock_selector import (
    PairKey,
    StockSelector,
    filter_owner,
    movement_from_row,
    pair_key,
)
from inventory_kernel.utils.hashing import hash_payload

logger = get_logger("services.movement_ledger")

_MAX_SEQUENCE_RETRIES = 3


class AppendStatus(str, Enum):
    APPENDED = "appended"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class AppendResult:
    """Result of MovementLedger.append()."""

    status: AppendStatus
    movement: Movement

    @classmethod
    def appended(cls, movement: Movement) -> AppendResult:
        return cls(status=AppendStatus.APPENDED, movement=movement)

    @classmethod
    def already_applied(cls, movement: Movement) -> AppendResult:
        """Idempotent success: the key was seen with the same payload."""
        return cls(status=AppendStatus.ALREADY_APPLIED, movement=movement)

    @property
    def is_new(self) -> bool:
        return self.status == AppendStatus.APPENDED


@dataclass(frozen=True)
class ProjectionDivergence:
    key: PairKey
    cached: int
    replayed: int


@dataclass(frozen=True)
class ProjectionAudit:
    """Outcome of comparing the running aggregate with a replay of the log."""

    pairs_checked: int
    divergences: tuple[ProjectionDivergence, ...]
    rebuilt: bool

    @property
    def is_consistent(self) -> bool:
        return not self.divergences


class PairLockRegistry:
    """One lock per (product, owner) pair, created on first use."""

    def __init__(self, lock_timeout: float | None = None):
        self._lock_timeout = lock_timeout
        self._locks: dict[PairKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: PairKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: PairKey) -> Iterator[None]:
        lock = self.lock_for(key)
        timeout = -1 if self._lock_timeout is None else self._lock_timeout
        if not lock.acquire(timeout=timeout):
            raise LockContentionError(":".join(str(k) for k in key), self._lock_timeout or 0.0)
        try:
            yield
        finally:
            lock.release()


class StockAggregate:
    """Running stock per pair. A cache: it may be cleared at any time."""

    def __init__(self) -> None:
        self._values: dict[PairKey, int] = {}
        self._guard = threading.Lock()

    def get(self, key: PairKey) -> int | None:
        with self._guard:
            return self._values.get(key)

    def set(self, key: PairKey, value: int) -> None:
        with self._guard:
            self._values[key] = value

    def invalidate(self, key: PairKey) -> None:
        with self._guard:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._guard:
            self._values.clear()

    def snapshot(self) -> dict[PairKey, int]:
        with self._guard:
            return dict(self._values)


class SequenceAllocator:
    """Hands out ledger sequence numbers, seeded from the highest stored seq."""

    def __init__(self) -> None:
        self._next: int | None = None
        self._guard = threading.Lock()

    def next(self, stock_selector: StockSelector) -> int:
        with self._guard:
            if self._next is None:
                self._next = stock_selector.max_seq() + 1
            value = self._next
            self._next += 1
            return value

    def reseed(self) -> None:
        with self._guard:
            self._next = None


class MovementHistory:
    """
    Time-ordered movements for a product (and owner).

    Finite and restartable: every iteration opens its own session and
    streams the log in ``seq`` order.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        product_id: str,
        owner: OwnerRef | None = None,
        batch_size: int = 500,
    ):
        self._db = db
        self.product_id = product_id
        self.owner = owner
        self._batch_size = batch_size

    def __iter__(self) -> Iterator[Movement]:
        stmt = filter_owner(
            select(InventoryMovement).where(InventoryMovement.product_id == self.product_id),
            self.owner,
        ).order_by(InventoryMovement.seq)
        session = self._db.session()
        try:
            for row in session.scalars(stmt, execution_options={"yield_per": self._batch_size}):
                yield movement_from_row(row)
        finally:
            session.close()


class MovementLedger:
    """
    Append-only movement log with a per-pair stock aggregate.

    Contract:
        ``append`` either returns an AppendResult or raises a typed error;
        it never leaves a partial write.  Stock figures from
        ``project_stock`` always equal a replay of the log.

    Guarantees:
        - Appends on different pairs proceed in parallel.
        - Appends on the same pair are serialized.
        - ``protected_owner_types`` may never go negative.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        clock: Clock | None = None,
        *,
        protected_owner_types: frozenset[OwnerType] = frozenset({OwnerType.COMPANY}),
        lock_timeout: float | None = None,
        history_batch_size: int = 500,
    ):
        self._db = db
        self._history_batch_size = history_batch_size
        self._clock = clock or SystemClock()
        self._protected = frozenset(protected_owner_types)
        self._locks = PairLockRegistry(lock_timeout)
        self._aggregate = StockAggregate()
        self._sequence = SequenceAllocator()

    @property
    def protected_owner_types(self) -> frozenset[OwnerType]:
        return self._protected

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def append(self, draft: MovementDraft) -> AppendResult:
        """
        Append one movement.

        Raises:
            InvalidMovementError, ProductNotFoundError: draft rejected.
            InsufficientStockError: protected stock would go negative.
            IdempotencyConflictError: key reused with a different payload.
        """
        draft.validate()
        payload_hash = hash_payload(draft.payload())

        with LogContext.bind(reference_id=draft.reference_id):
            existing = self.get_by_idempotency_key(draft.idempotency_key)
            if existing is not None:
                return self._resolve_existing(existing, draft, payload_hash)

            key = pair_key(draft.product_id, draft.owner)
            with self._locks.hold(key):
                return self._append_locked(draft, payload_hash, key)

    def _append_locked(self, draft: MovementDraft, payload_hash: str, key: PairKey) -> AppendResult:
        for _ in range(_MAX_SEQUENCE_RETRIES):
            try:
                with self._db.session_scope() as session:
                    stock = StockSelector(session)

                    # Re-check under the lock: a concurrent retry of the same
                    # line may have committed since the unlocked check.
                    existing = stock.get_by_idempotency_key(draft.idempotency_key)
                    if existing is not None:
                        return self._resolve_existing(existing, draft, payload_hash)

                    self._require_product(session, draft.product_id)

                    current = self._aggregate.get(key)
                    if current is None:
                        current = stock.replay_stock(draft.product_id, draft.owner)
                        self._aggregate.set(key, current)

                    if draft.is_outbound and draft.owner.owner_type in self._protected:
                        if current + draft.quantity < 0:
                            logger.info(
                                "movement_rejected_insufficient_stock",
                                extra={
                                    "product_id": draft.product_id,
                                    "owner": draft.owner.key,
                                    "available": current,
                                    "requested": -draft.quantity,
                                },
                            )
                            raise InsufficientStockError(
                                draft.product_id,
                                draft.owner.owner_type.value,
                                draft.owner.owner_id,
                                available=current,
                                requested=-draft.quantity,
                            )

                    row = InventoryMovement(
                        id=uuid4(),
                        seq=self._sequence.next(stock),
                        product_id=draft.product_id,
                        quantity=draft.quantity,
                        kind=draft.kind.value,
                        owner_type=draft.owner.owner_type.value,
                        owner_id=draft.owner.owner_id,
                        value_amount=draft.value_amount,
                        reference_id=draft.reference_id,
                        reference_type=draft.reference_type,
                        idempotency_key=draft.idempotency_key,
                        payload_hash=payload_hash,
                        recorded_at=self._clock.now(),
                        notes=draft.notes,
                        corrects_movement_id=draft.corrects_movement_id,
                    )
                    session.add(row)
                    session.flush()
                    movement = movement_from_row(row)
            except IntegrityError:
                existing = self.get_by_idempotency_key(draft.idempotency_key)
                if existing is not None:
                    return self._resolve_existing(existing, draft, payload_hash)
                logger.warning(
                    "movement_sequence_conflict",
                    extra={"product_id": draft.product_id, "owner": draft.owner.key},
                )
                self._sequence.reseed()
                continue
            except (InsufficientStockError, IdempotencyConflictError, ProductNotFoundError):
                raise
            except Exception:
                # Commit outcome unknown: rebuild this pair from the log on next use.
                self._aggregate.invalidate(key)
                raise

            self._aggregate.set(key, current + draft.quantity)
            logger.info(
                "movement_appended",
                extra={
                    "movement_id": str(movement.id),
                    "seq": movement.seq,
                    "kind": movement.kind.value,
                    "product_id": movement.product_id,
                    "owner": movement.owner.key,
                    "quantity": movement.quantity,
                    "stock_after": current + draft.quantity,
                    "idempotency_key": movement.idempotency_key,
                },
            )
            return AppendResult.appended(movement)

        raise SequenceConflictError(self._sequence_hint())

    def _resolve_existing(
        self, existing: Movement, draft: MovementDraft, payload_hash: str
    ) -> AppendResult:
        if existing.payload_hash != payload_hash:
            logger.warning(
                "movement_idempotency_conflict",
                extra={
                    "idempotency_key": draft.idempotency_key,
                    "expected_hash": existing.payload_hash,
                    "received_hash": payload_hash,
                },
            )
            raise IdempotencyConflictError(
                draft.idempotency_key, existing.payload_hash, payload_hash
            )
        logger.info(
            "movement_already_applied",
            extra={
                "movement_id": str(existing.id),
                "seq": existing.seq,
                "idempotency_key": existing.idempotency_key,
            },
        )
        return AppendResult.already_applied(existing)

    def _require_product(self, session, product_id: str) -> None:
        found = session.scalar(
            select(Product.id).where(Product.product_id == product_id, Product.is_active.is_(True))
        )
        if found is None:
            raise ProductNotFoundError(product_id)

    def _sequence_hint(self) -> int:
        with self._db.session_scope() as session:
            return StockSelector(session).max_seq()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def project_stock(self, product_id: str, owner: OwnerRef | None = None) -> int:
        """
        Current stock from the running aggregate.

        With ``owner=None`` the stock of every owner of the product is summed.
        """
        if owner is not None:
            return self._pair_stock(product_id, owner)
        with self._db.session_scope() as session:
            owners = StockSelector(session).owners_of(product_id)
        return sum(self._pair_stock(product_id, o) for o in owners)

    def _pair_stock(self, product_id: str, owner: OwnerRef) -> int:
        key = pair_key(product_id, owner)
        cached = self._aggregate.get(key)
        if cached is not None:
            return cached
        # Fill under the pair lock so an append cannot interleave with the load.
        with self._locks.hold(key):
            cached = self._aggregate.get(key)
            if cached is not None:
                return cached
            with self._db.session_scope() as session:
                value = StockSelector(session).replay_stock(product_id, owner)
            self._aggregate.set(key, value)
            return value

    def replay_stock(self, product_id: str, owner: OwnerRef | None = None) -> int:
        """Stock recomputed from the log, bypassing the aggregate."""
        with self._db.session_scope() as session:
            return StockSelector(session).replay_stock(product_id, owner)

    def history(self, product_id: str, owner: OwnerRef | None = None) -> MovementHistory:
        return MovementHistory(self._db, product_id, owner, self._history_batch_size)

    def get_movement(self, movement_id: UUID) -> Movement | None:
        with self._db.session_scope() as session:
            return StockSelector(session).get_movement(movement_id)

    def get_by_idempotency_key(self, idempotency_key: str) -> Movement | None:
        with self._db.session_scope() as session:
            return StockSelector(session).get_by_idempotency_key(idempotency_key)

    def movements_for_reference(self, reference_type: str, reference_id: str) -> list[Movement]:
        with self._db.session_scope() as session:
            return StockSelector(session).movements_for_reference(reference_type, reference_id)

    # ------------------------------------------------------------------
    # Aggregate maintenance
    # ------------------------------------------------------------------

    def verify_projection(self, rebuild: bool = False) -> ProjectionAudit:
        """
        Compare every cached pair with a replay of the log.

        Divergent pairs are reported and, with ``rebuild=True``, replaced
        by their replayed value.
        """
        divergences: list[ProjectionDivergence] = []
        with self._db.session_scope() as session:
            replayed = {p.key: p.quantity for p in StockSelector(session).all_pairs()}

        cached = self._aggregate.snapshot()
        for key, value in cached.items():
            with self._locks.hold(key):
                current = self._aggregate.get(key)
                if current is None:
                    continue
                with self._db.session_scope() as session:
                    truth = StockSelector(session).replay_stock(
                        key[0], OwnerRef(OwnerType(key[1]), key[2])
                    )
                if current != truth:
                    divergences.append(ProjectionDivergence(key, current, truth))
                    if rebuild:
                        self._aggregate.set(key, truth)

        audit = ProjectionAudit(
            pairs_checked=len(cached),
            divergences=tuple(divergences),
            rebuilt=rebuild and bool(divergences),
        )
        logger.info(
            "projection_verified",
            extra={
                "pairs_checked": audit.pairs_checked,
                "pairs_in_log": len(replayed),
                "divergences": len(divergences),
                "rebuilt": audit.rebuilt,
            },
        )
        return audit

    def rebuild_projection(self) -> int:
        """Discard the aggregate and reload every pair from the log."""
        self._aggregate.clear()
        with self._db.session_scope() as session:
            pairs = StockSelector(session).all_pairs()
        for pair in pairs:
            with self._locks.hold(pair.key):
                with self._db.session_scope() as session:
                    value = StockSelector(session).replay_stock(pair.product_id, pair.owner)
                self._aggregate.set(pair.key, value)
        logger.info("projection_rebuilt", extra={"pairs": len(pairs)})
        return len(pairs)
