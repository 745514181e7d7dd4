"""
inventory_services.pending_queue -- Durable queue of operations awaiting replay.

Responsibility:
    When the orchestrator exhausts its retries on a transient failure and
    ``queue_on_exhaustion`` is on, the operation's event payload is stored
    here.  ``replay_pending`` later reads the queue and re-runs each entry.

Invariants enforced:
    - One row per (operation_type, reference_id): queuing the same operation
      twice updates the existing row and bumps ``attempts``.
    - Rows are never deleted; their status moves to COMPLETED or REJECTED.

Failure modes:
    - OperationalError propagates; the caller decides whether the queue
      write itself should be retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import Clock, SystemClock, ensure_utc
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.pending_operation import PendingOperation, PendingStatus

logger = get_logger("services.pending_queue")

_MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class QueuedOperation:
    id: UUID
    operation_type: str
    reference_id: str
    payload: dict[str, Any]
    status: PendingStatus
    attempts: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime


def _to_dto(row: PendingOperation) -> QueuedOperation:
    return QueuedOperation(
        id=row.id,
        operation_type=row.operation_type,
        reference_id=row.reference_id,
        payload=dict(row.payload),
        status=PendingStatus(row.status),
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


class PendingOperationQueue:
    def __init__(self, db: LedgerDatabase, clock: Clock | None = None):
        self._db = db
        self._clock = clock or SystemClock()

    def enqueue(
        self,
        operation_type: str,
        reference_id: str,
        payload: dict[str, Any],
        error: str | None = None,
    ) -> QueuedOperation:
        now = self._clock.now()
        with self._db.session_scope() as session:
            row = session.scalar(
                select(PendingOperation).where(
                    PendingOperation.operation_type == operation_type,
                    PendingOperation.reference_id == reference_id,
                )
            )
            if row is None:
                row = PendingOperation(
                    operation_type=operation_type,
                    reference_id=reference_id,
                    payload=payload,
                    status=PendingStatus.QUEUED.value,
                    attempts=1,
                    last_error=_truncate(error),
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            else:
                row.payload = payload
                row.status = PendingStatus.QUEUED.value
                row.attempts += 1
                row.last_error = _truncate(error)
                row.updated_at = now
            session.flush()
            queued = _to_dto(row)

        logger.warning(
            "operation_queued",
            extra={
                "operation_type": operation_type,
                "reference_id": reference_id,
                "attempts": queued.attempts,
                "error": error,
            },
        )
        return queued

    def queued(self, limit: int | None = None) -> list[QueuedOperation]:
        """Queued operations, oldest first."""
        stmt = (
            select(PendingOperation)
            .where(PendingOperation.status == PendingStatus.QUEUED.value)
            .order_by(PendingOperation.created_at, PendingOperation.reference_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._db.session_scope() as session:
            return [_to_dto(row) for row in session.scalars(stmt)]

    def get(self, operation_type: str, reference_id: str) -> QueuedOperation | None:
        with self._db.session_scope() as session:
            row = session.scalar(
                select(PendingOperation).where(
                    PendingOperation.operation_type == operation_type,
                    PendingOperation.reference_id == reference_id,
                )
            )
            return _to_dto(row) if row is not None else None

    def mark(self, queued_id: UUID, status: PendingStatus, error: str | None = None) -> None:
        with self._db.session_scope() as session:
            row = session.get(PendingOperation, queued_id)
            if row is None:
                raise LookupError(f"Pending operation not found: {queued_id}")
            row.status = status.value
            row.last_error = _truncate(error)
            row.updated_at = self._clock.now()
        logger.info(
            "queued_operation_resolved",
            extra={"queued_id": str(queued_id), "status": status.value},
        )

    def record_attempt(self, queued_id: UUID, error: str) -> None:
        """A replay failed transiently again; the row stays QUEUED."""
        with self._db.session_scope() as session:
            row = session.get(PendingOperation, queued_id)
            if row is None:
                raise LookupError(f"Pending operation not found: {queued_id}")
            row.attempts += 1
            row.last_error = _truncate(error)
            row.updated_at = self._clock.now()


def _truncate(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:_MAX_ERROR_LENGTH]
