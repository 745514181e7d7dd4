"""
BaseService -- base for session-scoped kernel services.

Catalog and directory services receive a SQLAlchemy ``Session`` and use
``session.flush()``, never ``session.commit()``: the caller owns the
transaction, so several registrations can commit atomically.

MovementLedger, EntityLinkService and InstrumentRegistry are the
exception.  They hold in-process locks that must cover the commit, so they
receive the LedgerDatabase and run their own unit of work.
"""

from abc import ABC

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for session-scoped services.

    Guarantees:
        - The service never calls ``session.commit()`` or ``rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
