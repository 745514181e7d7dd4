"""
Cash-flow sink contract.

The orchestrator reports money movements caused by paid sales and
purchases through ``CashFlowSink.emit``.  The cash-flow ledger itself is
owned elsewhere; ``CollectingCashFlowSink`` is the in-memory implementation
used by tests and by callers that forward entries in batches.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from inventory_kernel.domain.events import CashFlowEntry
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.cash_flow")


@runtime_checkable
class CashFlowSink(Protocol):
    def emit(self, entry: CashFlowEntry) -> None: ...


class CollectingCashFlowSink:
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._entries: list[CashFlowEntry] = []
        self._lock = threading.Lock()

    def emit(self, entry: CashFlowEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        logger.debug(
            "cash_flow_entry_collected",
            extra={
                "reference_id": entry.reference_id,
                "direction": entry.direction.value,
                "amount": entry.amount,
            },
        )

    @property
    def entries(self) -> tuple[CashFlowEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def for_reference(self, reference_id: str) -> tuple[CashFlowEntry, ...]:
        return tuple(e for e in self.entries if e.reference_id == reference_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
