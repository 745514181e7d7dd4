"""
Kernel Invariants Contract.

These invariants are structural law. They hold for every append and
every link write regardless of configuration. Configuration may decide
*which* owner types are stock-protected, never *whether* the log is
append-only or replayable.

Enforcement is distributed across MovementLedger, the ORM immutability
listeners, EntityLinkService and the unique constraints on the tables.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    APPEND_ONLY = "append_only"
    """Movements are never updated or deleted. Corrections are new
    adjustment movements. Enforced by ORM listeners
    (inventory_kernel.db.immutability)."""

    LEDGER_REPLAY = "ledger_replay"
    """For every (product, owner) pair the maintained stock aggregate
    equals the sum of quantities in the movement log. Enforced by
    MovementLedger updating the aggregate inside the pair lock and
    verified by MovementLedger.verify_projection."""

    NO_NEGATIVE_PROTECTED_STOCK = "no_negative_protected_stock"
    """After any successful append, protected owner stock is >= 0.
    Enforced by the check-then-insert inside the pair lock."""

    IDEMPOTENCY = "idempotency"
    """The same idempotency key never produces two movements. Enforced by
    MovementLedger and the unique constraint on movements."""

    SINGLE_ACTIVE_LINK = "single_active_link"
    """At most one owner link per (entity_type, entity_id). Enforced by
    EntityLinkService and a unique constraint."""

    USER_LINK_SUPREMACY = "user_link_supremacy"
    """A system write never replaces a link made by a user. Enforced by
    EntityLinkService.put_link."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_import_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "inventory_engines",
    "inventory_services",
    "inventory_config",
)
