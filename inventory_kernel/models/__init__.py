"""ORM models for the inventory kernel."""

from inventory_kernel.models.entity_link import EntityLinkModel
from inventory_kernel.models.instrument import InstrumentModel
from inventory_kernel.models.investor import Investor
from inventory_kernel.models.movement import InventoryMovement
from inventory_kernel.models.party import OutstandingDebt, Party, PartyStatus
from inventory_kernel.models.pending_operation import PendingOperation, PendingStatus
from inventory_kernel.models.product import Product


def import_all_models() -> None:
    """
    Ensure every model is registered on Base.metadata before create_all.

    Models register on import, and importing this package imports them all.
    """


__all__ = [
    "EntityLinkModel",
    "InstrumentModel",
    "InventoryMovement",
    "Investor",
    "OutstandingDebt",
    "Party",
    "PartyStatus",
    "PendingOperation",
    "PendingStatus",
    "Product",
    "import_all_models",
]
