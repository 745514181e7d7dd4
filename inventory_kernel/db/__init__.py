"""Database layer - engine, declarative base, and immutability listeners."""

from inventory_kernel.db.base import UUID, Base, UUIDString
from inventory_kernel.db.engine import LedgerDatabase

__all__ = [
    "Base",
    "LedgerDatabase",
    "UUID",
    "UUIDString",
]
