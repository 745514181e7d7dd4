"""Utility functions for the inventory kernel."""

from inventory_kernel.utils.hashing import canonicalize_json, hash_payload
from inventory_kernel.utils.idempotency import (
    line_idempotency_key,
    parse_idempotency_key,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "line_idempotency_key",
    "parse_idempotency_key",
]
