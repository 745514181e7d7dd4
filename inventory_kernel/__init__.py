"""
Inventory Kernel

A movement-sourced, append-only inventory ledger with:
- Idempotent appends keyed by business reference
- Per-(product, owner) serialization of stock checks
- Ownership partitions for company and investor stock
- Owner links for loosely-identified checks and installments
- Bounded retry of transient failures
"""

__version__ = "0.1.0"
