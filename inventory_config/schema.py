"""
InventoryConfiguration schema.

The parsed, frozen form of a configuration YAML file.  The loader builds
these; bridges turn them into kernel and engine inputs (MatchPolicy,
RetryPolicy, ledger settings).  Values are kept in plain types here so the
schema never depends on the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class LedgerConfig:
    """Movement ledger settings."""

    protected_owner_types: tuple[str, ...] = ("company",)
    lock_timeout_seconds: float | None = 10.0
    history_batch_size: int = 500


@dataclass(frozen=True)
class LinkingConfig:
    """
    Smart-linking thresholds.

    ``auto_link_floor`` has no default: the loader raises if the YAML does
    not name it.
    """

    auto_link_floor: str
    fuzzy_threshold: Decimal = Decimal("0.85")
    low_threshold: Decimal = Decimal("0.60")
    amount_tolerance: Decimal = Decimal("0.05")
    exact_amount_epsilon: Decimal = Decimal("0.01")
    phone_tail_digits: int = 9
    owner_type_priority: tuple[str, ...] = ("customer", "supplier", "employee")
    parallelism: int = 1


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    timeout_per_attempt: float | None = 60.0


@dataclass(frozen=True)
class OrchestratorConfig:
    revalidation_attempts: int = 2
    queue_on_exhaustion: bool = False
    enforce_investor_capital: bool = True


@dataclass(frozen=True)
class InventoryConfiguration:
    """Root configuration object returned by ``get_active_config()``."""

    config_id: str
    version: int
    ledger: LedgerConfig
    linking: LinkingConfig
    retry: RetryConfig
    orchestrator: OrchestratorConfig
    checksum: str = ""
