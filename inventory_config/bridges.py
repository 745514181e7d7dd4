"""
Config -> Kernel Bridges.

Functions that convert an InventoryConfiguration into kernel and engine
inputs.  They live in inventory_config (the producer) because the kernel
must never import inventory_config.

Usage:
    from inventory_config.bridges import build_match_policy, build_retry_policy

    config = get_active_config()
    policy = build_match_policy(config.linking)
    retry = build_retry_policy(config.retry)
"""

from __future__ import annotations

from typing import Any

from inventory_config.schema import LedgerConfig, LinkingConfig, RetryConfig
from inventory_engines.matching import MatchPolicy
from inventory_kernel.domain.linking import Confidence, LinkOwnerType
from inventory_kernel.domain.values import OwnerType
from inventory_kernel.services.retry_executor import RetryPolicy


def build_match_policy(linking: LinkingConfig) -> MatchPolicy:
    return MatchPolicy(
        fuzzy_threshold=linking.fuzzy_threshold,
        low_threshold=linking.low_threshold,
        amount_tolerance=linking.amount_tolerance,
        exact_amount_epsilon=linking.exact_amount_epsilon,
        phone_tail_digits=linking.phone_tail_digits,
        owner_type_priority=tuple(LinkOwnerType(t) for t in linking.owner_type_priority),
    )


def auto_link_floor(linking: LinkingConfig) -> Confidence:
    return Confidence(linking.auto_link_floor)


def build_retry_policy(retry: RetryConfig, **overrides: Any) -> RetryPolicy:
    """RetryPolicy from config; ``overrides`` set callables such as ``on_retry``."""
    return RetryPolicy(
        max_attempts=retry.max_attempts,
        base_delay=retry.base_delay,
        max_delay=retry.max_delay,
        backoff_factor=retry.backoff_factor,
        jitter=retry.jitter,
        timeout_per_attempt=retry.timeout_per_attempt,
        **overrides,
    )


def build_ledger_options(ledger: LedgerConfig) -> dict[str, Any]:
    """Keyword arguments for ``MovementLedger(db, clock, **options)``."""
    return {
        "protected_owner_types": frozenset(OwnerType(t) for t in ledger.protected_owner_types),
        "lock_timeout": ledger.lock_timeout_seconds,
        "history_batch_size": ledger.history_batch_size,
    }
