"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a configuration YAML file and parses it into the frozen
``inventory_config.schema`` dataclasses.  Runtime callers go through
``inventory_config.get_active_config()``; this module is the parsing step
behind it.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys are rejected with ``ValueError``; a misspelt threshold
  never silently falls back to its default.
* ``linking.auto_link_floor`` is required (``KeyError`` when absent).
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError``.
* Out-of-range or mistyped values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    InventoryConfiguration,
    LedgerConfig,
    LinkingConfig,
    OrchestratorConfig,
    RetryConfig,
)

_CONFIDENCE_VALUES = ("high", "medium", "low")
_OWNER_TYPES = ("company", "investor")
_LINK_OWNER_TYPES = ("customer", "supplier", "employee")
_ROOT_KEYS = ("config_id", "version", "ledger", "linking", "retry", "orchestrator")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _reject_unknown(section: str, data: dict[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown key(s) in {section}: {', '.join(unknown)}")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Section {name!r} must be a mapping, got {type(value).__name__}")
    return value


def _field_names(cls) -> tuple[str, ...]:
    return tuple(f.name for f in fields(cls))


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    _reject_unknown("ledger", data, _field_names(LedgerConfig))
    default = LedgerConfig()
    protected = tuple(data.get("protected_owner_types", default.protected_owner_types))
    for owner_type in protected:
        if owner_type not in _OWNER_TYPES:
            raise ValueError(f"ledger.protected_owner_types: unknown owner type {owner_type!r}")
    batch = int(data.get("history_batch_size", default.history_batch_size))
    if batch < 1:
        raise ValueError("ledger.history_batch_size must be >= 1")
    timeout = data.get("lock_timeout_seconds", default.lock_timeout_seconds)
    return LedgerConfig(
        protected_owner_types=protected,
        lock_timeout_seconds=float(timeout) if timeout is not None else None,
        history_batch_size=batch,
    )


def parse_linking(data: dict[str, Any]) -> LinkingConfig:
    _reject_unknown("linking", data, _field_names(LinkingConfig))
    floor = data["auto_link_floor"]
    if floor not in _CONFIDENCE_VALUES:
        raise ValueError(
            f"linking.auto_link_floor must be one of {_CONFIDENCE_VALUES}, got {floor!r}"
        )
    default = LinkingConfig(auto_link_floor=floor)
    priority = tuple(data.get("owner_type_priority", default.owner_type_priority))
    for owner_type in priority:
        if owner_type not in _LINK_OWNER_TYPES:
            raise ValueError(f"linking.owner_type_priority: unknown owner type {owner_type!r}")
    parallelism = int(data.get("parallelism", default.parallelism))
    if parallelism < 1:
        raise ValueError("linking.parallelism must be >= 1")

    def dec(key: str) -> Decimal:
        return parse_decimal(data.get(key, getattr(default, key)), f"linking.{key}")

    return LinkingConfig(
        auto_link_floor=floor,
        fuzzy_threshold=dec("fuzzy_threshold"),
        low_threshold=dec("low_threshold"),
        amount_tolerance=dec("amount_tolerance"),
        exact_amount_epsilon=dec("exact_amount_epsilon"),
        phone_tail_digits=int(data.get("phone_tail_digits", default.phone_tail_digits)),
        owner_type_priority=priority,
        parallelism=parallelism,
    )


def parse_retry(data: dict[str, Any]) -> RetryConfig:
    _reject_unknown("retry", data, _field_names(RetryConfig))
    default = RetryConfig()
    timeout = data.get("timeout_per_attempt", default.timeout_per_attempt)
    return RetryConfig(
        max_attempts=int(data.get("max_attempts", default.max_attempts)),
        base_delay=float(data.get("base_delay", default.base_delay)),
        max_delay=float(data.get("max_delay", default.max_delay)),
        backoff_factor=float(data.get("backoff_factor", default.backoff_factor)),
        jitter=bool(data.get("jitter", default.jitter)),
        timeout_per_attempt=float(timeout) if timeout is not None else None,
    )


def parse_orchestrator(data: dict[str, Any]) -> OrchestratorConfig:
    _reject_unknown("orchestrator", data, _field_names(OrchestratorConfig))
    default = OrchestratorConfig()
    attempts = int(data.get("revalidation_attempts", default.revalidation_attempts))
    if attempts < 0:
        raise ValueError("orchestrator.revalidation_attempts must be >= 0")
    return OrchestratorConfig(
        revalidation_attempts=attempts,
        queue_on_exhaustion=bool(data.get("queue_on_exhaustion", default.queue_on_exhaustion)),
        enforce_investor_capital=bool(
            data.get("enforce_investor_capital", default.enforce_investor_capital)
        ),
    )


def parse_configuration(data: dict[str, Any]) -> InventoryConfiguration:
    """
    Parse a whole configuration document.

    Postconditions:
        - Returns an ``InventoryConfiguration`` whose ``checksum`` is
          ``compute_checksum(data)``.
    Raises:
        KeyError: if ``config_id`` or ``linking.auto_link_floor`` is missing.
        ValueError: on unknown keys or invalid values.
    """
    _reject_unknown("configuration root", data, _ROOT_KEYS)
    return InventoryConfiguration(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        ledger=parse_ledger(_section(data, "ledger")),
        linking=parse_linking(_section(data, "linking")),
        retry=parse_retry(_section(data, "retry")),
        orchestrator=parse_orchestrator(_section(data, "orchestrator")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
