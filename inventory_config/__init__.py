"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``InventoryConfiguration`` (or policies built from it by
    ``inventory_config.bridges``); they never read YAML themselves.

Architecture position:
    Configuration -- sits above ``inventory_kernel`` and
    ``inventory_engines`` and below ``inventory_services``.  The kernel
    MUST NEVER import from ``inventory_config``.

Invariants enforced:
    - Deterministic: the same YAML always yields the same configuration and
      checksum.
    - No hidden defaults for required keys (``linking.auto_link_floor``).

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing required keys, unknown keys,
      out-of-range values.

Audit relevance:
    Every successful load emits an ``INVENTORY_CONFIG_TRACE`` log record
    with the config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from inventory_config.loader import compute_checksum, load_yaml_file, parse_configuration
from inventory_config.schema import (
    InventoryConfiguration,
    LedgerConfig,
    LinkingConfig,
    OrchestratorConfig,
    RetryConfig,
)

_logger = logging.getLogger("inventory_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> InventoryConfiguration:
    """
    Load and validate the configuration at ``path`` (default: the bundled
    ``sets/default.yaml``).

    Contract:
        Returns a frozen ``InventoryConfiguration``; emits
        ``INVENTORY_CONFIG_TRACE`` on success.
    Non-goals:
        No caching across calls; callers hold the returned object.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    config = load_config(config_path)
    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "auto_link_floor": config.linking.auto_link_floor,
            "source": str(config_path),
        },
    )
    return config


def load_config(path: Path) -> InventoryConfiguration:
    return parse_configuration(load_yaml_file(path))


__all__ = [
    "InventoryConfiguration",
    "LedgerConfig",
    "LinkingConfig",
    "OrchestratorConfig",
    "RetryConfig",
    "compute_checksum",
    "get_active_config",
    "load_config",
]
