"""
tally.config — YAML Configuration Loader
=========================================

**Why this file exists:**
The identity updater needs a handful of construction-time settings: which
network version the ledger is partitioned by, which handles are unique,
and how long a single update may hold its transaction.  They live in
``config.yaml``; the database URL stays in the environment (``.env``).

Usage::

    from tally.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.network_version)       # 1
    print(cfg.unique_fields)         # ('graffiti', 'discord', 'telegram')
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from tally.constants import UNIQUE_FIELDS


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TallyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Ledger partitioning — blocks are counted on this network only
    network_version: int

    # Identity
    unique_fields: tuple[str, ...] = UNIQUE_FIELDS

    # Per-update transaction deadline (seconds); None disables it
    update_timeout_seconds: float | None = 5.0

    # API
    api_port: int = 8003


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TallyConfig:
    """Read *path* and return a :class:`TallyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If ``network_version`` is missing from the YAML file.
    ValueError
        If ``unique_fields`` names an attribute that is not a handle.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    unique_fields = tuple(raw.get("unique_fields") or UNIQUE_FIELDS)
    unknown = [f for f in unique_fields if f not in UNIQUE_FIELDS]
    if unknown:
        raise ValueError(
            f"unique_fields contains unknown attribute(s): {', '.join(unknown)}. "
            f"Allowed: {', '.join(UNIQUE_FIELDS)}"
        )

    timeout = raw.get("update_timeout_seconds", 5.0)

    return TallyConfig(
        network_version=int(raw["network_version"]),
        unique_fields=unique_fields,
        update_timeout_seconds=float(timeout) if timeout is not None else None,
        api_port=int(raw.get("api_port", 8003)),
    )
