"""
Tempograph Configuration - centralized tunables for the engine and its tooling.

A single ``TempoConfig`` dataclass holds three sections: ``engine`` (defaults
picked up by new clusters, distributions and junctions), ``monitoring``
(activation log rotation) and ``persistence`` (checkpoint location).
Configuration can be loaded from a dict of overrides, a JSON file, or left at
the defaults.

Usage::

    from tempo_config import load_tempo_config
    import tempo_foundation

    cfg = load_tempo_config({"engine": {"default_plasticity": 0.05}})
    tempo_foundation.configure(cfg.engine)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from tempo_paths import get_checkpoint_path, get_log_dir

logger = logging.getLogger("tempograph.config")

_SECTIONS = ("engine", "monitoring", "persistence")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class EngineConfig:
    """Defaults for newly created engine objects."""

    default_plasticity: float = 0.1
    smoothing_alpha: float = 0.1
    safe_conjunction_check: bool = False
    # Extra ticks an integrator keeps impulses past the longest kernel seen.
    impulse_retention: Optional[int] = None


@dataclass
class MonitoringConfig:
    """Configuration for the activation log."""

    log_dir: str = field(default_factory=lambda: str(get_log_dir()))
    max_log_size_mb: int = 10
    backup_count: int = 5
    log_activations: bool = True


@dataclass
class PersistenceConfig:
    """Configuration for snapshots."""

    checkpoint_path: str = field(default_factory=lambda: str(get_checkpoint_path()))
    include_traces: bool = True


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class TempoConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.debug("Ignoring unknown config key %s.%s", type(obj).__name__, key)


def load_tempo_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> TempoConfig:
    """Create a ``TempoConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name (``engine``, ``monitoring``,
            ``persistence``) whose values are dicts of field→value pairs.
        config_path: Path to a JSON file with the same structure.

    Returns:
        Fully populated ``TempoConfig``.
    """
    cfg = TempoConfig()

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load config from %s: %s", p, exc)
            else:
                for section in _SECTIONS:
                    if section in file_data:
                        _apply_overrides(getattr(cfg, section), file_data[section])

    if overrides is not None:
        for section in _SECTIONS:
            if section in overrides:
                _apply_overrides(getattr(cfg, section), overrides[section])

    return cfg
