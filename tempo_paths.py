"""Unified path resolution for Tempograph data.

Checkpoints and activation logs live under one home directory so that every
driver script agrees on where state is kept.

Resolution order (first match wins):
    1. TEMPOGRAPH_HOME environment variable
    2. ~/.tempograph.conf JSON config file  {"tempograph_home": "/path/..."}
    3. Default: ~/.tempograph
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional


_CONF_FILE = "~/.tempograph.conf"
_DEFAULT_HOME = "~/.tempograph"


def get_tempograph_home(conf_path: Optional[str] = None) -> Path:
    """Return the canonical Tempograph data directory."""
    env_home = os.environ.get("TEMPOGRAPH_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()

    home = read_conf(conf_path)
    if home:
        return Path(home).expanduser().resolve()

    return Path(_DEFAULT_HOME).expanduser().resolve()


def get_log_dir() -> Path:
    return get_tempograph_home() / "logs"


def get_checkpoint_dir() -> Path:
    return get_tempograph_home() / "checkpoints"


def get_checkpoint_path() -> Path:
    """Return the default checkpoint file path."""
    return get_checkpoint_dir() / "main.msgpack"


def write_conf(tempograph_home: str, conf_path: Optional[str] = None) -> Path:
    """Write the config file so all drivers agree on the data directory.

    Args:
        tempograph_home: Absolute or expandable path to data directory.
        conf_path: Override config file location (for testing).

    Returns:
        Path to the written config file.
    """
    target = Path(conf_path or _CONF_FILE).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = {"tempograph_home": str(Path(tempograph_home).expanduser())}
    target.write_text(json.dumps(data, indent=2) + "\n")
    return target


def read_conf(conf_path: Optional[str] = None) -> Optional[str]:
    """Read the configured tempograph_home, or None if unset or unreadable."""
    target = Path(conf_path or _CONF_FILE).expanduser()
    if not target.is_file():
        return None
    try:
        data = json.loads(target.read_text())
    except (json.JSONDecodeError, OSError):
        return None
    home = str(data.get("tempograph_home", "")).strip()
    return home or None
