"""
Centralized configuration loading utility.
"""

import os
from pathlib import Path
from typing import Any

import yaml

DEFAULT_STORE_PATH = Path.home() / ".sensei" / "sessions.json"


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load application configuration from YAML.

    Priority order:
    1. Explicitly provided config_path
    2. SENSEI_CONFIG environment variable
    3. sensei.yaml in current directory
    4. ~/.sensei/config.yaml
    5. Empty dict as fallback
    """
    if config_path and Path(config_path).exists():
        return _read_yaml(Path(config_path))

    if os.environ.get('SENSEI_CONFIG'):
        env_config = Path(os.environ['SENSEI_CONFIG'])
        if env_config.exists():
            return _read_yaml(env_config)

    cwd_config = Path.cwd() / "sensei.yaml"
    if cwd_config.exists():
        return _read_yaml(cwd_config)

    home_config = Path.home() / ".sensei" / "config.yaml"
    if home_config.exists():
        return _read_yaml(home_config)

    # Commands still run with defaults
    return {}


def store_path(cfg: dict[str, Any]) -> Path:
    """Location of the durable per-session config store."""
    raw = (cfg.get("store") or {}).get("path")
    return Path(raw).expanduser() if raw else DEFAULT_STORE_PATH
