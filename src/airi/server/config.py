"""Configuration loading utilities for the AIRI server and console client.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable AIRI_CONFIG
3. Fallback to "config/default.yaml"

File values are merged over :data:`DEFAULTS`. Environment variables with
prefix ``AIRI__`` override both (e.g., AIRI__MEMORY__SHORT_TERM_CEILING=20).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 6121,
        "ws_path": "/ws",
        "cors_origins": ["http://localhost:5174"],
    },
    "storage": {"data_dir": "data"},
    "memory": {"short_term_ceiling": 50, "promotion_floor": 0.8},
    "responder": {"strategy": "random", "seed": None, "provider": "openai", "model": "gpt-4"},
    "client": {
        "endpoint": "ws://localhost:6121/ws",
        "base_delay": 1.0,
        "max_delay": 30.0,
        "keepalive_interval": 30.0,
        "connect_timeout": 10.0,
    },
}


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _parse_scalar(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix AIRI__."""
    prefix = "AIRI__"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        # e.g., AIRI__CLIENT__MAX_DELAY -> cfg["client"]["max_delay"]
        parts = key[len(prefix):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _parse_scalar(value)
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``AIRI_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file, with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("AIRI_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(cfg, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_deep_merge(DEFAULTS, cfg))
