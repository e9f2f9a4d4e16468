"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this, never hardcoded values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_matching_config() -> Dict[str, Any]:
    """Returns the matching block (tolerances, threshold, check weights)."""
    return load_config()["matching"]


def get_recurrence_config() -> Dict[str, Any]:
    """Returns the recurrence block (frequencies and their aliases)."""
    return load_config()["recurrence"]


def get_generation_config() -> Dict[str, Any]:
    """Returns the generation guard block."""
    return load_config()["generation"]


def get_locking_config() -> Dict[str, Any]:
    return load_config()["locking"]


def get_monitoring_config() -> Dict[str, Any]:
    """Returns clearing monitor thresholds."""
    return load_config()["monitoring"]


def get_category_keywords() -> Dict[str, list[str]]:
    """
    Returns the category keyword table, in declaration order.

    Raises:
        KeyError: If the config has no category_keywords block.
    """
    return load_config()["category_keywords"]


def get_merchant_aliases() -> Dict[str, list[str]]:
    """Returns bill name -> alias list. Empty when the block is blank."""
    return load_config().get("merchant_aliases") or {}


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
