"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All detection stages read their thresholds through this module, so the
batch job, the admin re-sync and the debug tooling share one set of values.
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
            Passing an explicit path replaces whatever is cached.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE and config_path is None:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_recurring_detection_config() -> Dict[str, Any]:
    """Returns the recurring_detection block."""
    return load_config()["recurring_detection"]


def get_section(name: str, config: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """
    Returns one sub-block of the recurring_detection config.

    Args:
        name: Section key, e.g. "gap_segmentation".
        config: Optional recurring_detection override. Defaults to the file.

    Raises:
        KeyError: If the section is not configured.
    """
    block = config if config is not None else get_recurring_detection_config()
    if name not in block:
        raise KeyError(
            f"No '{name}' section in recurring_detection config. "
            f"Available: {list(block.keys())}"
        )
    return block[name]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
