"""Configuration loading utilities."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

_CONFIG_DIR = Path(__file__).parent


@lru_cache(maxsize=None)
def load_yaml_config(filename: str) -> dict[str, Any]:
    """Load a YAML tuning table from the config/ directory.

    Results are cached per filename; callers must treat them as read-only.
    """
    with open(_CONFIG_DIR / filename) as f:
        return yaml.safe_load(f)
