"""YAML configuration loading.

Configuration files are parsed with ``yaml.safe_load`` so that YAML tags can
never instantiate Python objects. Every factory that accepts a path
([Pool.from_yaml()][chainmirror.core.pool.Pool.from_yaml],
[AppConfig.from_yaml()][chainmirror.config.AppConfig.from_yaml]) goes
through [load_yaml()][chainmirror.core.yaml.load_yaml].
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file into a dictionary.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        The parsed mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.

    Note:
        The result is not validated. Pass it to the matching pydantic model
        for schema validation.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
