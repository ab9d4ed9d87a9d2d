"""Desired configuration loader.

Reads a YAML (or JSON, which is valid YAML) file into the raw dict the
config parser understands. A loader failure is the only error that aborts a
whole run.
"""
import logging
from pathlib import Path
from typing import Any, Union

import yaml

from ..errors import ConfigLoadError

logger = logging.getLogger(__name__)


def load_desired_config(path: Union[str, Path]) -> dict[str, Any]:
    """Load a desired configuration file.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not a mapping
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigLoadError(f"Cannot read desired config {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Cannot parse desired config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Desired config {path} must be a mapping, got {type(data).__name__}"
        )

    logger.debug(f"Loaded desired config from {path} ({len(data)} top-level keys)")
    return data
