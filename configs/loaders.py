"""YAML configuration loaders for the threshold logic service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from core.exceptions import ConfigError

logger = logging.getLogger(__name__)

_BASE_DIR = Path(__file__).resolve().parent


def load_yaml(path: Union[str, Path], required: bool = False) -> Dict[str, Any]:
    """Load a YAML file and return its content as a dictionary.

    If *path* is relative it is resolved against the configs/ directory.
    Returns an empty dict when the file is missing or malformed so the
    caller can always proceed with safe defaults, unless *required* is set,
    in which case :class:`ConfigError` is raised.
    """
    p = Path(path)
    if not p.is_absolute():
        p = _BASE_DIR / p
    try:
        with open(p, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        if required:
            raise ConfigError(f"cannot load config {p}: {exc}") from exc
        logger.warning("Cannot load config %s: %s", p, exc)
        return {}
    if data is None:
        data = {}
    if not isinstance(data, dict):
        if required:
            raise ConfigError(f"config {p} must contain a mapping")
        return {}
    return data


def load_runtime_config() -> Dict[str, Any]:
    return load_yaml("runtime.yaml")


def load_controllers_config(path: Union[str, Path] = "controllers.yaml", required: bool = False) -> Dict[str, Any]:
    return load_yaml(path, required=required)


def load_ipc_config() -> Dict[str, Any]:
    return load_yaml("ipc.yaml")


def controller_entries(controllers_cfg: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the ``controllers`` list, dropping entries without a port name."""
    entries = controllers_cfg.get("controllers") or []
    valid = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("port_name"):
            logger.warning("Ignoring controller entry without port_name: %r", entry)
            continue
        valid.append(entry)
    return valid
