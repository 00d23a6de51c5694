"""YAML-backed settings with packaged defaults and a per-user override."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_PACKAGE = "sshpick.config"
SETTINGS_RESOURCE = "settings.yaml"


@dataclass(slots=True)
class Settings:
    prompt: str = "SSH > "
    header: str = "Select a host to connect"
    ssh_config: str = "~/.ssh/config"
    default_term: str = "xterm-256color"
    fallback_columns: int = 80
    fallback_lines: int = 24
    terminal_speed: int = 14400
    connect_timeout: float = 15.0

    @property
    def fallback_size(self) -> tuple[int, int]:
        return self.fallback_columns, self.fallback_lines


def _read_mapping(handle: Any) -> Dict[str, Any]:
    data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("settings file must contain a mapping")
    return data


def default_settings_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    base = env.get("SSHPICK_HOME") or os.path.expanduser("~/.config/sshpick")
    return Path(base) / SETTINGS_RESOURCE


def load_settings(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> Settings:
    """Load packaged defaults, then merge *path* (or the user file) over them.

    An explicit *path* must exist; the per-user file is optional.
    """
    with resources.files(CONFIG_PACKAGE).joinpath(SETTINGS_RESOURCE).open(
        "r", encoding="utf-8"
    ) as fh:
        data = _read_mapping(fh)
    override = path
    if override is None:
        candidate = default_settings_path(environ)
        override = candidate if candidate.exists() else None
    if override is not None:
        with override.open("r", encoding="utf-8") as fh:
            data.update(_read_mapping(fh))
    known = {field.name for field in fields(Settings)}
    return Settings(**{key: value for key, value in data.items() if key in known})


__all__ = ["Settings", "default_settings_path", "load_settings"]
