# overskill: Lightweight YAML settings loader for per-app configuration.

from __future__ import annotations

import pathlib
from typing import Any, Dict

import yaml


def load_settings(app_root: pathlib.Path) -> Dict[str, Any]:
    """
    Load settings from <app>/.overskill/settings.yaml or settings.yml.

    Returns an empty dict {} when the settings file is missing, unreadable, or
    does not contain a mapping. The function never raises.
    """
    try:
        settings_dir = pathlib.Path(app_root) / ".overskill"
        candidates = [settings_dir / "settings.yaml", settings_dir / "settings.yml"]
        for p in candidates:
            try:
                if p.exists() and p.is_file():
                    text = p.read_text(encoding="utf-8")
                    data = yaml.safe_load(text)
                    if isinstance(data, dict):
                        return data
                    # overskill: Non-mapping YAML is treated as empty settings.
                    return {}
            except (OSError, yaml.YAMLError):
                continue
        return {}
    except OSError:
        return {}


def section(settings: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """Walk nested mappings; any missing or non-mapping level yields {}."""
    cur: Any = settings or {}
    for k in keys:
        if not isinstance(cur, dict):
            return {}
        cur = cur.get(k)
    return cur if isinstance(cur, dict) else {}
