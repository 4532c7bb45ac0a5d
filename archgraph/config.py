"""YAML configuration shared by scanning, prompting and the CLI.

The file is read once on first access. ``ARCHGRAPH_CONFIG`` points at an
alternative file; otherwise the bundled ``source_of_truth.yaml`` is used.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml

CONFIG_ENV_VAR = "ARCHGRAPH_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "source_of_truth.yaml"


def resolve_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if not override:
        return DEFAULT_CONFIG_PATH
    return Path(override).expanduser().resolve()


@lru_cache(maxsize=None)
def load_config(path: Path) -> Dict[str, Any]:
    """Parse ``path`` and check that it holds a top-level mapping."""
    if not path.is_file():
        raise RuntimeError(f'Config file not found: "{path}"')
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as e:
        raise RuntimeError(f'Failed to read config "{path}": {e}') from e
    if not isinstance(data, dict):
        raise RuntimeError(f'Config file "{path}" must be a YAML mapping at top level')
    return data


def _section(name: str, required: bool = True) -> Dict[str, Any]:
    config = load_config(resolve_config_path())
    value = config.get(name)
    if value is None and not required:
        return {}
    if not isinstance(value, dict):
        raise RuntimeError(f'Config section "{name}" missing or not a mapping')
    return value


def get_prompts() -> Dict[str, str]:
    return _section("prompts")


def get_scan_rules() -> Dict[str, Any]:
    return _section("scan")


def get_llm_config() -> Dict[str, Any]:
    """Provider defaults: base URLs, models, env var names and timeouts."""
    return _section("llm")


def get_paths_config() -> Dict[str, Any]:
    """Output file names; the section is optional."""
    return _section("paths", required=False)


def get_str_list(section: Dict[str, Any], key: str) -> List[str]:
    """Read a list of non-empty strings from a config section."""
    value = section.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise RuntimeError(f'Config key "{key}" must be a list')
    return [str(v) for v in value if isinstance(v, str) and v.strip()]
