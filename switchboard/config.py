"""
Config loader for switchboard.
Reads config.yaml once at startup. All other modules import from here.
${ENV_VAR} references anywhere in the file are resolved from the environment
(and from .env, loaded on import). SWITCHBOARD_CONFIG overrides the path.
"""

import os
import re
import yaml
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

DEFAULTS: dict = {
    "server": {"host": "0.0.0.0", "port": 8000},
    "storage": {"sqlite_path": "./data/switchboard.db"},
    "providers": {},
    "turn": {"history_limit": 50, "title_length": 60, "timeout": 300},
    "pricing": {},
    "logging": {"level": "INFO", "file": ""},
}


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _with_defaults(raw: dict) -> dict:
    """Fill in missing top-level sections (one level deep)."""
    merged = {}
    for section, default in DEFAULTS.items():
        value = raw.get(section)
        if isinstance(default, dict):
            merged[section] = {**default, **(value or {})}
        else:
            merged[section] = value if value is not None else default
    for section, value in raw.items():
        merged.setdefault(section, value)
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None and path is None:
        return _config

    env_path = os.environ.get("SWITCHBOARD_CONFIG")
    config_path = Path(path or env_path or _CONFIG_PATH)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _with_defaults(_walk_and_resolve(raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Drop the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None
