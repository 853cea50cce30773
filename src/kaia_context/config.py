"""
Settings for the context engine.

Resolution order, per field:
1. Explicit keyword arguments to load_settings()
2. Environment variables (KAIA_CONTEXT_DB, KAIA_LOG_LEVEL, ...)
3. The [context] table of kaia-context.toml
4. Defaults

The TOML file is looked up in the current directory unless a path is given
explicitly or through KAIA_CONTEXT_CONFIG.
"""
from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

CONFIG_FILENAME = "kaia-context.toml"

ENV_VARS = {
    "db_path": "KAIA_CONTEXT_DB",
    "log_level": "KAIA_LOG_LEVEL",
    "retention_days": "KAIA_RETENTION_DAYS",
    "high_priority_score": "KAIA_HIGH_PRIORITY_SCORE",
    "await_delivery": "KAIA_AWAIT_DELIVERY",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Settings:
    db_path: str = "kaia-context.db"
    log_level: str = "INFO"
    retention_days: int = 30
    high_priority_score: int = 70
    await_delivery: bool = True


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Not a boolean: {raw!r}")


def _coerce(name: str, raw: Any) -> Any:
    default = getattr(Settings, name)
    if isinstance(default, bool):
        return _parse_bool(raw)
    if isinstance(default, int):
        return int(raw)
    return str(raw)


def load_toml(path: Path) -> Dict[str, Any]:
    """Read the [context] table; a missing file is an empty table."""
    if not path.exists():
        return {}
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return dict(data.get("context", {}))


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Resolve settings from overrides, environment, TOML file and defaults.

    Raises:
        ValueError: a value cannot be coerced to its field type, or an
            override names an unknown field
    """
    names = [f.name for f in fields(Settings)]
    unknown = set(overrides) - set(names)
    if unknown:
        raise ValueError(f"Unknown settings: {sorted(unknown)}")

    toml_path = Path(
        config_path or os.environ.get("KAIA_CONTEXT_CONFIG") or Path.cwd() / CONFIG_FILENAME
    )
    file_values = load_toml(toml_path)

    resolved: Dict[str, Any] = {}
    for name in names:
        if overrides.get(name) is not None:
            resolved[name] = _coerce(name, overrides[name])
            continue
        env_value = os.environ.get(ENV_VARS[name])
        if env_value:
            resolved[name] = _coerce(name, env_value)
            continue
        if name in file_values:
            resolved[name] = _coerce(name, file_values[name])
    return Settings(**resolved)


def configure_logging(level: str = "INFO") -> None:
    """Single stream handler on the root logger, for command-line use."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
