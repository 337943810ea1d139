"""
Console settings.

One frozen Settings object for the whole app, layered as:
defaults <- JSON config file <- GEARBOX_* environment variables <- CLI flags.
The config file is validated against schemas/config.schema.json.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path

from gearbox.errors import ConfigError
from gearbox.validation import validate_json

logger = logging.getLogger(__name__)

ENV_PREFIX = "GEARBOX"

REPO_ROOT = Path(__file__).resolve().parent.parent.parent
GEARBOX_HOME = Path("~/.gearbox").expanduser()
DEFAULT_CONFIG_PATH = GEARBOX_HOME / "config.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix.upper()}"


def _to_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _to_path(raw: str) -> Path:
    return Path(raw).expanduser()


@dataclass(frozen=True)
class Settings:
    # ---- Orchestration ----
    max_parallel: int = 2
    poll_timeout: float = 0.1
    output_limit: int = 10
    probe_timeout: float = 30.0
    bridge_capacity: int = 100
    default_build_type: str = "standard"

    # ---- Paths ----
    manifest_path: Path = GEARBOX_HOME / "manifest.json"
    tools_file: Path = REPO_ROOT / "config" / "tools.json"
    scripts_dir: Path = REPO_ROOT / "installers"
    build_dir: Path = Path("~/tools-build").expanduser()
    log_dir: Path = GEARBOX_HOME / "logs"

    # ---- Switches ----
    log_level: str = "INFO"
    simulate: bool = False


_CONVERTERS = {
    int: int,
    float: float,
    str: str,
    bool: _to_bool,
    Path: _to_path,
}


def _field_types() -> dict[str, type]:
    # annotations are strings under `from __future__ import annotations`
    names = {"int": int, "float": float, "str": str, "bool": bool, "Path": Path}
    return {f.name: names[f.type] for f in fields(Settings)}


def _coerce(value: object, kind: type) -> object:
    if kind is Path:
        return _to_path(str(value))
    if kind is float and isinstance(value, int):
        return float(value)
    return value


def _read_file(path: Path) -> dict:
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    valid, error = validate_json(data, "config")
    if not valid:
        raise ConfigError(f"Invalid config file {path}: {error}")
    return data


def _from_env(environ: Mapping[str, str], types: dict[str, type]) -> dict:
    values = {}
    for name, kind in types.items():
        raw = environ.get(_k(name))
        if raw is None or raw.strip() == "":
            continue
        try:
            values[name] = _CONVERTERS[kind](raw.strip())
        except ValueError:
            logger.warning("Ignoring %s=%r: expected %s", _k(name), raw, kind.__name__)
    return values


def _check(settings: Settings) -> Settings:
    if settings.poll_timeout <= 0:
        raise ConfigError("poll_timeout must be positive")
    if settings.probe_timeout <= 0:
        raise ConfigError("probe_timeout must be positive")
    if settings.max_parallel < 1:
        raise ConfigError("max_parallel must be at least 1")
    if settings.output_limit < 1:
        raise ConfigError("output_limit must be at least 1")
    level = settings.log_level.upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
    return replace(settings, log_level=level)


def load_settings(
    config_path: Path | None = None,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build Settings from every layer.

    An explicitly named config file (argument or GEARBOX_CONFIG) must exist;
    the default ~/.gearbox/config.json is optional. Overrides with a value
    of None are ignored so argparse defaults can be passed straight through.
    """
    environ = os.environ if environ is None else environ
    types = _field_types()
    values: dict[str, object] = {}

    explicit = config_path or environ.get(_k("config"))
    path = _to_path(str(explicit)) if explicit else DEFAULT_CONFIG_PATH
    if path.exists():
        for name, value in _read_file(path).items():
            values[name] = _coerce(value, types[name])
        logger.debug("Loaded settings from %s", path)
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    values.update(_from_env(environ, types))

    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in types:
            raise ConfigError(f"Unknown setting: {name}")
        values[name] = _coerce(value, types[name])

    return _check(Settings(**values))
