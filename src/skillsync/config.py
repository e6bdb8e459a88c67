from __future__ import annotations

import json
import math
import os
import stat
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

from .errors import SkillsyncError

DEFAULT_CATALOG_URL = "https://skills.sh"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MODE = "symlink"
DEFAULT_SCOPE = "global"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    catalog_url: str = DEFAULT_CATALOG_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    default_mode: str = DEFAULT_MODE  # "symlink" or "copy"
    default_scope: str = DEFAULT_SCOPE  # "global" or "project"
    include_internal: bool = False


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLSYNC_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skillsync") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SkillsyncError(f"Invalid config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise SkillsyncError(f"Invalid config file {path}: expected a JSON object")

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    for key in ("catalog_url", "default_mode", "default_scope"):
        if key in filtered and not isinstance(filtered[key], str):
            raise SkillsyncError(f"Invalid config file {path}: {key} must be a string")
    if "timeout_s" in filtered:
        timeout = filtered["timeout_s"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or not math.isfinite(timeout) or timeout <= 0:
            raise SkillsyncError(f"Invalid config file {path}: timeout_s must be a positive number")
        filtered["timeout_s"] = float(timeout)
    if "include_internal" in filtered and not isinstance(filtered["include_internal"], bool):
        raise SkillsyncError(f"Invalid config file {path}: include_internal must be true or false")
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def env_flag(name: str) -> bool | None:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in _TRUE_VALUES


def apply_env(cfg: Config) -> Config:
    """Environment overrides config; CLI flags are applied on top by the caller."""
    catalog_url = os.getenv("SKILLSYNC_CATALOG_URL") or cfg.catalog_url
    timeout_raw = os.getenv("SKILLSYNC_TIMEOUT_S")
    try:
        timeout_s = float(timeout_raw) if timeout_raw else cfg.timeout_s
    except ValueError:
        timeout_s = cfg.timeout_s
    include_internal = env_flag("INSTALL_INTERNAL_SKILLS")
    return Config(
        catalog_url=catalog_url,
        timeout_s=timeout_s,
        default_mode=cfg.default_mode,
        default_scope=cfg.default_scope,
        include_internal=cfg.include_internal if include_internal is None else include_internal,
    )
