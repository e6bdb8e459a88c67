from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from .errors import PathTraversalError, UnsupportedScopeError

if TYPE_CHECKING:
    from .agents import AgentTarget

Scope = Literal["project", "global"]

SCOPE_PROJECT: Scope = "project"
SCOPE_GLOBAL: Scope = "global"
SCOPES: tuple[Scope, ...] = (SCOPE_PROJECT, SCOPE_GLOBAL)

AGENTS_DIR = ".agents"
SKILLS_SUBDIR = "skills"
SKILL_FILENAME = "SKILL.md"
LOCK_FILENAME = ".skill-lock.json"

FALLBACK_SKILL_NAME = "unnamed-skill"
MAX_NAME_LENGTH = 255

_UNSAFE_RUN_RE = re.compile(r"[^a-z0-9._]+")
_EDGE_RE = re.compile(r"^[.\-]+|[.\-]+$")


def sanitize_name(name: str) -> str:
    """
    Turn a declared skill name into a filesystem-safe directory name.

    "Git Review Before Commit" -> "git-review-before-commit"
    """
    sanitized = _UNSAFE_RUN_RE.sub("-", name.lower())
    sanitized = _EDGE_RE.sub("", sanitized)
    # Truncation can expose a trailing separator, strip again to stay idempotent.
    sanitized = _EDGE_RE.sub("", sanitized[:MAX_NAME_LENGTH])
    return sanitized or FALLBACK_SKILL_NAME


def home_dir() -> Path:
    if env := os.getenv("SKILLSYNC_HOME"):
        return Path(env).expanduser()
    return Path.home()


def _normalize(path: str | Path) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def is_path_safe(base: str | Path, candidate: str | Path) -> bool:
    normalized_base = _normalize(base)
    normalized_candidate = _normalize(candidate)
    if normalized_candidate == normalized_base:
        return True
    prefix = normalized_base if normalized_base.endswith(os.sep) else normalized_base + os.sep
    return normalized_candidate.startswith(prefix)


def ensure_path_safe(base: str | Path, candidate: str | Path) -> None:
    if not is_path_safe(base, candidate):
        raise PathTraversalError(f"Invalid skill name: potential path traversal detected ({candidate})")


def canonical_skills_dir(scope: Scope, *, cwd: Path | None = None, home: Path | None = None) -> Path:
    if scope == SCOPE_GLOBAL:
        root = home if home is not None else home_dir()
    else:
        root = cwd if cwd is not None else Path.cwd()
    return Path(root) / AGENTS_DIR / SKILLS_SUBDIR


def agent_skills_dir(
    agent: AgentTarget,
    scope: Scope,
    *,
    cwd: Path | None = None,
    home: Path | None = None,
) -> Path:
    if scope == SCOPE_GLOBAL:
        global_dir = agent.global_dir(home)
        if global_dir is None:
            raise UnsupportedScopeError(f"{agent.display_name} does not support global skill installation")
        return global_dir
    root = cwd if cwd is not None else Path.cwd()
    return Path(root) / agent.skills_dir


def canonical_skill_path(name: str, scope: Scope, *, cwd: Path | None = None, home: Path | None = None) -> Path:
    base = canonical_skills_dir(scope, cwd=cwd, home=home)
    path = base / sanitize_name(name)
    ensure_path_safe(base, path)
    return path


def agent_skill_path(
    name: str,
    agent: AgentTarget,
    scope: Scope,
    *,
    cwd: Path | None = None,
    home: Path | None = None,
) -> Path:
    base = agent_skills_dir(agent, scope, cwd=cwd, home=home)
    path = base / sanitize_name(name)
    ensure_path_safe(base, path)
    return path


def lock_file_path(home: Path | None = None) -> Path:
    root = home if home is not None else home_dir()
    return Path(root) / AGENTS_DIR / LOCK_FILENAME
