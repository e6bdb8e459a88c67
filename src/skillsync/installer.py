from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from .agents import AgentTarget
from .errors import PathTraversalError, UnsupportedScopeError
from .paths import (
    SCOPE_GLOBAL,
    Scope,
    agent_skills_dir,
    canonical_skills_dir,
    is_path_safe,
    sanitize_name,
)
from .repository import DiscoveredSkill

logger = logging.getLogger(__name__)

InstallMode = Literal["symlink", "copy"]

MODE_SYMLINK: InstallMode = "symlink"
MODE_COPY: InstallMode = "copy"

EXCLUDE_FILES = frozenset({"README.md", "metadata.json"})
EXCLUDE_DIRS = frozenset({".git"})

_PATH_TRAVERSAL_MESSAGE = "Invalid skill name: potential path traversal detected"


@dataclass(frozen=True)
class InstallResult:
    success: bool
    path: Path | None
    mode: InstallMode
    canonical_path: Path | None = None
    symlink_failed: bool = False
    error: str | None = None


_canonical_locks: dict[str, threading.Lock] = {}
_canonical_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = os.path.normpath(os.path.abspath(path))
    with _canonical_locks_guard:
        lock = _canonical_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _canonical_locks[key] = lock
        return lock


def _is_excluded(name: str, *, is_dir: bool) -> bool:
    if name in EXCLUDE_FILES:
        return True
    if name.startswith("_"):
        return True
    return is_dir and name in EXCLUDE_DIRS


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def _clean_and_create_directory(path: Path) -> None:
    try:
        _remove_path(path)
    except OSError as e:
        logger.debug("ignoring cleanup failure for %s: %s", path, e)
    path.mkdir(parents=True, exist_ok=True)


def copy_directory(src: Path, dest: Path) -> None:
    """
    Recursively copy a skill folder, dereferencing symlinks.

    Skips README.md, metadata.json, `_`-prefixed entries and `.git` folders.
    """
    dest.mkdir(parents=True, exist_ok=True)
    with os.scandir(src) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        is_real_dir = entry.is_dir(follow_symlinks=False)
        if _is_excluded(entry.name, is_dir=is_real_dir):
            continue
        src_path = Path(entry.path)
        dest_path = dest / entry.name
        if is_real_dir:
            copy_directory(src_path, dest_path)
        elif src_path.is_dir():
            shutil.copytree(src_path, dest_path, symlinks=False, dirs_exist_ok=True)
        else:
            shutil.copy2(src_path, dest_path, follow_symlinks=True)


def _points_to(link_path: Path, target: Path) -> bool:
    try:
        existing = os.readlink(link_path)
    except OSError:
        return False
    real_parent = os.path.realpath(os.path.dirname(os.path.abspath(link_path)))
    return os.path.realpath(os.path.join(real_parent, existing)) == os.path.realpath(target)


def _create_symlink(target: Path, link_path: Path) -> bool:
    """Link `link_path` -> `target` with a relative path. Returns False when linking is not possible."""
    try:
        # Compare resolved paths: an agent skills dir may itself be a link into the canonical dir.
        resolved_target = os.path.realpath(target)
        if os.path.realpath(link_path) == resolved_target:
            return True

        try:
            if link_path.is_symlink():
                if _points_to(link_path, target):
                    return True
                link_path.unlink()
            elif link_path.exists():
                _remove_path(link_path)
        except OSError as e:
            # A looping or broken link counts as "nothing there yet".
            logger.debug("could not inspect %s: %s", link_path, e)
            try:
                link_path.unlink()
            except OSError:
                pass

        link_dir = link_path.parent
        link_dir.mkdir(parents=True, exist_ok=True)
        relative = os.path.relpath(resolved_target, os.path.realpath(link_dir))
        os.symlink(relative, link_path, target_is_directory=True)
        return True
    except OSError as e:
        logger.warning("could not link %s -> %s: %s", link_path, target, e)
        return False


def _install_copy(src: Path, dest: Path) -> None:
    _clean_and_create_directory(dest)
    copy_directory(src, dest)


def install_skill_for_agent(
    skill: DiscoveredSkill,
    agent: AgentTarget,
    *,
    scope: Scope = SCOPE_GLOBAL,
    mode: InstallMode = MODE_SYMLINK,
    cwd: Path | None = None,
    home: Path | None = None,
) -> InstallResult:
    """
    Install one skill for one agent.

    In symlink mode the skill is copied to the canonical `.agents/skills/<name>`
    folder and the agent folder links to it. If the link cannot be created the
    agent folder receives an independent copy and `symlink_failed` is set; the
    install still succeeds. Copy mode never touches the canonical folder.

    Failures are reported in the result, never raised.
    """
    try:
        agent_base = agent_skills_dir(agent, scope, cwd=cwd, home=home)
    except UnsupportedScopeError as e:
        return InstallResult(success=False, path=None, mode=mode, error=str(e))

    skill_name = sanitize_name(skill.name or skill.path.name)
    canonical_base = canonical_skills_dir(scope, cwd=cwd, home=home)
    canonical_dir = canonical_base / skill_name
    agent_dir = agent_base / skill_name

    if not is_path_safe(canonical_base, canonical_dir) or not is_path_safe(agent_base, agent_dir):
        logger.warning("refusing to install %r for %s: %s", skill.name, agent.name, _PATH_TRAVERSAL_MESSAGE)
        return InstallResult(success=False, path=agent_dir, mode=mode, error=_PATH_TRAVERSAL_MESSAGE)

    try:
        if mode == MODE_COPY:
            _install_copy(skill.path, agent_dir)
            logger.info("copied %s to %s", skill_name, agent_dir)
            return InstallResult(success=True, path=agent_dir, mode=MODE_COPY)

        with _lock_for(canonical_dir):
            _install_copy(skill.path, canonical_dir)

        if _create_symlink(canonical_dir, agent_dir):
            logger.info("linked %s -> %s", agent_dir, canonical_dir)
            return InstallResult(success=True, path=agent_dir, mode=MODE_SYMLINK, canonical_path=canonical_dir)

        logger.warning("symlink failed for %s, falling back to copy at %s", agent.name, agent_dir)
        _install_copy(skill.path, agent_dir)
        return InstallResult(
            success=True,
            path=agent_dir,
            mode=MODE_SYMLINK,
            canonical_path=canonical_dir,
            symlink_failed=True,
        )
    except OSError as e:
        logger.warning("install of %s for %s failed: %s", skill_name, agent.name, e)
        return InstallResult(success=False, path=agent_dir, mode=mode, error=str(e) or type(e).__name__)


def get_install_path(
    name: str,
    agent: AgentTarget,
    *,
    scope: Scope = SCOPE_GLOBAL,
    cwd: Path | None = None,
    home: Path | None = None,
) -> Path:
    base = agent_skills_dir(agent, scope, cwd=cwd, home=home)
    path = base / sanitize_name(name)
    if not is_path_safe(base, path):
        raise PathTraversalError(_PATH_TRAVERSAL_MESSAGE)
    return path


def get_canonical_path(
    name: str,
    *,
    scope: Scope = SCOPE_GLOBAL,
    cwd: Path | None = None,
    home: Path | None = None,
) -> Path:
    base = canonical_skills_dir(scope, cwd=cwd, home=home)
    path = base / sanitize_name(name)
    if not is_path_safe(base, path):
        raise PathTraversalError(_PATH_TRAVERSAL_MESSAGE)
    return path


def is_skill_installed(
    name: str,
    agent: AgentTarget,
    *,
    scope: Scope = SCOPE_GLOBAL,
    cwd: Path | None = None,
    home: Path | None = None,
) -> bool:
    try:
        path = get_install_path(name, agent, scope=scope, cwd=cwd, home=home)
    except (UnsupportedScopeError, PathTraversalError):
        return False
    return path.exists()


def uninstall_skill_for_agent(
    name: str,
    agent: AgentTarget,
    *,
    scope: Scope = SCOPE_GLOBAL,
    cwd: Path | None = None,
    home: Path | None = None,
) -> bool:
    """Remove the agent's copy or link. Returns True when something was removed."""
    path = get_install_path(name, agent, scope=scope, cwd=cwd, home=home)
    canonical = get_canonical_path(name, scope=scope, cwd=cwd, home=home)
    if os.path.join(os.path.realpath(path.parent), path.name) == os.path.realpath(canonical):
        # The agent reads the canonical folder directly; removing it is remove_canonical's job.
        return False
    if not path.is_symlink() and not path.exists():
        return False
    _remove_path(path)
    return True


def remove_canonical(
    name: str,
    *,
    scope: Scope = SCOPE_GLOBAL,
    cwd: Path | None = None,
    home: Path | None = None,
) -> bool:
    path = get_canonical_path(name, scope=scope, cwd=cwd, home=home)
    if not path.is_symlink() and not path.exists():
        return False
    _remove_path(path)
    return True
