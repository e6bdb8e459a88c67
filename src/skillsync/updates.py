"""Content-hash based update detection.

A skill is stale when the SHA-256 of its installed SKILL.md differs from the
SKILL.md currently published at its source. There is no version comparison.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from .errors import SkillsyncError
from .lock import compute_content_hash
from .paths import SCOPE_GLOBAL, SKILL_FILENAME, Scope, canonical_skill_path
from .repository import SkillSource

logger = logging.getLogger(__name__)

UpdateType = Literal["content", "none"]
InstallStatus = Literal["not_installed", "installed", "update_available"]


@dataclass(frozen=True)
class UpdateStatus:
    skill_name: str
    has_update: bool
    update_type: UpdateType
    local_hash: str | None
    remote_hash: str | None


@dataclass(frozen=True)
class SkillInstallState:
    status: InstallStatus
    local_hash: str | None = None
    remote_hash: str | None = None


def compute_installed_skill_hash(
    skill_name: str,
    scope: Scope = SCOPE_GLOBAL,
    *,
    cwd: Path | None = None,
    home: Path | None = None,
) -> str | None:
    try:
        skill_md = canonical_skill_path(skill_name, scope, cwd=cwd, home=home) / SKILL_FILENAME
        content = skill_md.read_text(encoding="utf-8")
    except (SkillsyncError, OSError, UnicodeDecodeError) as e:
        logger.debug("no local hash for %s: %s", skill_name, e)
        return None
    return compute_content_hash(content)


def compute_remote_skill_hash(source_url: str, skill_path: str | None = None, *, source: SkillSource) -> str | None:
    checkout: Path | None = None
    try:
        checkout = source.fetch(source_url)
        skills = source.discover(checkout, skill_path)
        if not skills:
            return None
        return compute_content_hash(skills[0].raw_content)
    except (SkillsyncError, OSError) as e:
        logger.warning("could not fetch %s for update check: %s", source_url, e)
        return None
    finally:
        if checkout is not None:
            try:
                source.cleanup(checkout)
            except (SkillsyncError, OSError) as e:
                logger.debug("cleanup of %s failed: %s", checkout, e)


def check_for_updates(
    skill_name: str,
    source_url: str,
    *,
    source: SkillSource,
    scope: Scope = SCOPE_GLOBAL,
    skill_path: str | None = None,
    cwd: Path | None = None,
    home: Path | None = None,
) -> UpdateStatus:
    local_hash = compute_installed_skill_hash(skill_name, scope, cwd=cwd, home=home)
    remote_hash = compute_remote_skill_hash(source_url, skill_path, source=source)

    # A missing side is "unknown", not "different".
    if local_hash is None or remote_hash is None:
        return UpdateStatus(skill_name, False, "none", local_hash, remote_hash)

    has_update = local_hash != remote_hash
    return UpdateStatus(skill_name, has_update, "content" if has_update else "none", local_hash, remote_hash)


def get_skill_install_state(
    skill_name: str,
    source_url: str,
    *,
    source: SkillSource,
    scope: Scope = SCOPE_GLOBAL,
    skill_path: str | None = None,
    cwd: Path | None = None,
    home: Path | None = None,
) -> SkillInstallState:
    local_hash = compute_installed_skill_hash(skill_name, scope, cwd=cwd, home=home)
    if local_hash is None:
        return SkillInstallState(status="not_installed")

    remote_hash = compute_remote_skill_hash(source_url, skill_path, source=source)
    if remote_hash is None or remote_hash == local_hash:
        return SkillInstallState(status="installed", local_hash=local_hash, remote_hash=remote_hash)
    return SkillInstallState(status="update_available", local_hash=local_hash, remote_hash=remote_hash)
