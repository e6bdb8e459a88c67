from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .agents import AgentTarget, build_agents, detect_installed_agents
from .frontmatter import SkillMetadata, parse_skill_md
from .lock import SkillLock
from .paths import (
    SCOPE_GLOBAL,
    SCOPES,
    SKILL_FILENAME,
    Scope,
    agent_skills_dir,
    canonical_skills_dir,
    is_path_safe,
    sanitize_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstalledSkill:
    name: str
    description: str
    path: Path
    canonical_path: Path
    scope: Scope
    agents: tuple[str, ...] = ()
    matched_by: dict[str, str] = field(default_factory=dict)
    source: str | None = None
    source_url: str | None = None
    skill_path: str | None = None
    installed_at: str | None = None
    updated_at: str | None = None
    has_update: bool | None = None


_WHITESPACE_RE = re.compile(r"\s+")
_LOOSE_STRIP_RE = re.compile(r"[/\\:\x00]")


def loose_slug(name: str) -> str:
    """Lower-case, whitespace to hyphens, drop path separators, colons and NUL."""
    return _LOOSE_STRIP_RE.sub("", _WHITESPACE_RE.sub("-", name.lower()))


def _probe(agent_base: Path, dir_name: str) -> bool:
    if not dir_name or dir_name in (".", ".."):
        return False
    candidate = agent_base / dir_name
    if candidate == agent_base or not is_path_safe(agent_base, candidate):
        return False
    try:
        return candidate.exists()
    except OSError:
        return False


def match_entry_name(agent_base: Path, entry_name: str, skill: SkillMetadata) -> bool:
    return _probe(agent_base, entry_name)


def match_sanitized_name(agent_base: Path, entry_name: str, skill: SkillMetadata) -> bool:
    return _probe(agent_base, sanitize_name(skill.name))


def match_loose_slug(agent_base: Path, entry_name: str, skill: SkillMetadata) -> bool:
    return _probe(agent_base, loose_slug(skill.name))


def match_declared_name(agent_base: Path, entry_name: str, skill: SkillMetadata) -> bool:
    try:
        children = sorted(p for p in agent_base.iterdir() if p.is_dir())
    except OSError:
        return False
    for child in children:
        if not is_path_safe(agent_base, child):
            continue
        candidate = parse_skill_md(child / SKILL_FILENAME)
        if candidate is not None and candidate.name == skill.name:
            return True
    return False


MatchStrategy = Callable[[Path, str, SkillMetadata], bool]

MATCH_STRATEGIES: tuple[tuple[str, MatchStrategy], ...] = (
    ("entry-name", match_entry_name),
    ("sanitized-name", match_sanitized_name),
    ("loose-slug", match_loose_slug),
    ("declared-name", match_declared_name),
)


def find_agent_match(agent_base: Path, entry_name: str, skill: SkillMetadata) -> str | None:
    """Return the name of the first strategy that finds the skill under `agent_base`."""
    for strategy_name, strategy in MATCH_STRATEGIES:
        if strategy(agent_base, entry_name, skill):
            return strategy_name
    return None


def _canonical_entries(base: Path) -> list[tuple[Path, SkillMetadata]]:
    try:
        children = sorted(p for p in base.iterdir() if p.is_dir())
    except OSError:
        return []
    found: list[tuple[Path, SkillMetadata]] = []
    for child in children:
        skill_md = child / SKILL_FILENAME
        if not skill_md.is_file():
            continue
        meta = parse_skill_md(skill_md)
        if meta is None:
            logger.debug("skipping %s: SKILL.md lacks name or description", child)
            continue
        found.append((child, meta))
    return found


def list_installed_skills(
    *,
    scope: Scope | None = None,
    agent_filter: list[str] | None = None,
    cwd: Path | None = None,
    home: Path | None = None,
    agents: dict[str, AgentTarget] | None = None,
    detected: list[AgentTarget] | None = None,
    lock: SkillLock | None = None,
) -> list[InstalledSkill]:
    """
    List skills in the canonical folders and the detected agents that hold them.

    The canonical folder is the source of truth for "installed"; the registry only
    contributes provenance.
    """
    table = agents if agents is not None else build_agents(home)
    if detected is None:
        detected = detect_installed_agents(table)
    if agent_filter is not None:
        wanted = set(agent_filter)
        detected = [a for a in detected if a.name in wanted]

    registry = (lock if lock is not None else SkillLock(home=home)).read()
    scopes: tuple[Scope, ...] = SCOPES if scope is None else (scope,)

    results: list[InstalledSkill] = []
    for current_scope in scopes:
        base = canonical_skills_dir(current_scope, cwd=cwd, home=home)
        for skill_dir, meta in _canonical_entries(base):
            matched: dict[str, str] = {}
            for agent in detected:
                if current_scope == SCOPE_GLOBAL and not agent.supports_global:
                    continue
                agent_base = agent_skills_dir(agent, current_scope, cwd=cwd, home=home)
                strategy = find_agent_match(agent_base, skill_dir.name, meta)
                if strategy is not None:
                    matched[agent.name] = strategy

            entry = registry.skills.get(sanitize_name(meta.name))
            results.append(
                InstalledSkill(
                    name=meta.name,
                    description=meta.description,
                    path=skill_dir,
                    canonical_path=skill_dir,
                    scope=current_scope,
                    agents=tuple(matched),
                    matched_by=matched,
                    source=entry.source if entry else None,
                    source_url=entry.source_url if entry else None,
                    skill_path=entry.skill_path if entry else None,
                    installed_at=entry.installed_at if entry else None,
                    updated_at=entry.updated_at if entry else None,
                )
            )
    return results
