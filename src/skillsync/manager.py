from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path

from .agents import AgentTarget, build_agents, detect_installed_agents, get_agent
from .errors import SkillsyncError, SourceDiscoveryEmptyError, UnsupportedScopeError
from .installer import (
    MODE_SYMLINK,
    InstallMode,
    InstallResult,
    install_skill_for_agent,
    remove_canonical,
    uninstall_skill_for_agent,
)
from .listing import InstalledSkill, list_installed_skills
from .lock import LockMetadata, SkillLock, compute_content_hash
from .paths import SCOPE_GLOBAL, SCOPE_PROJECT, Scope, canonical_skill_path, sanitize_name
from .repository import DiscoveredSkill, GitSkillSource, ParsedSource, SkillSource, parse_source
from .updates import UpdateStatus, check_for_updates

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class AgentInstall:
    agent: str
    result: InstallResult


@dataclass(frozen=True)
class SkillInstallOutcome:
    name: str
    results: tuple[AgentInstall, ...]

    @property
    def sanitized_name(self) -> str:
        return sanitize_name(self.name)

    @property
    def successful(self) -> tuple[AgentInstall, ...]:
        return tuple(r for r in self.results if r.result.success)

    @property
    def failed(self) -> tuple[AgentInstall, ...]:
        return tuple(r for r in self.results if not r.result.success)


@dataclass(frozen=True)
class InstallReport:
    source: str
    scope: Scope
    mode: InstallMode
    skills: tuple[SkillInstallOutcome, ...]

    @property
    def success_count(self) -> int:
        return sum(len(s.successful) for s in self.skills)

    @property
    def failure_count(self) -> int:
        return sum(len(s.failed) for s in self.skills)

    @property
    def all_failed(self) -> bool:
        return self.success_count == 0

    def failures(self) -> list[tuple[str, str, str]]:
        return [(s.name, r.agent, r.result.error or "Unknown error") for s in self.skills for r in s.failed]


@dataclass(frozen=True)
class RemoveResult:
    name: str
    scope: Scope
    removed_from: tuple[str, ...]
    canonical_removed: bool
    lock_entry_removed: bool


def _relative_skill_path(skill: DiscoveredSkill, checkout: Path) -> str | None:
    try:
        rel = skill.path.resolve().relative_to(checkout.resolve())
    except ValueError:
        return None
    rel_s = rel.as_posix()
    return None if rel_s in ("", ".") else rel_s


class SkillManager:
    """
    Installs skills from a source into agents and keeps the lock file in sync.

    Per-target installs for one request run in parallel; the lock file is written
    once afterwards, and only for skills that reached at least one agent.
    """

    def __init__(
        self,
        *,
        source: SkillSource | None = None,
        lock: SkillLock | None = None,
        home: Path | None = None,
        cwd: Path | None = None,
        agents: dict[str, AgentTarget] | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.source = source if source is not None else GitSkillSource()
        self.home = home
        self.cwd = cwd
        self.agents = agents if agents is not None else build_agents(home)
        self.lock = lock if lock is not None else SkillLock(home=home)
        self.max_workers = max_workers

    def detect_agents(self) -> list[AgentTarget]:
        return detect_installed_agents(self.agents)

    def select_agents(self, names: list[str] | None = None) -> list[AgentTarget]:
        if names:
            return [get_agent(n, self.agents) for n in dict.fromkeys(names)]

        detected = self.detect_agents()
        if not detected:
            raise SkillsyncError("No agents detected. Pass --agent <name> to choose one explicitly.")
        if len(detected) == 1:
            return detected
        remembered = [n for n in (self.lock.get_last_selected_agents() or []) if n in self.agents]
        combined = dict.fromkeys([a.name for a in detected] + remembered)
        return [self.agents[n] for n in combined]

    def _choose_skills(
        self,
        discovered: list[DiscoveredSkill],
        *,
        source: str,
        names: list[str] | None,
        all_skills: bool,
    ) -> list[DiscoveredSkill]:
        if not discovered:
            raise SourceDiscoveryEmptyError(f"No skills found in {source}")
        if names:
            wanted = {sanitize_name(n) for n in names}
            chosen = [s for s in discovered if sanitize_name(s.name) in wanted]
            missing = wanted - {sanitize_name(s.name) for s in chosen}
            if missing:
                available = ", ".join(s.name for s in discovered)
                raise SkillsyncError(f"Skill(s) {', '.join(sorted(missing))} not found in {source}. Available: {available}")
            return chosen
        if len(discovered) == 1 or all_skills:
            return discovered
        available = "\n  ".join(s.name for s in discovered)
        raise SkillsyncError(f"Multiple skills found in {source}. Pick one with --skill or pass --all:\n  {available}")

    def _install_many(
        self,
        skills: list[DiscoveredSkill],
        targets: list[AgentTarget],
        *,
        scope: Scope,
        mode: InstallMode,
    ) -> list[SkillInstallOutcome]:
        jobs = [(skill, agent) for skill in skills for agent in targets]

        def _run(job: tuple[DiscoveredSkill, AgentTarget]) -> InstallResult:
            skill, agent = job
            return install_skill_for_agent(skill, agent, scope=scope, mode=mode, cwd=self.cwd, home=self.home)

        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(jobs)))) as pool:
            results = list(pool.map(_run, jobs))

        by_skill: dict[str, list[AgentInstall]] = {}
        for (skill, agent), result in zip(jobs, results):
            by_skill.setdefault(skill.name, []).append(AgentInstall(agent=agent.name, result=result))
        return [SkillInstallOutcome(name=s.name, results=tuple(by_skill.get(s.name, []))) for s in skills]

    def install(
        self,
        source_input: str,
        *,
        agent_names: list[str] | None = None,
        scope: Scope = SCOPE_GLOBAL,
        mode: InstallMode = MODE_SYMLINK,
        skill_names: list[str] | None = None,
        all_skills: bool = False,
        subpath: str | None = None,
    ) -> InstallReport:
        parsed = parse_source(source_input)
        targets = self.select_agents(agent_names)
        names = skill_names or ([parsed.skill_filter] if parsed.skill_filter else None)

        checkout = self.source.fetch(parsed.url, parsed.ref)
        try:
            discovered = self.source.discover(checkout, subpath or parsed.subpath)
            chosen = self._choose_skills(discovered, source=source_input, names=names, all_skills=all_skills)
            outcomes = self._install_many(chosen, targets, scope=scope, mode=mode)
            self._record(parsed, source_input, checkout, chosen, outcomes)
        finally:
            try:
                self.source.cleanup(checkout)
            except (SkillsyncError, OSError) as e:
                logger.warning("could not clean up %s: %s", checkout, e)

        report = InstallReport(source=source_input, scope=scope, mode=mode, skills=tuple(outcomes))
        for skill_name, agent_name, error in report.failures():
            logger.warning("%s -> %s failed: %s", skill_name, agent_name, error)
        return report

    def _record(
        self,
        parsed: ParsedSource,
        source_input: str,
        checkout: Path,
        chosen: list[DiscoveredSkill],
        outcomes: list[SkillInstallOutcome],
    ) -> None:
        succeeded = {o.name for o in outcomes if o.successful}
        if not succeeded:
            return
        entries = {
            skill.name: LockMetadata(
                source=source_input.strip(),
                source_type=parsed.type,
                source_url=parsed.url,
                skill_path=_relative_skill_path(skill, checkout),
                skill_folder_hash=compute_content_hash(skill.raw_content),
            )
            for skill in chosen
            if skill.name in succeeded
        }
        agents = list(dict.fromkeys(r.agent for o in outcomes for r in o.successful))
        self.lock.add_skills(entries, selected_agents=agents)

    def list_installed(
        self,
        *,
        scope: Scope | None = None,
        agent_filter: list[str] | None = None,
        check_updates: bool = False,
    ) -> list[InstalledSkill]:
        skills = list_installed_skills(
            scope=scope,
            agent_filter=agent_filter,
            cwd=self.cwd,
            home=self.home,
            agents=self.agents,
            lock=self.lock,
        )
        if not check_updates:
            return skills

        def _decorate(skill: InstalledSkill) -> InstalledSkill:
            if not skill.source_url:
                return skill
            status = check_for_updates(
                skill.name,
                skill.source_url,
                source=self.source,
                scope=skill.scope,
                skill_path=skill.skill_path,
                cwd=self.cwd,
                home=self.home,
            )
            return replace(skill, has_update=status.has_update)

        if not skills:
            return skills
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(skills)))) as pool:
            return list(pool.map(_decorate, skills))

    def _installed_scope(self, name: str) -> Scope | None:
        for scope in (SCOPE_GLOBAL, SCOPE_PROJECT):
            if canonical_skill_path(name, scope, cwd=self.cwd, home=self.home).is_dir():
                return scope
        return None

    def check_updates(self, names: list[str] | None = None, *, scope: Scope | None = None) -> list[UpdateStatus]:
        registry = self.lock.read()
        keys = sorted(registry.skills)
        if names:
            wanted = {sanitize_name(n) for n in names}
            keys = [k for k in keys if k in wanted]

        statuses: list[UpdateStatus] = []
        for key in keys:
            entry = registry.skills[key]
            if not entry.source_url:
                continue
            effective_scope = scope or self._installed_scope(key) or SCOPE_GLOBAL
            statuses.append(
                check_for_updates(
                    key,
                    entry.source_url,
                    source=self.source,
                    scope=effective_scope,
                    skill_path=entry.skill_path,
                    cwd=self.cwd,
                    home=self.home,
                )
            )
        return statuses

    def update(
        self,
        names: list[str] | None = None,
        *,
        scope: Scope = SCOPE_GLOBAL,
        mode: InstallMode = MODE_SYMLINK,
    ) -> list[InstallReport]:
        """Reinstall skills whose published SKILL.md changed, into the agents that hold them now."""
        stale = [s for s in self.check_updates(names, scope=scope) if s.has_update]
        if not stale:
            return []

        installed = {sanitize_name(s.name): s for s in self.list_installed(scope=scope)}
        registry = self.lock.read()
        reports: list[InstallReport] = []
        for status in stale:
            entry = registry.skills.get(status.skill_name)
            if entry is None:
                continue
            current = installed.get(status.skill_name)
            holders = list(current.agents) if current and current.agents else None
            declared = current.name if current else status.skill_name
            logger.info("updating %s from %s", declared, entry.source_url)
            reports.append(
                self.install(
                    entry.source_url,
                    agent_names=holders,
                    scope=scope,
                    mode=mode,
                    skill_names=[declared],
                    subpath=entry.skill_path,
                )
            )
        return reports

    def remove(
        self,
        name: str,
        *,
        scope: Scope = SCOPE_GLOBAL,
        agent_names: list[str] | None = None,
    ) -> RemoveResult:
        """
        Remove a skill from agents. Without explicit agents the skill is removed
        everywhere, including its canonical copy and its lock entry.
        """
        targets = [get_agent(n, self.agents) for n in agent_names] if agent_names else list(self.agents.values())
        removed: list[str] = []
        for agent in targets:
            try:
                if uninstall_skill_for_agent(name, agent, scope=scope, cwd=self.cwd, home=self.home):
                    removed.append(agent.name)
            except UnsupportedScopeError:
                continue
            except OSError as e:
                logger.warning("could not remove %s from %s: %s", name, agent.name, e)

        canonical_removed = False
        lock_removed = False
        if not agent_names:
            try:
                canonical_removed = remove_canonical(name, scope=scope, cwd=self.cwd, home=self.home)
            except OSError as e:
                logger.warning("could not remove canonical copy of %s: %s", name, e)
            lock_removed = self.lock.remove_skill(name)

        return RemoveResult(
            name=sanitize_name(name),
            scope=scope,
            removed_from=tuple(removed),
            canonical_removed=canonical_removed,
            lock_entry_removed=lock_removed,
        )
