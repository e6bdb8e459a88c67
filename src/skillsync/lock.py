from __future__ import annotations

import hashlib
import json
import logging
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .paths import lock_file_path, sanitize_name

logger = logging.getLogger(__name__)

CURRENT_LOCK_VERSION = 3


def compute_content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class LockMetadata:
    source: str
    source_type: str
    source_url: str
    skill_folder_hash: str
    skill_path: str | None = None


@dataclass(frozen=True)
class SkillLockEntry:
    source: str
    source_type: str
    source_url: str
    skill_folder_hash: str
    installed_at: str
    updated_at: str
    skill_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source": self.source,
            "sourceType": self.source_type,
            "sourceUrl": self.source_url,
            "skillFolderHash": self.skill_folder_hash,
            "installedAt": self.installed_at,
            "updatedAt": self.updated_at,
        }
        if self.skill_path:
            data["skillPath"] = self.skill_path
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> SkillLockEntry | None:
        if not isinstance(raw, dict):
            return None
        return cls(
            source=str(raw.get("source") or ""),
            source_type=str(raw.get("sourceType") or ""),
            source_url=str(raw.get("sourceUrl") or ""),
            skill_folder_hash=str(raw.get("skillFolderHash") or ""),
            installed_at=str(raw.get("installedAt") or ""),
            updated_at=str(raw.get("updatedAt") or ""),
            skill_path=_str_or_none(raw.get("skillPath")),
        )


@dataclass
class LockFile:
    version: int = CURRENT_LOCK_VERSION
    skills: dict[str, SkillLockEntry] = field(default_factory=dict)
    dismissed: dict[str, bool] = field(default_factory=dict)
    last_selected_agents: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "skills": {name: self.skills[name].to_dict() for name in sorted(self.skills)},
        }
        if self.dismissed:
            data["dismissed"] = dict(self.dismissed)
        if self.last_selected_agents is not None:
            data["lastSelectedAgents"] = list(self.last_selected_agents)
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LockFile:
        skills: dict[str, SkillLockEntry] = {}
        for name, item in raw["skills"].items():
            entry = SkillLockEntry.from_dict(item)
            if isinstance(name, str) and entry is not None:
                skills[name] = entry
        dismissed_raw = raw.get("dismissed")
        dismissed = (
            {k: bool(v) for k, v in dismissed_raw.items() if isinstance(k, str)} if isinstance(dismissed_raw, dict) else {}
        )
        agents_raw = raw.get("lastSelectedAgents")
        last_selected = [a for a in agents_raw if isinstance(a, str)] if isinstance(agents_raw, list) else None
        return cls(version=raw["version"], skills=skills, dismissed=dismissed, last_selected_agents=last_selected)


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def _acquire_file_lock(handle) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _release_file_lock(handle) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SkillLock:
    """
    The `.skill-lock.json` registry of installed skills and where they came from.

    Entries are keyed by sanitized skill name. A file with an older schema
    version, a non-integer version or no `skills` map reads as an empty
    registry; nothing is migrated. Read-modify-write cycles go through
    `update()`, which holds an advisory lock on a sibling `.lock` file.
    """

    def __init__(self, path: Path | None = None, *, home: Path | None = None) -> None:
        self.path = Path(path) if path is not None else lock_file_path(home)
        self._mutex = threading.RLock()
        self._depth = 0
        self._handle = None
        self._active: LockFile | None = None

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._mutex:
            if self._depth == 0:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                handle = open(self.path.with_name(self.path.name + ".lock"), "a+", encoding="utf-8")
                try:
                    _acquire_file_lock(handle)
                except OSError:
                    handle.close()
                    raise
                self._handle = handle
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._handle is not None:
                    try:
                        _release_file_lock(self._handle)
                    finally:
                        self._handle.close()
                        self._handle = None

    def read(self) -> LockFile:
        if not self.path.exists():
            return LockFile()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("unreadable lock file %s, starting empty: %s", self.path, e)
            return LockFile()
        if not isinstance(raw, dict):
            return LockFile()
        version = raw.get("version")
        if isinstance(version, bool) or not isinstance(version, int) or not isinstance(raw.get("skills"), dict):
            logger.debug("malformed lock file %s, starting empty", self.path)
            return LockFile()
        if version < CURRENT_LOCK_VERSION:
            logger.info("lock file %s has schema v%s (< v%s), resetting", self.path, version, CURRENT_LOCK_VERSION)
            return LockFile()
        return LockFile.from_dict(raw)

    def write(self, lock: LockFile) -> None:
        with self._locked():
            _write_json_atomic(self.path, lock.to_dict())

    @contextmanager
    def update(self) -> Iterator[LockFile]:
        """Read-modify-write under the lock. Nested calls share the outermost document and its single write."""
        with self._locked():
            if self._active is not None:
                yield self._active
                return
            lock = self.read()
            self._active = lock
            try:
                yield lock
                self.write(lock)
            finally:
                self._active = None

    def add_skills(
        self,
        entries: dict[str, LockMetadata],
        *,
        selected_agents: list[str] | None = None,
    ) -> dict[str, SkillLockEntry]:
        """
        Upsert several entries with a single write. `installedAt` survives reinstalls.

        `selected_agents`, when given, is remembered in the same write.
        """
        now = _now()
        written: dict[str, SkillLockEntry] = {}
        with self.update() as lock:
            for name, meta in entries.items():
                key = sanitize_name(name)
                previous = lock.skills.get(key)
                entry = SkillLockEntry(
                    source=meta.source,
                    source_type=meta.source_type,
                    source_url=meta.source_url,
                    skill_folder_hash=meta.skill_folder_hash,
                    skill_path=meta.skill_path,
                    installed_at=previous.installed_at if previous and previous.installed_at else now,
                    updated_at=now,
                )
                lock.skills[key] = entry
                written[key] = entry
            if selected_agents is not None:
                lock.last_selected_agents = list(selected_agents)
        return written

    def add_skill(self, name: str, metadata: LockMetadata) -> SkillLockEntry:
        return self.add_skills({name: metadata})[sanitize_name(name)]

    def remove_skill(self, name: str) -> bool:
        key = sanitize_name(name)
        with self.update() as lock:
            return lock.skills.pop(key, None) is not None

    def get_entry(self, name: str) -> SkillLockEntry | None:
        return self.read().skills.get(sanitize_name(name))

    def get_last_selected_agents(self) -> list[str] | None:
        return self.read().last_selected_agents

    def save_selected_agents(self, agent_names: list[str]) -> None:
        with self.update() as lock:
            lock.last_selected_agents = list(agent_names)

    def is_dismissed(self, key: str) -> bool:
        return bool(self.read().dismissed.get(key))

    def dismiss(self, key: str) -> None:
        with self.update() as lock:
            lock.dismissed[key] = True
