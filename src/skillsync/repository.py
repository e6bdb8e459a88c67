from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol

from .errors import GitCloneError, SkillsyncError
from .frontmatter import parse_skill_md
from .paths import SKILL_FILENAME, ensure_path_safe

logger = logging.getLogger(__name__)

CLONE_TIMEOUT_S = 60.0
TEMP_PREFIX = "skills-"
MAX_DISCOVERY_DEPTH = 5
SKIP_DIRS = frozenset({"node_modules", ".git", "dist", "build", "__pycache__"})
CONVENTIONAL_SKILL_DIRS = (
    "skills",
    "skills/.curated",
    "skills/.experimental",
    ".agents/skills",
    ".claude/skills",
)

SourceType = Literal["github", "gitlab", "git", "local"]

_AUTH_ERROR_MARKERS = (
    "Authentication failed",
    "could not read Username",
    "Permission denied",
    "Repository not found",
)


@dataclass(frozen=True)
class ParsedSource:
    type: SourceType
    url: str
    subpath: str | None = None
    local_path: str | None = None
    ref: str | None = None
    skill_filter: str | None = None


@dataclass(frozen=True)
class DiscoveredSkill:
    name: str
    description: str
    path: Path
    raw_content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class SkillSource(Protocol):
    def fetch(self, locator: str, ref: str | None = None) -> Path:
        ...

    def discover(self, root: Path, subpath: str | None = None) -> list[DiscoveredSkill]:
        ...

    def cleanup(self, path: Path) -> None:
        ...


_HOSTED_RE = {
    "github": re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?(?:/(.+))?/?$"),
    "gitlab": re.compile(r"gitlab\.com[/:]([^/]+)/([^/]+?)(?:\.git)?(?:/(.+))?/?$"),
}
_TREE_RE = re.compile(r"^(?:-/)?tree/([^/]+)(?:/(.+))?$")
_OWNER_REPO_RE = re.compile(r"^([^/@]+)/([^/@]+)(?:@([^/]+))?(?:/(.+))?$")
_WINDOWS_DRIVE_RE = re.compile(r"^[a-zA-Z]:[/\\]")


def _is_local_path(value: str) -> bool:
    return (
        os.path.isabs(value)
        or value.startswith(("./", "../", "~/"))
        or value in (".", "..", "~")
        or bool(_WINDOWS_DRIVE_RE.match(value))
    )


def parse_source(value: str) -> ParsedSource:
    """
    Parse a user-supplied skill source.

    Accepts hosted URLs (optionally pointing at a subdirectory, e.g.
    `https://github.com/o/r/tree/main/skills/x`), `owner/repo`,
    `owner/repo@skill-name`, `owner/repo/sub/path`, local paths and any other git URL.
    """
    raw = value.strip()
    if not raw:
        raise SkillsyncError("Source must not be empty.")

    if _is_local_path(raw):
        local = str(Path(raw).expanduser().resolve())
        return ParsedSource(type="local", url=local, local_path=local)

    for kind, pattern in _HOSTED_RE.items():
        if f"{kind}.com" not in raw:
            continue
        m = pattern.search(raw)
        if not m:
            continue
        owner, repo, rest = m.group(1), m.group(2), m.group(3)
        ref = None
        subpath = rest
        if rest:
            tree = _TREE_RE.match(rest)
            if tree:
                ref, subpath = tree.group(1), tree.group(2)
        return ParsedSource(
            type=kind,  # type: ignore[arg-type]
            url=f"https://{kind}.com/{owner}/{repo}.git",
            subpath=subpath or None,
            ref=ref,
        )

    if "://" not in raw and not raw.startswith("git@"):
        m = _OWNER_REPO_RE.match(raw)
        if m:
            return ParsedSource(
                type="github",
                url=f"https://github.com/{m.group(1)}/{m.group(2)}.git",
                subpath=m.group(4),
                skill_filter=m.group(3),
            )

    return ParsedSource(type="git", url=raw)


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def clone_repository(url: str, ref: str | None = None, *, timeout_s: float = CLONE_TIMEOUT_S) -> Path:
    """Shallow-clone `url` into a fresh temporary directory and return it."""
    dest = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
    cmd = ["git", "clone", "--depth", "1"]
    if ref:
        cmd += ["--branch", ref]
    cmd += [url, str(dest)]
    logger.debug("running %s", " ".join(cmd))

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s, env=_git_env())
    except subprocess.TimeoutExpired as e:
        shutil.rmtree(dest, ignore_errors=True)
        raise GitCloneError(
            f"Clone timed out after {int(timeout_s)}s. This often happens with private repos that require authentication.",
            url,
            is_timeout=True,
        ) from e
    except OSError as e:
        shutil.rmtree(dest, ignore_errors=True)
        raise GitCloneError(f"Failed to clone {url}: could not run git ({e})", url) from e

    if result.returncode != 0:
        shutil.rmtree(dest, ignore_errors=True)
        stderr = result.stderr.strip()
        if any(marker in stderr for marker in _AUTH_ERROR_MARKERS):
            raise GitCloneError(f"Authentication failed for {url}.", url, is_auth_error=True)
        raise GitCloneError(f"Failed to clone {url}: {stderr}", url)
    return dest


def copy_local_source(path: str | Path) -> Path:
    src = Path(path).expanduser().resolve()
    if not src.is_dir():
        raise SkillsyncError(f"Local source is not a directory: {src}")
    dest = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
    shutil.copytree(src, dest, dirs_exist_ok=True, ignore=shutil.ignore_patterns(*SKIP_DIRS))
    return dest


def _temp_root() -> Path:
    return Path(tempfile.gettempdir()).resolve()


def cleanup_temp_dir(path: str | Path) -> None:
    """Remove a fetched checkout. Safe to call repeatedly; refuses paths outside the temp root."""
    target = Path(path).resolve()
    root = _temp_root()
    if target == root or root not in target.parents:
        raise SkillsyncError(f"Refusing to clean up directory outside of temp directory: {target}")
    if not target.exists():
        return
    shutil.rmtree(target, ignore_errors=True)


def _is_internal(metadata: dict[str, Any]) -> bool:
    return metadata.get("internal") is True


def _internal_allowed_by_env() -> bool:
    return os.getenv("INSTALL_INTERNAL_SKILLS", "").strip().lower() in ("1", "true")


def _load_skill(skill_dir: Path, *, include_internal: bool) -> DiscoveredSkill | None:
    meta = parse_skill_md(skill_dir / SKILL_FILENAME)
    if meta is None:
        return None
    if _is_internal(meta.metadata) and not include_internal:
        logger.debug("skipping internal skill %s at %s", meta.name, skill_dir)
        return None
    return DiscoveredSkill(
        name=meta.name,
        description=meta.description,
        path=skill_dir,
        raw_content=meta.raw_content,
        metadata=dict(meta.metadata),
    )


def _has_skill_md(path: Path) -> bool:
    return (path / SKILL_FILENAME).is_file()


def _child_dirs(path: Path) -> list[Path]:
    try:
        return sorted((p for p in path.iterdir() if p.is_dir() and p.name not in SKIP_DIRS), key=lambda p: p.name)
    except OSError:
        return []


def _find_skill_dirs(path: Path, depth: int = 0) -> list[Path]:
    if depth > MAX_DISCOVERY_DEPTH:
        return []
    found = [path] if _has_skill_md(path) else []
    for child in _child_dirs(path):
        found.extend(_find_skill_dirs(child, depth + 1))
    return found


def _conventional_skill_dirs(path: Path) -> list[Path]:
    found: list[Path] = []
    for rel in CONVENTIONAL_SKILL_DIRS:
        container = path / rel
        if not container.is_dir():
            continue
        found.extend(child for child in _child_dirs(container) if _has_skill_md(child))
    return found


def discover_skills(
    root: str | Path,
    subpath: str | None = None,
    *,
    include_internal: bool = False,
    full_depth: bool = False,
) -> list[DiscoveredSkill]:
    """
    Find skill directories (folders holding a SKILL.md) in a checkout.

    A SKILL.md directly at the search path wins and is returned alone unless
    `full_depth` is set. Otherwise the conventional skill folders are checked,
    then the whole tree is walked.
    """
    root_path = Path(root)
    search_path = root_path
    if subpath:
        search_path = root_path / subpath
        ensure_path_safe(root_path, search_path)

    allow_internal = include_internal or _internal_allowed_by_env()
    skills: list[DiscoveredSkill] = []
    seen: set[str] = set()

    def _add(skill_dir: Path) -> None:
        skill = _load_skill(skill_dir, include_internal=allow_internal)
        if skill is not None and skill.name not in seen:
            seen.add(skill.name)
            skills.append(skill)

    if _has_skill_md(search_path):
        _add(search_path)
        if not full_depth:
            return skills

    candidates = _conventional_skill_dirs(search_path)
    if not candidates or full_depth:
        candidates += _find_skill_dirs(search_path)
    for skill_dir in candidates:
        _add(skill_dir)
    return skills


class GitSkillSource:
    """Fetches sources with git (or copies local folders) into disposable temp directories."""

    def __init__(
        self,
        *,
        include_internal: bool = False,
        full_depth: bool = False,
        clone_timeout_s: float = CLONE_TIMEOUT_S,
    ) -> None:
        self.include_internal = include_internal
        self.full_depth = full_depth
        self.clone_timeout_s = clone_timeout_s

    def fetch(self, locator: str, ref: str | None = None) -> Path:
        parsed = parse_source(locator)
        if parsed.type == "local":
            return copy_local_source(parsed.local_path or parsed.url)
        return clone_repository(parsed.url, ref or parsed.ref, timeout_s=self.clone_timeout_s)

    def discover(self, root: Path, subpath: str | None = None) -> list[DiscoveredSkill]:
        return discover_skills(root, subpath, include_internal=self.include_internal, full_depth=self.full_depth)

    def cleanup(self, path: Path) -> None:
        cleanup_temp_dir(path)
