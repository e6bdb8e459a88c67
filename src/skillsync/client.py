from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx

from .config import DEFAULT_CATALOG_URL, DEFAULT_TIMEOUT_S
from .errors import CatalogHTTPError, SkillsyncError

MIN_QUERY_LENGTH = 2
SORT_CHOICES = ("all-time", "weekly", "monthly")

_OWNER_REPO_RE = re.compile(r"^([^/]+)/([^/]+)$")


@dataclass(frozen=True)
class CatalogSkill:
    id: str
    name: str
    installs: int
    top_source: str | None = None
    catalog_url: str = DEFAULT_CATALOG_URL

    @property
    def owner_repo(self) -> tuple[str, str] | None:
        if not self.top_source:
            return None
        m = _OWNER_REPO_RE.match(self.top_source)
        if not m:
            return None
        return m.group(1), m.group(2)

    @property
    def repository_url(self) -> str | None:
        if self.owner_repo is None:
            return None
        return f"https://github.com/{self.top_source}"

    @property
    def url(self) -> str:
        base = self.catalog_url.rstrip("/")
        if self.top_source:
            return f"{base}/{self.top_source}/{self.id}"
        return f"{base}/{self.id}"

    @property
    def install_source(self) -> str:
        """Argument for `skillsync add` that installs exactly this skill."""
        if self.top_source:
            return f"{self.top_source}@{self.id}"
        return self.id

    @property
    def install_command(self) -> str:
        return f"skillsync add {self.install_source}"


def _as_int(v: Any) -> int:
    if isinstance(v, bool):
        return 0
    if isinstance(v, int):
        return max(v, 0)
    return 0


def _parse_skills(obj: Any, *, catalog_url: str) -> list[CatalogSkill]:
    if not isinstance(obj, dict):
        return []
    items = obj.get("skills")
    if not isinstance(items, list):
        return []
    out: list[CatalogSkill] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        skill_id = item.get("id")
        if not isinstance(skill_id, str) or not skill_id.strip():
            continue
        name = item.get("name")
        top_source = item.get("topSource")
        out.append(
            CatalogSkill(
                id=skill_id,
                name=name if isinstance(name, str) and name else skill_id,
                installs=_as_int(item.get("installs")),
                top_source=top_source if isinstance(top_source, str) and top_source else None,
                catalog_url=catalog_url,
            )
        )
    return out


class SkillsCatalogClient:
    """
    Read-only client for the public skills catalog (skills.sh compatible API).
    """

    def __init__(self, *, base_url: str = DEFAULT_CATALOG_URL, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "SkillsCatalogClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(self, *, method: str, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        if not path.startswith("/"):
            path = "/" + path
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.request(method.upper(), url, params=params, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise SkillsyncError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise CatalogHTTPError(resp.status_code, resp.text)
        return resp

    def _get_skills(self, path: str, params: dict[str, Any]) -> list[CatalogSkill]:
        resp = self.request(method="GET", path=path, params=params)
        try:
            data = resp.json()
        except ValueError as e:
            raise SkillsyncError(f"Catalog returned invalid JSON from {path}") from e
        return _parse_skills(data, catalog_url=self.base_url)

    def search(self, query: str, *, limit: int = 50) -> list[CatalogSkill]:
        q = query.strip()
        if len(q) < MIN_QUERY_LENGTH:
            return []
        return self._get_skills("/api/search", {"q": q, "limit": limit})

    def popular(self, *, limit: int = 50, sort: str = "all-time") -> list[CatalogSkill]:
        if sort not in SORT_CHOICES:
            raise SkillsyncError(f"Unsupported sort {sort!r}. Expected one of: {', '.join(SORT_CHOICES)}")
        return self._get_skills("/api/skills", {"limit": limit, "sort": sort})
