from __future__ import annotations

from dataclasses import dataclass


class SkillsyncError(RuntimeError):
    pass


class UnsupportedScopeError(SkillsyncError):
    pass


class PathTraversalError(SkillsyncError):
    pass


class SourceDiscoveryEmptyError(SkillsyncError):
    pass


class UnknownAgentError(SkillsyncError):
    pass


class GitCloneError(SkillsyncError):
    def __init__(self, message: str, url: str, *, is_timeout: bool = False, is_auth_error: bool = False) -> None:
        super().__init__(message)
        self.url = url
        self.is_timeout = is_timeout
        self.is_auth_error = is_auth_error


@dataclass(frozen=True)
class CatalogHTTPError(SkillsyncError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"
