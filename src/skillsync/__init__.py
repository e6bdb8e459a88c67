from ._version import __version__
from .agents import AgentTarget, build_agents, detect_installed_agents, get_agent
from .errors import (
    CatalogHTTPError,
    GitCloneError,
    PathTraversalError,
    SkillsyncError,
    SourceDiscoveryEmptyError,
    UnknownAgentError,
    UnsupportedScopeError,
)
from .installer import InstallResult, install_skill_for_agent
from .listing import InstalledSkill, list_installed_skills
from .lock import SkillLock, compute_content_hash
from .manager import InstallReport, SkillManager
from .paths import is_path_safe, sanitize_name
from .updates import UpdateStatus, check_for_updates

__all__ = [
    "__version__",
    "AgentTarget",
    "CatalogHTTPError",
    "GitCloneError",
    "InstallReport",
    "InstallResult",
    "InstalledSkill",
    "PathTraversalError",
    "SkillLock",
    "SkillManager",
    "SkillsyncError",
    "SourceDiscoveryEmptyError",
    "UnknownAgentError",
    "UnsupportedScopeError",
    "UpdateStatus",
    "build_agents",
    "check_for_updates",
    "compute_content_hash",
    "detect_installed_agents",
    "get_agent",
    "install_skill_for_agent",
    "is_path_safe",
    "list_installed_skills",
    "sanitize_name",
]
