from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from .errors import UnknownAgentError
from .paths import home_dir

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentTarget:
    """
    A consumer program that reads skills from a conventional directory.

    `skills_dir` is relative to the project directory. `global_skills_dir` and
    `detect_paths` are relative to the home directory (absolute paths are used
    as-is). A target without `global_skills_dir` cannot be installed globally.
    """

    name: str
    display_name: str
    skills_dir: str
    global_skills_dir: str | None = None
    detect_paths: tuple[str, ...] = ()
    home: Path | None = field(default=None, compare=False)

    @property
    def supports_global(self) -> bool:
        return self.global_skills_dir is not None

    def _home(self, home: Path | None = None) -> Path:
        if home is not None:
            return Path(home)
        if self.home is not None:
            return self.home
        return home_dir()

    def global_dir(self, home: Path | None = None) -> Path | None:
        if self.global_skills_dir is None:
            return None
        return self._home(home) / Path(self.global_skills_dir).expanduser()

    def is_present(self) -> bool:
        root = self._home()
        for rel in self.detect_paths:
            try:
                if (root / Path(rel).expanduser()).exists():
                    return True
            except OSError:
                continue
        return False


# name, display name, project skills dir, global skills dir (home-relative), detection paths (home-relative)
_AGENT_TABLE: tuple[tuple[str, str, str, str | None, tuple[str, ...]], ...] = (
    ("adal", "AdaL", ".adal/skills", ".adal/skills", (".adal",)),
    ("amp", "Amp", ".agents/skills", ".config/agents/skills", (".config/amp",)),
    ("antigravity", "Antigravity", ".agent/skills", ".gemini/antigravity/skills", (".gemini/antigravity",)),
    ("augment", "Augment", ".augment/skills", ".augment/skills", (".augment",)),
    ("claude-code", "Claude Code", ".claude/skills", ".claude/skills", (".claude",)),
    ("cline", "Cline", ".cline/skills", ".cline/skills", (".cline",)),
    ("codebuddy", "CodeBuddy", ".codebuddy/skills", ".codebuddy/skills", (".codebuddy",)),
    ("codex", "Codex", ".codex/skills", ".codex/skills", (".codex",)),
    ("command-code", "Command Code", ".commandcode/skills", ".commandcode/skills", (".commandcode",)),
    ("continue", "Continue", ".continue/skills", ".continue/skills", (".continue",)),
    ("crush", "Crush", ".crush/skills", ".config/crush/skills", (".config/crush",)),
    ("cursor", "Cursor", ".cursor/skills", ".cursor/skills", (".cursor",)),
    ("droid", "Droid", ".factory/skills", ".factory/skills", (".factory",)),
    ("gemini-cli", "Gemini CLI", ".gemini/skills", ".gemini/skills", (".gemini",)),
    ("github-copilot", "GitHub Copilot", ".github/skills", ".copilot/skills", (".copilot",)),
    ("goose", "Goose", ".goose/skills", ".config/goose/skills", (".config/goose",)),
    ("iflow-cli", "iFlow CLI", ".iflow/skills", ".iflow/skills", (".iflow",)),
    ("junie", "Junie", ".junie/skills", ".junie/skills", (".junie",)),
    ("kilo", "Kilo Code", ".kilocode/skills", ".kilocode/skills", (".kilocode",)),
    ("kimi-cli", "Kimi Code CLI", ".agents/skills", ".config/agents/skills", (".kimi",)),
    ("kiro-cli", "Kiro CLI", ".kiro/skills", ".kiro/skills", (".kiro",)),
    ("kode", "Kode", ".kode/skills", ".kode/skills", (".kode",)),
    ("mcpjam", "MCPJam", ".mcpjam/skills", ".mcpjam/skills", (".mcpjam",)),
    ("mistral-vibe", "Mistral Vibe", ".vibe/skills", ".vibe/skills", (".vibe",)),
    ("mux", "Mux", ".mux/skills", ".mux/skills", (".mux",)),
    ("neovate", "Neovate", ".neovate/skills", ".neovate/skills", (".neovate",)),
    ("openclaude", "OpenClaude", ".openclaude/skills", ".openclaude/skills", (".openclaude",)),
    ("openclaw", "OpenClaw", "skills", ".openclaw/skills", (".openclaw",)),
    ("opencode", "OpenCode", ".opencode/skills", ".config/opencode/skills", (".config/opencode",)),
    ("openhands", "OpenHands", ".openhands/skills", ".openhands/skills", (".openhands",)),
    ("pi", "Pi", ".pi/skills", ".pi/agent/skills", (".pi/agent",)),
    ("pochi", "Pochi", ".pochi/skills", ".pochi/skills", (".pochi",)),
    ("qoder", "Qoder", ".qoder/skills", ".qoder/skills", (".qoder",)),
    ("qwen-code", "Qwen Code", ".qwen/skills", ".qwen/skills", (".qwen",)),
    ("roo", "Roo Code", ".roo/skills", ".roo/skills", (".roo",)),
    ("trae", "Trae", ".trae/skills", None, (".trae",)),
    ("trae-cn", "Trae CN", ".trae/skills", None, (".trae-cn",)),
    ("windsurf", "Windsurf", ".windsurf/skills", ".codeium/windsurf/skills", (".codeium/windsurf",)),
    ("zencoder", "Zencoder", ".zencoder/skills", ".zencoder/skills", (".zencoder",)),
)


def build_agents(home: Path | None = None) -> dict[str, AgentTarget]:
    return {
        name: AgentTarget(
            name=name,
            display_name=display_name,
            skills_dir=skills_dir,
            global_skills_dir=global_dir,
            detect_paths=detect_paths,
            home=home,
        )
        for name, display_name, skills_dir, global_dir, detect_paths in _AGENT_TABLE
    }


def get_agent(name: str, agents: dict[str, AgentTarget] | None = None) -> AgentTarget:
    table = agents if agents is not None else build_agents()
    try:
        return table[name]
    except KeyError as e:
        known = ", ".join(sorted(table))
        raise UnknownAgentError(f"Unknown agent {name!r}. Known agents: {known}") from e


def _safe_is_present(agent: AgentTarget) -> bool:
    try:
        return agent.is_present()
    except OSError as e:
        logger.debug("presence check for %s failed: %s", agent.name, e)
        return False


def detect_installed_agents(agents: dict[str, AgentTarget] | None = None) -> list[AgentTarget]:
    table = list((agents if agents is not None else build_agents()).values())
    if not table:
        return []
    with ThreadPoolExecutor(max_workers=min(16, len(table))) as pool:
        present = list(pool.map(_safe_is_present, table))
    detected = [agent for agent, ok in zip(table, present) if ok]
    logger.debug("detected agents: %s", ", ".join(a.name for a in detected) or "<none>")
    return detected
