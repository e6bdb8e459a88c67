"""SKILL.md front-matter parsing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkillMetadata:
    name: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)
    raw_content: str = ""


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text

    end_idx = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            end_idx = i
            break

    if end_idx is None:
        return {}, text

    yaml_text = "\n".join(lines[1:end_idx])
    body = "\n".join(lines[end_idx + 1 :])

    try:
        data = yaml.safe_load(yaml_text) or {}
    except yaml.YAMLError:
        return {}, text

    if not isinstance(data, dict):
        return {}, body

    return data, body


def _required_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def parse_skill_text(text: str) -> SkillMetadata | None:
    data, _ = split_frontmatter(text)
    name = _required_str(data, "name")
    description = _required_str(data, "description")
    if name is None or description is None:
        return None
    metadata = data.get("metadata")
    return SkillMetadata(
        name=name,
        description=description,
        metadata=metadata if isinstance(metadata, dict) else {},
        raw_content=text,
    )


def parse_skill_md(path: Path) -> SkillMetadata | None:
    """Return name/description from a SKILL.md, or None when it is unreadable or incomplete."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("could not read %s: %s", path, e)
        return None
    return parse_skill_text(text)
