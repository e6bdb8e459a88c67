import tempfile
import unittest
from pathlib import Path

from skillsync.agents import build_agents
from skillsync.frontmatter import SkillMetadata
from skillsync.installer import install_skill_for_agent
from skillsync.listing import find_agent_match, list_installed_skills, loose_slug
from skillsync.lock import LockMetadata, SkillLock
from skillsync.repository import DiscoveredSkill


def _skill_md(name: str) -> str:
    return f"---\nname: {name}\ndescription: test skill\n---\n# {name}\n"


def _write(folder: Path, name: str) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "SKILL.md").write_text(_skill_md(name), encoding="utf-8")
    return folder


class TestMatching(unittest.TestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.base = Path(td.name)
        self.meta = SkillMetadata(name="Git Review", description="d")

    def test_loose_slug(self) -> None:
        self.assertEqual(loose_slug("Git  Review/Tool:x"), "git-reviewtoolx")

    def test_entry_name_wins(self) -> None:
        _write(self.base / "git-review", "Git Review")
        self.assertEqual(find_agent_match(self.base, "git-review", self.meta), "entry-name")

    def test_sanitized_and_loose_slug_matches(self) -> None:
        meta = SkillMetadata(name="Git_Review Tool", description="d")
        _write(self.base / "git_review-tool", "Git_Review Tool")
        self.assertEqual(find_agent_match(self.base, "some-other-dir", meta), "sanitized-name")
        meta = SkillMetadata(name="Git Review!", description="d")
        _write(self.base / "git-review!", "Git Review!")
        self.assertEqual(find_agent_match(self.base, "nope", meta), "loose-slug")

    def test_declared_name_match(self) -> None:
        _write(self.base / "renamed-by-user", "Git Review")
        self.assertEqual(find_agent_match(self.base, "git-review", self.meta), "declared-name")

    def test_no_match(self) -> None:
        _write(self.base / "unrelated", "Something Else")
        self.assertIsNone(find_agent_match(self.base, "git-review", self.meta))

    def test_traversal_names_never_match(self) -> None:
        self.assertIsNone(find_agent_match(self.base / "inner", "..", SkillMetadata(name="..", description="d")))


class TestListInstalledSkills(unittest.TestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        root = Path(td.name)
        self.home = root / "home"
        self.cwd = root / "project"
        self.home.mkdir()
        self.cwd.mkdir()
        (self.home / ".claude").mkdir()
        (self.home / ".cursor").mkdir()
        self.agents = build_agents(self.home)
        self.lock = SkillLock(home=self.home)
        src = _write(root / "src" / "review", "Git Review Before Commit")
        self.skill = DiscoveredSkill(
            name="Git Review Before Commit", description="test skill", path=src, raw_content=_skill_md("Git Review Before Commit")
        )

    def _list(self, **kwargs):
        return list_installed_skills(cwd=self.cwd, home=self.home, agents=self.agents, lock=self.lock, **kwargs)

    def test_round_trip_for_detected_agents(self) -> None:
        for name in ("claude-code", "cursor"):
            result = install_skill_for_agent(self.skill, self.agents[name], scope="global", cwd=self.cwd, home=self.home)
            self.assertTrue(result.success)
        self.lock.add_skill(
            self.skill.name,
            LockMetadata(source="acme/skills", source_type="github", source_url="https://github.com/acme/skills.git", skill_folder_hash="h"),
        )

        skills = self._list()
        self.assertEqual(len(skills), 1)
        listed = skills[0]
        self.assertEqual(listed.name, "Git Review Before Commit")
        self.assertEqual(listed.scope, "global")
        self.assertEqual(set(listed.agents), {"claude-code", "cursor"})
        self.assertEqual(listed.source, "acme/skills")
        self.assertEqual(listed.path, self.home / ".agents" / "skills" / "git-review-before-commit")

    def test_scope_and_agent_filters(self) -> None:
        install_skill_for_agent(self.skill, self.agents["cursor"], scope="project", cwd=self.cwd, home=self.home)
        self.assertEqual(self._list(scope="global"), [])
        project = self._list(scope="project")
        self.assertEqual([s.agents for s in project], [("cursor",)])
        filtered = self._list(scope="project", agent_filter=["claude-code"])
        self.assertEqual([s.agents for s in filtered], [()])

    def test_skills_without_valid_descriptor_are_skipped(self) -> None:
        broken = self.home / ".agents" / "skills" / "broken"
        broken.mkdir(parents=True)
        (broken / "SKILL.md").write_text("no front matter\n", encoding="utf-8")
        self.assertEqual(self._list(), [])

    def test_renamed_target_dirs_match_by_declared_name(self) -> None:
        canonical = self.home / ".agents" / "skills" / "git-review-before-commit"
        _write(canonical, "Git Review Before Commit")
        for agent_dir in (".claude/skills/my-review", ".cursor/skills/review-v1"):
            _write(self.home / agent_dir, "Git Review Before Commit")

        listed = self._list(scope="global")
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0].matched_by, {"claude-code": "declared-name", "cursor": "declared-name"})

    def test_undetected_agents_are_not_reported(self) -> None:
        install_skill_for_agent(self.skill, self.agents["codex"], scope="project", cwd=self.cwd, home=self.home)
        listed = self._list(scope="project")
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0].agents, ())


if __name__ == "__main__":
    unittest.main()
