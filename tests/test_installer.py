import os
import shutil
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from skillsync.agents import build_agents
from skillsync.installer import (
    copy_directory,
    get_install_path,
    install_skill_for_agent,
    is_skill_installed,
    remove_canonical,
    uninstall_skill_for_agent,
)
from skillsync.repository import DiscoveredSkill


def _make_skill(root: Path, name: str = "Git Review Before Commit", body: str = "# Review\n") -> DiscoveredSkill:
    folder = root / "src-skill"
    folder.mkdir(parents=True, exist_ok=True)
    content = f"---\nname: {name}\ndescription: Review staged changes\n---\n{body}"
    (folder / "SKILL.md").write_text(content, encoding="utf-8")
    (folder / "README.md").write_text("readme", encoding="utf-8")
    (folder / "metadata.json").write_text("{}", encoding="utf-8")
    (folder / "_private.txt").write_text("hidden", encoding="utf-8")
    (folder / "scripts").mkdir(exist_ok=True)
    (folder / "scripts" / "run.sh").write_text("echo hi\n", encoding="utf-8")
    (folder / ".git").mkdir(exist_ok=True)
    (folder / ".git" / "HEAD").write_text("ref\n", encoding="utf-8")
    return DiscoveredSkill(name=name, description="Review staged changes", path=folder, raw_content=content)


class _Sandbox:
    def __init__(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        root = Path(self._td.name)
        self.home = root / "home"
        self.cwd = root / "project"
        self.work = root / "work"
        for p in (self.home, self.cwd, self.work):
            p.mkdir()
        self.agents = build_agents(self.home)

    def close(self) -> None:
        self._td.cleanup()


class TestInstallSkillForAgent(unittest.TestCase):
    def setUp(self) -> None:
        self.box = _Sandbox()
        self.addCleanup(self.box.close)
        self.skill = _make_skill(self.box.work)

    def _install(self, agent: str = "claude-code", **kwargs):
        kwargs.setdefault("cwd", self.box.cwd)
        kwargs.setdefault("home", self.box.home)
        return install_skill_for_agent(self.skill, self.box.agents[agent], **kwargs)

    def test_symlink_mode_links_agent_dir_to_canonical(self) -> None:
        result = self._install(scope="project")

        canonical = self.box.cwd / ".agents" / "skills" / "git-review-before-commit"
        agent_dir = self.box.cwd / ".claude" / "skills" / "git-review-before-commit"
        self.assertTrue(result.success)
        self.assertEqual(result.mode, "symlink")
        self.assertFalse(result.symlink_failed)
        self.assertEqual(result.path, agent_dir)
        self.assertEqual(result.canonical_path, canonical)
        self.assertTrue(agent_dir.is_symlink())
        self.assertFalse(os.path.isabs(os.readlink(agent_dir)))
        self.assertEqual(agent_dir.resolve(), canonical.resolve())
        self.assertEqual((agent_dir / "SKILL.md").read_text(encoding="utf-8"), self.skill.raw_content)

    def test_copy_excludes_readme_metadata_private_and_git(self) -> None:
        self._install(scope="project")
        canonical = self.box.cwd / ".agents" / "skills" / "git-review-before-commit"
        self.assertTrue((canonical / "SKILL.md").is_file())
        self.assertTrue((canonical / "scripts" / "run.sh").is_file())
        self.assertFalse((canonical / "README.md").exists())
        self.assertFalse((canonical / "metadata.json").exists())
        self.assertFalse((canonical / "_private.txt").exists())
        self.assertFalse((canonical / ".git").exists())

    def test_copy_mode_skips_canonical(self) -> None:
        result = self._install(scope="global", mode="copy")

        agent_dir = self.box.home / ".claude" / "skills" / "git-review-before-commit"
        self.assertTrue(result.success)
        self.assertEqual(result.mode, "copy")
        self.assertIsNone(result.canonical_path)
        self.assertTrue(agent_dir.is_dir())
        self.assertFalse(agent_dir.is_symlink())
        self.assertFalse((self.box.home / ".agents" / "skills" / "git-review-before-commit").exists())

    def test_symlink_failure_falls_back_to_copy(self) -> None:
        with patch("skillsync.installer.os.symlink", side_effect=OSError("not permitted")):
            result = self._install(scope="global")

        agent_dir = self.box.home / ".claude" / "skills" / "git-review-before-commit"
        self.assertTrue(result.success)
        self.assertEqual(result.mode, "symlink")
        self.assertTrue(result.symlink_failed)
        self.assertEqual(result.canonical_path, self.box.home / ".agents" / "skills" / "git-review-before-commit")
        self.assertTrue(agent_dir.is_dir())
        self.assertFalse(agent_dir.is_symlink())
        self.assertTrue((agent_dir / "SKILL.md").is_file())
        self.assertTrue((agent_dir / "scripts" / "run.sh").is_file())
        self.assertFalse((agent_dir / "README.md").exists())
        self.assertFalse((agent_dir / "_private.txt").exists())
        self.assertFalse((agent_dir / ".git").exists())

        shutil.rmtree(result.canonical_path)
        self.assertEqual((agent_dir / "SKILL.md").read_text(encoding="utf-8"), self.skill.raw_content)
        self.assertTrue((agent_dir / "scripts" / "run.sh").is_file())

    def test_agent_skills_dir_linked_to_canonical_root(self) -> None:
        canonical_root = self.box.home / ".agents" / "skills"
        canonical_root.mkdir(parents=True)
        (self.box.home / ".claude").mkdir()
        os.symlink(canonical_root, self.box.home / ".claude" / "skills")

        result = self._install(scope="global")

        canonical = canonical_root / "git-review-before-commit"
        self.assertTrue(result.success)
        self.assertFalse(result.symlink_failed)
        self.assertFalse(canonical.is_symlink())
        self.assertEqual((canonical / "SKILL.md").read_text(encoding="utf-8"), self.skill.raw_content)
        self.assertTrue((canonical / "scripts" / "run.sh").is_file())

        agent = self.box.agents["claude-code"]
        kw = {"scope": "global", "cwd": self.box.cwd, "home": self.box.home}
        self.assertFalse(uninstall_skill_for_agent(self.skill.name, agent, **kw))
        self.assertTrue((canonical / "SKILL.md").is_file())

    def test_reinstall_is_idempotent(self) -> None:
        first = self._install(scope="project")
        second = self._install(scope="project")
        self.assertTrue(first.success and second.success)
        agent_base = self.box.cwd / ".claude" / "skills"
        self.assertEqual([p.name for p in agent_base.iterdir()], ["git-review-before-commit"])
        self.assertTrue((agent_base / "git-review-before-commit").is_symlink())

    def test_replaces_stale_directory_with_link(self) -> None:
        stale = self.box.cwd / ".claude" / "skills" / "git-review-before-commit"
        stale.mkdir(parents=True)
        (stale / "old.txt").write_text("old", encoding="utf-8")
        result = self._install(scope="project")
        self.assertTrue(result.success)
        self.assertTrue(stale.is_symlink())
        self.assertFalse((stale / "old.txt").exists())

    def test_agent_sharing_canonical_dir_gets_no_link(self) -> None:
        result = self._install("amp", scope="project")
        canonical = self.box.cwd / ".agents" / "skills" / "git-review-before-commit"
        self.assertTrue(result.success)
        self.assertFalse(result.symlink_failed)
        self.assertEqual(result.path, canonical)
        self.assertTrue(canonical.is_dir())
        self.assertFalse(canonical.is_symlink())

    def test_unsupported_global_scope_is_a_failure_result(self) -> None:
        result = self._install("trae", scope="global")
        self.assertFalse(result.success)
        self.assertIsNone(result.path)
        self.assertIn("does not support global", result.error or "")

    def test_concurrent_installs_share_one_canonical_copy(self) -> None:
        names = ["claude-code", "cursor", "codex", "windsurf", "cline"]
        results = {}

        def run(name: str) -> None:
            results[name] = self._install(name, scope="global")

        threads = [threading.Thread(target=run, args=(n,)) for n in names]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertTrue(all(r.success for r in results.values()))
        canonical = self.box.home / ".agents" / "skills" / "git-review-before-commit"
        for r in results.values():
            self.assertEqual(r.path.resolve(), canonical.resolve())


class TestHelpers(unittest.TestCase):
    def setUp(self) -> None:
        self.box = _Sandbox()
        self.addCleanup(self.box.close)

    def test_is_installed_and_uninstall(self) -> None:
        skill = _make_skill(self.box.work, name="lint")
        agent = self.box.agents["cursor"]
        kw = {"scope": "project", "cwd": self.box.cwd, "home": self.box.home}
        self.assertFalse(is_skill_installed("lint", agent, **kw))
        install_skill_for_agent(skill, agent, **kw)
        self.assertTrue(is_skill_installed("lint", agent, **kw))
        self.assertEqual(get_install_path("lint", agent, **kw), self.box.cwd / ".cursor" / "skills" / "lint")

        self.assertTrue(uninstall_skill_for_agent("lint", agent, **kw))
        self.assertFalse(is_skill_installed("lint", agent, **kw))
        self.assertFalse(uninstall_skill_for_agent("lint", agent, **kw))
        self.assertTrue(remove_canonical("lint", **kw))
        self.assertFalse(remove_canonical("lint", **kw))

    def test_copy_directory_dereferences_links(self) -> None:
        src = self.box.work / "src"
        (src / "real").mkdir(parents=True)
        (src / "real" / "f.txt").write_text("x", encoding="utf-8")
        os.symlink(src / "real", src / "linked")
        dest = self.box.work / "dest"
        copy_directory(src, dest)
        self.assertTrue((dest / "linked" / "f.txt").is_file())
        self.assertFalse((dest / "linked").is_symlink())


if __name__ == "__main__":
    unittest.main()
