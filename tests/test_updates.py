import shutil
import tempfile
import unittest
from pathlib import Path

from skillsync.agents import build_agents
from skillsync.errors import SkillsyncError
from skillsync.installer import install_skill_for_agent
from skillsync.lock import compute_content_hash
from skillsync.repository import discover_skills
from skillsync.updates import check_for_updates, compute_installed_skill_hash, get_skill_install_state

URL = "https://github.com/acme/skills.git"


def _skill_md(name: str, body: str = "Use with care.") -> str:
    return f"---\nname: {name}\ndescription: test skill\n---\n{body}\n"


class FakeSource:
    def __init__(self, repos: dict[str, dict[str, str]]) -> None:
        self.repos = repos
        self.cleaned: list[Path] = []

    def fetch(self, locator: str, ref: str | None = None) -> Path:
        if locator not in self.repos:
            raise SkillsyncError(f"cannot fetch {locator}")
        root = Path(tempfile.mkdtemp(prefix="fake-source-"))
        for rel, content in self.repos[locator].items():
            (root / rel).mkdir(parents=True, exist_ok=True)
            (root / rel / "SKILL.md").write_text(content, encoding="utf-8")
        return root

    def discover(self, root: Path, subpath: str | None = None):
        return discover_skills(root, subpath)

    def cleanup(self, path: Path) -> None:
        self.cleaned.append(path)
        shutil.rmtree(path, ignore_errors=True)


class TestUpdateDetection(unittest.TestCase):
    def setUp(self) -> None:
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        root = Path(td.name)
        self.home = root / "home"
        self.home.mkdir()
        self.content = _skill_md("lint")
        self.source = FakeSource({URL: {"skills/lint": self.content}})

        checkout = self.source.fetch(URL)
        try:
            skill = self.source.discover(checkout)[0]
            result = install_skill_for_agent(skill, build_agents(self.home)["claude-code"], home=self.home, cwd=root)
            self.assertTrue(result.success)
        finally:
            self.source.cleanup(checkout)

    def _check(self, name: str = "lint"):
        return check_for_updates(name, URL, source=self.source, home=self.home, skill_path="skills/lint")

    def test_installed_hash_matches_content(self) -> None:
        self.assertEqual(compute_installed_skill_hash("lint", home=self.home), compute_content_hash(self.content))

    def test_identical_content_has_no_update(self) -> None:
        status = self._check()
        self.assertFalse(status.has_update)
        self.assertEqual(status.update_type, "none")
        self.assertEqual(status.local_hash, status.remote_hash)

    def test_one_character_change_is_an_update(self) -> None:
        self.source.repos[URL]["skills/lint"] = _skill_md("lint", "Use with care!")
        status = self._check()
        self.assertTrue(status.has_update)
        self.assertEqual(status.update_type, "content")
        self.assertNotEqual(status.local_hash, status.remote_hash)

    def test_checkout_is_cleaned_up(self) -> None:
        self.source.cleaned.clear()
        self._check()
        self.assertEqual(len(self.source.cleaned), 1)
        self.assertFalse(self.source.cleaned[0].exists())

    def test_missing_local_side_is_not_an_update(self) -> None:
        status = self._check("not-installed")
        self.assertFalse(status.has_update)
        self.assertIsNone(status.local_hash)

    def test_unreachable_source_is_not_an_update(self) -> None:
        status = check_for_updates("lint", "https://github.com/acme/gone.git", source=self.source, home=self.home)
        self.assertFalse(status.has_update)
        self.assertIsNone(status.remote_hash)
        self.assertIsNotNone(status.local_hash)

    def test_install_state(self) -> None:
        kw = {"source": self.source, "home": self.home, "skill_path": "skills/lint"}
        self.assertEqual(get_skill_install_state("other", URL, **kw).status, "not_installed")
        self.assertEqual(get_skill_install_state("lint", URL, **kw).status, "installed")
        self.source.repos[URL]["skills/lint"] = _skill_md("lint", "v2")
        self.assertEqual(get_skill_install_state("lint", URL, **kw).status, "update_available")


if __name__ == "__main__":
    unittest.main()
