import unittest

import httpx

from skillsync.client import CatalogSkill, SkillsCatalogClient
from skillsync.errors import CatalogHTTPError, SkillsyncError


def _client(handler) -> SkillsCatalogClient:
    client = SkillsCatalogClient(base_url="https://skills.example.com/")
    client._http = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)  # type: ignore[attr-defined]
    return client


class TestCatalogSearch(unittest.TestCase):
    def test_search_parses_skills(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "skills": [
                        {"id": "git-review", "name": "Git Review", "installs": 120, "topSource": "acme/skills"},
                        {"id": "bare", "installs": -3},
                        {"name": "missing id"},
                        "junk",
                    ]
                },
            )

        with _client(handler) as client:
            skills = client.search(" review ", limit=5)

        self.assertEqual(seen[0].url.path, "/api/search")
        self.assertEqual(seen[0].url.params["q"], "review")
        self.assertEqual(seen[0].url.params["limit"], "5")
        self.assertEqual([s.id for s in skills], ["git-review", "bare"])
        first = skills[0]
        self.assertEqual(first.installs, 120)
        self.assertEqual(first.repository_url, "https://github.com/acme/skills")
        self.assertEqual(first.url, "https://skills.example.com/acme/skills/git-review")
        self.assertEqual(first.install_command, "skillsync add acme/skills@git-review")
        self.assertEqual(skills[1].name, "bare")
        self.assertEqual(skills[1].installs, 0)
        self.assertIsNone(skills[1].repository_url)

    def test_short_query_skips_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with _client(handler) as client:
            self.assertEqual(client.search("a"), [])

    def test_popular_sends_sort(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"skills": []})

        with _client(handler) as client:
            self.assertEqual(client.popular(limit=10, sort="weekly"), [])
            with self.assertRaises(SkillsyncError):
                client.popular(sort="yearly")

        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].url.path, "/api/skills")
        self.assertEqual(seen[0].url.params["sort"], "weekly")


class TestCatalogErrors(unittest.TestCase):
    def test_http_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        with _client(handler) as client:
            with self.assertRaises(CatalogHTTPError) as ctx:
                client.search("docker")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(ctx.exception.body, "maintenance")

    def test_transport_error_becomes_skillsync_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        with _client(handler) as client:
            with self.assertRaises(SkillsyncError):
                client.search("docker")

    def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with _client(handler) as client:
            with self.assertRaises(SkillsyncError):
                client.popular()


class TestCatalogSkill(unittest.TestCase):
    def test_skill_without_source(self) -> None:
        skill = CatalogSkill(id="solo", name="Solo", installs=1, catalog_url="https://skills.sh")
        self.assertEqual(skill.url, "https://skills.sh/solo")
        self.assertEqual(skill.install_source, "solo")
        self.assertIsNone(skill.owner_repo)


if __name__ == "__main__":
    unittest.main()
