# Tests for integrations/github.py
# Created: 2026-09-11

import json

import httpx
import pytest

from myme.auth.oauth import OAuthManager
from myme.auth.providers import GitHubProvider
from myme.errors import PermanentError, TokenNotFound
from myme.integrations.github import (
    PER_PAGE,
    GitHubClient,
    issue_target,
    parse_issue_target,
)
from myme.sync.queue import Mutation, MutationKind


@pytest.fixture
def make_github(token_store, make_executor, make_tokens):
    def factory(handler, signed_in=True) -> GitHubClient:
        executor = make_executor(handler, max_retries=0)
        if signed_in:
            token_store.store("github", make_tokens(access_token="gh-token"))
        provider = GitHubProvider("id", "secret", executor=executor)
        oauth = OAuthManager(token_store, {"github": provider})
        return GitHubClient(oauth, executor)

    return factory


def _repo(i):
    return {
        "full_name": f"me/repo{i}",
        "name": f"repo{i}",
        "clone_url": f"https://github.com/me/repo{i}.git",
        "private": i % 2 == 0,
    }


class TestIssueTarget:
    def test_round_trip(self):
        assert parse_issue_target(issue_target("me/app", 12)) == ("me/app", 12)

    @pytest.mark.parametrize("target", ["me/app", "me/app#", "#3", "me/app#abc"])
    def test_invalid(self, target):
        with pytest.raises(PermanentError):
            parse_issue_target(target)


class TestListRepos:
    async def test_paginates_until_short_page(self, make_github):
        pages = []

        def handler(request):
            assert request.headers["authorization"] == "Bearer gh-token"
            assert request.headers["accept"] == "application/vnd.github+json"
            assert request.headers["user-agent"] == "myme-app"
            page = int(request.url.params["page"])
            pages.append(page)
            count = PER_PAGE if page == 1 else 3
            start = (page - 1) * PER_PAGE
            return httpx.Response(200, json=[_repo(start + i) for i in range(count)])

        repos = await make_github(handler).list_repos()
        assert pages == [1, 2]
        assert len(repos) == PER_PAGE + 3
        assert repos[0].full_name == "me/repo0"
        assert repos[0].private is True

    async def test_empty(self, make_github):
        repos = await make_github(lambda request: httpx.Response(200, json=[])).list_repos()
        assert repos == []

    async def test_not_signed_in(self, make_github):
        client = make_github(lambda request: httpx.Response(200, json=[]), signed_in=False)
        with pytest.raises(TokenNotFound):
            await client.list_repos()


class TestIssues:
    async def test_list_excludes_pull_requests(self, make_github):
        def handler(request):
            assert request.url.path == "/repos/me/app/issues"
            return httpx.Response(
                200,
                json=[{"number": 1, "title": "bug"}, {"number": 2, "pull_request": {}}],
            )

        issues = await make_github(handler).list_issues("me/app")
        assert [i["number"] for i in issues] == [1]

    async def test_apply_create(self, make_github):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"number": 7, "title": "New"})

        mutation = Mutation(
            MutationKind.GITHUB_CREATE_ISSUE, "me/app", {"title": "New", "labels": ["todo"]}
        )
        issue = await make_github(handler).apply(mutation)
        assert issue["number"] == 7
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"title": "New", "labels": ["todo"]}

    async def test_apply_create_without_title(self, make_github):
        client = make_github(lambda request: httpx.Response(201, json={}))
        with pytest.raises(PermanentError):
            await client.apply(Mutation(MutationKind.GITHUB_CREATE_ISSUE, "me/app", {}))

    async def test_apply_update_sends_known_fields_only(self, make_github):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"number": 3, "state": "closed"})

        mutation = Mutation(
            MutationKind.GITHUB_UPDATE_ISSUE,
            "me/app#3",
            {"state": "closed", "labels": ["done"], "bogus": True, "body": None},
        )
        await make_github(handler).apply(mutation)
        assert requests[0].method == "PATCH"
        assert requests[0].url.path == "/repos/me/app/issues/3"
        assert json.loads(requests[0].content) == {"state": "closed", "labels": ["done"]}

    async def test_validation_error_is_permanent(self, make_github):
        client = make_github(lambda request: httpx.Response(422, json={"message": "invalid"}))
        with pytest.raises(PermanentError):
            await client.update_issue("me/app", 3, state="nope")

    async def test_gmail_kind_is_rejected(self, make_github):
        client = make_github(lambda request: httpx.Response(200))
        with pytest.raises(PermanentError):
            await client.apply(Mutation(MutationKind.GMAIL_STAR, "m1"))
