# GitHub Client - REST client for repositories and issues using OAuth tokens.
# Created: 2026-09-11

from __future__ import annotations

import logging
from typing import Any

from myme.auth.oauth import OAuthManager
from myme.errors import PermanentError
from myme.net.retry import RequestExecutor, decode_json
from myme.sync.models import RemoteRepo
from myme.sync.queue import Mutation, MutationKind

logger = logging.getLogger(__name__)

_GITHUB_API = "https://api.github.com"
SERVICE = "github"
PER_PAGE = 100
MAX_PAGES = 20

_HEADERS = {
    "Accept": "application/vnd.github+json",
    "User-Agent": "myme-app",
    "X-GitHub-Api-Version": "2022-11-28",
}

# Fields the issues API accepts on update.
_ISSUE_FIELDS = ("title", "body", "state", "state_reason", "labels", "assignees", "milestone")


def issue_target(repo: str, number: int) -> str:
    """Queue target for an issue: ``owner/repo#number``."""
    return f"{repo}#{number}"


def parse_issue_target(target: str) -> tuple[str, int]:
    repo, sep, number = target.rpartition("#")
    if not sep or not repo or not number.isdigit():
        raise PermanentError(f"Invalid issue target: {target!r}")
    return repo, int(number)


class GitHubClient:
    """GitHub REST API v3 client."""

    def __init__(self, oauth: OAuthManager, executor: RequestExecutor | None = None):
        self._oauth = oauth
        self._executor = executor or RequestExecutor()

    async def _call(self, method: str, path: str, context: str, **kwargs: Any) -> Any:
        async def send(token: str) -> Any:
            resp = await self._executor.request(
                method,
                f"{_GITHUB_API}{path}",
                headers={**_HEADERS, "Authorization": f"Bearer {token}"},
                context=context,
                **kwargs,
            )
            return decode_json(resp, context)

        return await self._oauth.call_with_token(SERVICE, send)

    async def _paginate(self, path: str, context: str, params: dict[str, Any]) -> list[dict]:
        items: list[dict] = []
        for page in range(1, MAX_PAGES + 1):
            batch = await self._call(
                "GET", path, context, params={**params, "per_page": PER_PAGE, "page": page}
            )
            items.extend(batch or [])
            if not batch or len(batch) < PER_PAGE:
                break
        else:
            logger.warning("Stopped listing %s after %d pages", path, MAX_PAGES)
        return items

    async def list_repos(self) -> list[RemoteRepo]:
        """All repositories the user can access, most recently updated first."""
        data = await self._paginate("/user/repos", "github list repos", {"sort": "updated"})
        repos = [RemoteRepo.from_api(r) for r in data]
        logger.info("Listed %d GitHub repositories", len(repos))
        return repos

    async def list_issues(self, repo: str, state: str = "all") -> list[dict[str, Any]]:
        """Issues of ``owner/repo`` (pull requests excluded)."""
        data = await self._paginate(f"/repos/{repo}/issues", "github list issues", {"state": state})
        return [i for i in data if "pull_request" not in i]

    async def create_issue(
        self,
        repo: str,
        title: str,
        body: str | None = None,
        labels: list[str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title}
        if body is not None:
            payload["body"] = body
        if labels:
            payload["labels"] = labels
        issue = await self._call(
            "POST", f"/repos/{repo}/issues", "github create issue", json=payload
        )
        logger.info("Created issue %s#%s", repo, issue.get("number"))
        return issue

    async def update_issue(self, repo: str, number: int, **fields: Any) -> dict[str, Any]:
        """Update an issue. Only known fields that are not None are sent."""
        payload = {k: v for k, v in fields.items() if k in _ISSUE_FIELDS and v is not None}
        return await self._call(
            "PATCH", f"/repos/{repo}/issues/{number}", "github update issue", json=payload
        )

    async def apply(self, mutation: Mutation) -> Any:
        """Perform a queued GitHub mutation."""
        if mutation.kind is MutationKind.GITHUB_CREATE_ISSUE:
            params = mutation.params
            if not params.get("title"):
                raise PermanentError("Queued issue has no title")
            return await self.create_issue(
                mutation.target, params["title"], params.get("body"), params.get("labels")
            )
        if mutation.kind is MutationKind.GITHUB_UPDATE_ISSUE:
            repo, number = parse_issue_target(mutation.target)
            return await self.update_issue(repo, number, **mutation.params)
        raise PermanentError(f"GitHub cannot apply {mutation.kind.value}")
