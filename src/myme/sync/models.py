"""Repository data models.

Created: 2026-09-08

Local clones discovered on disk, repositories listed from GitHub, and
the merged entries the repos view renders. Merged entries are derived
on every refresh and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

# ============================================================================
# Enums
# ============================================================================


class RepoState(str, Enum):
    """Where a repository exists."""

    LOCAL_ONLY = "local_only"  # Clone with no matching GitHub repo
    REMOTE_ONLY = "remote_only"  # GitHub repo not cloned locally
    BOTH = "both"


# ============================================================================
# Data Models
# ============================================================================


@dataclass
class LocalRepo:
    """A git working tree found on disk."""

    path: Path
    name: str
    remote_url: str | None = None
    is_clean: bool = True
    branch: str | None = None
    uncommitted_changes: int = 0
    last_commit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "remote_url": self.remote_url,
            "is_clean": self.is_clean,
            "branch": self.branch,
            "uncommitted_changes": self.uncommitted_changes,
            "last_commit": self.last_commit,
        }


@dataclass
class RemoteRepo:
    """A repository as listed by the GitHub API."""

    full_name: str
    name: str = ""
    clone_url: str | None = None
    ssh_url: str | None = None
    html_url: str | None = None
    private: bool = False
    default_branch: str | None = None
    description: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteRepo:
        return cls(
            full_name=data["full_name"],
            name=data.get("name", ""),
            clone_url=data.get("clone_url"),
            ssh_url=data.get("ssh_url"),
            html_url=data.get("html_url"),
            private=bool(data.get("private", False)),
            default_branch=data.get("default_branch"),
            description=data.get("description"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "name": self.name,
            "clone_url": self.clone_url,
            "ssh_url": self.ssh_url,
            "html_url": self.html_url,
            "private": self.private,
            "default_branch": self.default_branch,
            "description": self.description,
        }


@dataclass
class ReconciledEntry:
    """One row of the merged repository list.

    ``id`` is the normalized ``owner/repo`` when known, otherwise the
    local path.
    """

    id: str
    display_name: str
    state: RepoState
    local: LocalRepo | None = None
    remote: RemoteRepo | None = None
    busy: bool = False

    def with_busy(self, busy: bool) -> ReconciledEntry:
        return replace(self, busy=busy)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "state": self.state.value,
            "local": self.local.to_dict() if self.local else None,
            "remote": self.remote.to_dict() if self.remote else None,
            "busy": self.busy,
        }


@dataclass
class RepoSnapshot:
    """Result of a repos refresh: the merged list plus partial failures."""

    entries: list[ReconciledEntry] = field(default_factory=list)
    remote_error: str | None = None
