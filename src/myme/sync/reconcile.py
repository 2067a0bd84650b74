# Repo reconciliation - merge local clones with GitHub repos by owner/repo.
# Created: 2026-09-08
#
# Pure functions, no I/O. Matching key is the normalized owner/repo of
# the URL; local clones without a GitHub remote are keyed by path. On a
# duplicate key the first item seen wins.

from __future__ import annotations

from collections.abc import Iterable

from myme.sync.models import LocalRepo, ReconciledEntry, RemoteRepo, RepoState

_HTTP_PREFIXES = ("https://github.com/", "http://github.com/", "ssh://git@github.com/")
_SCP_PREFIX = "git@github.com:"


def normalize_github_url(url: str | None) -> str | None:
    """Reduce a GitHub URL to ``owner/repo``.

    Accepts https/http URLs (with optional ``.git`` and trailing path),
    ``git@github.com:owner/repo[.git]`` and ``ssh://git@github.com/...``.
    Returns None for empty input, other hosts, or a missing owner or name.
    Case is preserved.
    """
    if not url:
        return None
    url = url.strip()
    if not url:
        return None

    if url.startswith(_SCP_PREFIX):
        rest = url[len(_SCP_PREFIX):]
        rest = rest.split("?", 1)[0].split("#", 1)[0]
        rest = rest.removesuffix(".git")
        if ".." in rest:
            return None
        owner, sep, name = rest.partition("/")
        if not sep or not owner or not name:
            return None
        return f"{owner}/{name}"

    for prefix in _HTTP_PREFIXES:
        if url.startswith(prefix):
            path = url[len(prefix):]
            path = path.split("?", 1)[0].split("#", 1)[0]
            segments = path.split("/")
            if len(segments) < 2:
                return None
            owner, name = segments[0], segments[1].removesuffix(".git")
            if not owner or not name:
                return None
            return f"{owner}/{name}"

    return None


def local_key(repo: LocalRepo) -> str:
    return normalize_github_url(repo.remote_url) or str(repo.path)


def remote_key(repo: RemoteRepo) -> str:
    return (
        normalize_github_url(repo.clone_url)
        or normalize_github_url(repo.ssh_url)
        or repo.full_name
    )


def reconcile(
    locals_: Iterable[LocalRepo],
    remotes: Iterable[RemoteRepo],
) -> list[ReconciledEntry]:
    """Merge local and remote repos into one entry per key.

    Every input appears in at most one entry, each entry has at least one
    side, and ``state`` reflects which sides are present. Output order
    is not significant.
    """
    matched: dict[str, tuple[LocalRepo | None, RemoteRepo | None]] = {}

    for loc in locals_:
        key = local_key(loc)
        existing_local, existing_remote = matched.get(key, (None, None))
        if existing_local is None:
            matched[key] = (loc, existing_remote)

    for rem in remotes:
        key = remote_key(rem)
        existing_local, existing_remote = matched.get(key, (None, None))
        if existing_remote is None:
            matched[key] = (existing_local, rem)

    entries = []
    for key, (loc, rem) in matched.items():
        if loc is not None and rem is not None:
            state, display = RepoState.BOTH, rem.full_name
        elif loc is not None:
            state, display = RepoState.LOCAL_ONLY, loc.name
        elif rem is not None:
            state, display = RepoState.REMOTE_ONLY, rem.full_name
        else:
            continue
        entries.append(
            ReconciledEntry(id=key, display_name=display, state=state, local=loc, remote=rem)
        )
    return entries


def mark_busy(
    entries: Iterable[ReconciledEntry],
    entry_id: str,
    busy: bool = True,
) -> list[ReconciledEntry]:
    """Return a copy of *entries* with the matching entry's busy flag set."""
    return [e.with_busy(busy) if e.id == entry_id else e for e in entries]
