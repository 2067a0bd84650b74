# Local git - discover working trees, read their state, clone and pull.
# Created: 2026-09-12
#
# Shells out to the git CLI. Everything here is blocking; callers run it
# through Dispatcher.run_blocking. Clone and pull poll a CancellationToken
# and terminate the git process when it fires.

from __future__ import annotations

import base64
import logging
import os
import shutil
import subprocess
from pathlib import Path

from myme.dispatch.cancel import CancellationToken
from myme.errors import ConfigError, OperationCancelled, PermanentError, TransientError
from myme.sync.models import LocalRepo

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30
POLL_INTERVAL = 0.2
DEFAULT_MAX_DEPTH = 5

# stderr fragments that mean the remote was unreachable rather than refusing us
_TRANSIENT_MARKERS = (
    "could not resolve host",
    "unable to access",
    "connection timed out",
    "connection refused",
    "operation timed out",
    "early eof",
    "the remote end hung up",
)


def _git_binary() -> str:
    git = shutil.which("git")
    if git is None:
        raise ConfigError("git executable not found on PATH")
    return git


def _env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _auth_args(token: str | None) -> list[str]:
    """``-c`` options that authenticate HTTPS requests without writing the token to disk."""
    if not token:
        return []
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return ["-c", f"http.extraHeader=Authorization: Basic {basic}"]


def _error_for(action: str, stderr: str) -> PermanentError | TransientError:
    detail = stderr.strip().splitlines()[-1] if stderr.strip() else "unknown error"
    message = f"git {action} failed: {detail}"
    if any(marker in stderr.lower() for marker in _TRANSIENT_MARKERS):
        return TransientError(message)
    return PermanentError(message)


def _run(args: list[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(
        [_git_binary(), *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=GIT_TIMEOUT,
        env=_env(),
    )


def _output(args: list[str], cwd: Path) -> str | None:
    result = _run(args, cwd)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def is_repository(path: Path) -> bool:
    return (path / ".git").exists()


def get_repository_info(path: Path) -> LocalRepo:
    """Read branch, origin URL, cleanliness and last commit of a working tree."""
    path = Path(path)
    if not is_repository(path):
        raise PermanentError(f"Not a git repository: {path}")

    status = _run(["status", "--porcelain", "--untracked-files=all"], path)
    if status.returncode != 0:
        raise _error_for("status", status.stderr)
    changes = [line for line in status.stdout.splitlines() if line.strip()]

    return LocalRepo(
        path=path,
        name=path.name,
        remote_url=_output(["remote", "get-url", "origin"], path),
        is_clean=not changes,
        branch=_output(["rev-parse", "--abbrev-ref", "HEAD"], path),
        uncommitted_changes=len(changes),
        last_commit=_output(["log", "-1", "--format=%h %s"], path),
    )


def discover_repositories(base: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> list[LocalRepo]:
    """Find working trees under *base*, at most *max_depth* levels down.

    Does not descend into a repository once found, and skips hidden
    directories. Unreadable directories and broken repositories are
    skipped with a debug log.
    """
    base = Path(base).expanduser()
    repos: list[LocalRepo] = []
    if not base.is_dir():
        logger.warning("Repository search path does not exist: %s", base)
        return repos

    def walk(path: Path, depth: int) -> None:
        if depth > max_depth:
            return
        if is_repository(path):
            try:
                repos.append(get_repository_info(path))
            except (PermanentError, TransientError, subprocess.SubprocessError) as e:
                logger.debug("Skipping %s: %s", path, e)
            return
        try:
            children = sorted(p for p in path.iterdir() if p.is_dir())
        except OSError as e:
            logger.debug("Cannot list %s: %s", path, e)
            return
        for child in children:
            if not child.name.startswith("."):
                walk(child, depth + 1)

    walk(base, 0)
    logger.info("Discovered %d local repositories under %s", len(repos), base)
    return repos


def _run_cancellable(
    action: str,
    args: list[str],
    cwd: Path,
    cancel: CancellationToken | None,
) -> str:
    """Run git, polling *cancel*; terminate the process if it fires."""
    if cancel is not None:
        cancel.raise_if_cancelled()
    proc = subprocess.Popen(
        [_git_binary(), *args],
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=_env(),
    )
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                logger.info("Cancelling git %s", action)
                proc.terminate()
                try:
                    proc.communicate(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.communicate()
                raise OperationCancelled(f"git {action} cancelled")

    if proc.returncode != 0:
        raise _error_for(action, stderr)
    return stdout


def clone_repository(
    url: str,
    dest: Path,
    token: str | None = None,
    cancel: CancellationToken | None = None,
) -> LocalRepo:
    """Clone *url* into *dest*. A cancelled or failed clone leaves no directory behind."""
    dest = Path(dest).expanduser()
    if dest.exists():
        raise PermanentError(f"Destination already exists: {dest}")
    dest.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Cloning %s into %s", url, dest)
    try:
        args = [*_auth_args(token), "clone", url, str(dest)]
        _run_cancellable("clone", args, dest.parent, cancel)
    except (OperationCancelled, PermanentError, TransientError):
        if dest.exists():
            shutil.rmtree(dest, ignore_errors=True)
        raise
    return get_repository_info(dest)


def pull(
    path: Path,
    token: str | None = None,
    cancel: CancellationToken | None = None,
) -> str:
    """Fast-forward-only pull of the current branch. Returns git's summary line."""
    path = Path(path)
    if not is_repository(path):
        raise PermanentError(f"Not a git repository: {path}")
    logger.info("Pulling %s", path)
    out = _run_cancellable("pull", [*_auth_args(token), "pull", "--ff-only"], path, cancel)
    lines = out.strip().splitlines()
    return lines[-1] if lines else ""
