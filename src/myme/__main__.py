"""MyMe command line.

Drives the same services the desktop shell uses: every command is
dispatched to the runtime thread and its result is polled from the
service's channel.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime

from rich.console import Console
from rich.table import Table

from myme import __version__
from myme.config import get_settings
from myme.dispatch.dispatcher import Message, Outcome
from myme.logging_setup import setup_logging
from myme.services import AppServices
from myme.services.base import BaseService

logger = logging.getLogger(__name__)
console = Console()

POLL_INTERVAL = 0.05
SERVICES = ("github", "google")


def wait_for(service: BaseService, timeout: float) -> Message | None:
    """Poll *service*'s channel until a Message arrives or *timeout* passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        msg = service.try_recv()
        if msg is not None:
            return msg
        time.sleep(POLL_INTERVAL)
    return None


def _report(msg: Message | None, what: str) -> bool:
    if msg is None:
        console.print(f"[red]{what}: timed out[/red]")
        return False
    if msg.outcome is Outcome.OK:
        return True
    console.print(f"[red]{what}: {msg.user_message}[/red]")
    if msg.error is not None:
        logger.debug("%s failed: %s", what, msg.error)
    return False


def _fmt_time(ts: int | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_auth(services: AppServices, args: argparse.Namespace) -> int:
    if not services.auth.authenticate(args.service, force=args.force):
        console.print(f"[yellow]Sign-in for {args.service} is already in progress[/yellow]")
        return 1
    console.print(f"Signing in to {args.service}...")
    msg = wait_for(services.auth, services.settings.oauth_callback_timeout + 30)
    if not _report(msg, f"Sign-in to {args.service}"):
        return 1
    result = msg.value
    who = f" as {result.email}" if result.email else ""
    how = "browser" if result.interactive else "stored credentials"
    console.print(f"[green]Signed in to {args.service}{who}[/green] ({how})")
    return 0


def cmd_signout(services: AppServices, args: argparse.Namespace) -> int:
    services.auth.sign_out(args.service)
    if not _report(wait_for(services.auth, 10), f"Sign-out from {args.service}"):
        return 1
    console.print(f"Signed out of {args.service}")
    return 0


def cmd_status(services: AppServices, args: argparse.Namespace) -> int:
    table = Table(title="Accounts")
    table.add_column("Service")
    table.add_column("Configured")
    table.add_column("Signed in")
    table.add_column("Account")
    table.add_column("Expires")
    for service, info in services.auth.status().items():
        signed_in = "no"
        if info["authenticated"]:
            signed_in = "expired" if info["expired"] else "yes"
        table.add_row(
            service,
            "yes" if info["configured"] else "no",
            signed_in,
            info.get("email") or "-",
            _fmt_time(info.get("expires_at")),
        )
    console.print(table)
    console.print(f"Queued changes: {services.offline_queue.pending_count()}")
    return 0


def cmd_repos(services: AppServices, args: argparse.Namespace) -> int:
    services.repos.refresh(force=args.refresh)
    msg = wait_for(services.repos, 120)
    if not _report(msg, "Repository refresh"):
        return 1
    snapshot = msg.value

    table = Table(title=f"Repositories ({len(snapshot.entries)})")
    table.add_column("Name")
    table.add_column("Where")
    table.add_column("Branch")
    table.add_column("Status")
    for entry in sorted(snapshot.entries, key=lambda e: e.display_name.lower()):
        local = entry.local
        status = "-"
        if local is not None:
            status = "clean" if local.is_clean else f"{local.uncommitted_changes} changed"
        table.add_row(
            entry.display_name,
            entry.state.value.replace("_", " "),
            (local.branch if local else None) or "-",
            status,
        )
    console.print(table)
    if snapshot.remote_error:
        console.print(f"[yellow]GitHub: {snapshot.remote_error}[/yellow]")
    return 0


def cmd_queue(services: AppServices, args: argparse.Namespace) -> int:
    if args.action == "list":
        services.queue.list_pending()
        msg = wait_for(services.queue, 10)
        if not _report(msg, "Queue listing"):
            return 1
        table = Table(title="Queued changes")
        table.add_column("Id", justify="right")
        table.add_column("Action")
        table.add_column("Target")
        table.add_column("Attempts", justify="right")
        table.add_column("Last error")
        for entry in msg.value:
            table.add_row(
                str(entry.id),
                entry.mutation.kind.value,
                entry.mutation.target,
                str(entry.attempts),
                entry.last_error or "",
            )
        console.print(table)
        return 0

    if args.action == "replay":
        services.queue.replay_now()
        msg = wait_for(services.queue, 120)
        if not _report(msg, "Queue replay"):
            return 1
        report = msg.value
        console.print(f"Applied {report.applied}, {report.remaining} still queued")
        for event in report.gave_up:
            console.print(
                f"[red]Gave up on {event.entry.mutation.kind.value} "
                f"for {event.entry.mutation.target}[/red]"
            )
        return 0

    services.queue.clear()
    msg = wait_for(services.queue, 10)
    if not _report(msg, "Queue clear"):
        return 1
    console.print(f"Removed {msg.value} queued change(s)")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="myme",
        description="MyMe sync layer: accounts, repositories and the offline queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  myme auth github             Sign in to GitHub (opens a browser)
  myme status                  Show accounts and queued changes
  myme repos --refresh         List local and GitHub repositories
  myme queue replay            Retry queued changes now
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_auth = sub.add_parser("auth", help="Sign in to a service")
    p_auth.add_argument("service", choices=SERVICES)
    p_auth.add_argument("--force", action="store_true", help="Always use the browser flow")
    p_auth.set_defaults(func=cmd_auth)

    p_signout = sub.add_parser("signout", help="Forget stored credentials")
    p_signout.add_argument("service", choices=SERVICES)
    p_signout.set_defaults(func=cmd_signout)

    p_status = sub.add_parser("status", help="Show sign-in state")
    p_status.set_defaults(func=cmd_status)

    p_repos = sub.add_parser("repos", help="List repositories")
    p_repos.add_argument("--refresh", action="store_true", help="Bypass the GitHub cache")
    p_repos.set_defaults(func=cmd_repos)

    p_queue = sub.add_parser("queue", help="Inspect or replay the offline queue")
    p_queue.add_argument("action", choices=("list", "replay", "clear"))
    p_queue.set_defaults(func=cmd_queue)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(level="DEBUG" if args.verbose else settings.log_level)

    services = AppServices(settings)
    services.start(replay=False)
    try:
        return args.func(services, args)
    except KeyboardInterrupt:
        console.print("Interrupted")
        return 130
    finally:
        services.shutdown()


if __name__ == "__main__":
    sys.exit(main())
