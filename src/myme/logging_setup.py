"""Console logging with Rich."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_configured = False

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn", "uvicorn.access", "uvicorn.error")


def setup_logging(level: str = "INFO") -> None:
    """Install a RichHandler on the root logger. Safe to call more than once."""
    global _configured

    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
