"""Front-end facing operations, each dispatched off the caller's thread.

Created: 2026-09-13

Usage:
    from myme.services import AppServices

    services = AppServices()
    services.start()

    services.repos.refresh()
    ...
    msg = services.repos.try_recv()   # poll from a UI timer
    if msg is not None and msg.ok:
        render(msg.value.entries)

    services.shutdown()
"""

from myme.services.context import AppServices

__all__ = ["AppServices"]
