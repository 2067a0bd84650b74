"""MyMe sync layer.

OAuth credentials, repo reconciliation, resilient HTTP, an offline mutation
queue and a non-blocking operation dispatcher for the MyMe desktop shell.
"""

__version__ = "0.4.0"
