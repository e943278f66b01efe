"""Sweep handlers for the SendSafe worker.

- expiry: expire overdue deliveries and purge files of terminal ones
"""

from sendsafe.worker.handlers.expiry import expire_overdue_handler, purge_terminal_handler

__all__ = [
    "expire_overdue_handler",
    "purge_terminal_handler",
]
