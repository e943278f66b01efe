"""SendSafe worker service.

Periodic sweeper that:
- Expires active deliveries whose expiry time has passed
- Erases the files of expired and revoked deliveries

Usage:
    # Run as module
    python -m sendsafe.worker

    # Or via the console script
    sendsafe-worker
"""

from sendsafe.worker.main import Worker, run

__all__ = ["Worker", "run"]
