"""SendSafe - secure document delivery.

Senders upload files; recipients reach them through time-boxed links that
are limited in views and downloads, optionally gated by a one-time access
code sent by email. Every access is recorded for compliance reporting.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
