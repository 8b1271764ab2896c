"""Storage layer for the HTTP response cache + SQLite item store."""

from .cache import ResponseCache
from .local_store import LocalStore

__all__ = ["LocalStore", "ResponseCache"]
