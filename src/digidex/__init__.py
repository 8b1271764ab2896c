"""Digidex: a catalogue client with memory, SQLite and HTTP image caching."""

from .config import AppConfig, load_config
from .repository import Repository
from .schemas import DataSource, Item, Snapshot

__all__ = [
    "AppConfig",
    "DataSource",
    "Item",
    "Repository",
    "Snapshot",
    "load_config",
]
