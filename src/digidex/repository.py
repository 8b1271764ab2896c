from __future__ import annotations

import asyncio
import itertools
import logging
import sqlite3
import time
from collections.abc import Sequence

from PIL import Image

from digidex.api import RemoteFetcher
from digidex.events import DataSourceStream
from digidex.images import ImageCache
from digidex.schemas import DataSource, Item, Snapshot, parse_image_url
from digidex.storage import LocalStore

logger = logging.getLogger(__name__)

CACHE_DURATION_SECONDS = 300.0


class Repository:
    """Answers catalogue queries from memory, the local store or the remote API.

    The snapshot and the data-source stream are only read or written while
    holding ``_lock``. Every write carries the ticket taken when its operation
    was issued, and a write older than the snapshot's current version is dropped,
    so a slow background refresh cannot overwrite a newer result.
    """

    def __init__(
        self,
        *,
        fetcher: RemoteFetcher,
        store: LocalStore,
        image_cache: ImageCache,
        cache_duration_seconds: float = CACHE_DURATION_SECONDS,
    ) -> None:
        if cache_duration_seconds < 0:
            raise ValueError("cache_duration_seconds must be >= 0")

        self.fetcher = fetcher
        self.store = store
        self.image_cache = image_cache
        self.cache_duration_seconds = cache_duration_seconds
        self.data_source = DataSourceStream()

        self._snapshot: Snapshot | None = None
        self._applied_version = 0
        self._tickets = itertools.count(1)
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    async def fetch_all(self) -> list[Item]:
        async with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and self._is_fresh(snapshot):
                self.data_source.emit(DataSource.CACHE)
                return list(snapshot.items)
            ticket = next(self._tickets)

        local_items = await self._read_local()
        if local_items:
            async with self._lock:
                self._apply(ticket, local_items)
                self.data_source.emit(DataSource.LOCAL)
                refresh_ticket = next(self._tickets)
            self._spawn_refresh(refresh_ticket)
            return local_items

        async with self._lock:
            self.data_source.emit(DataSource.REMOTE)
        items = await self.fetcher.fetch_all()
        await self._commit(ticket, items)
        return items

    async def fetch_by_level(self, level: str) -> list[Item]:
        async with self._lock:
            self.data_source.emit(DataSource.REMOTE)
        return await self.fetcher.fetch_by_level(level)

    async def fetch_by_name(self, name: str) -> list[Item]:
        async with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and snapshot.items:
                needle = name.lower()
                matches = [item for item in snapshot.items if needle in item.name.lower()]
                if matches:
                    self.data_source.emit(DataSource.CACHE)
                    return matches
            self.data_source.emit(DataSource.REMOTE)
        return await self.fetcher.fetch_by_name(name)

    async def get_image(self, item: Item) -> Image.Image | None:
        url = parse_image_url(item.image_url)
        if url is None:
            logger.info("image skipped name=%s reason=invalid_url", item.name)
            return None
        return await self.image_cache.resolve(url, item.name)

    async def refresh_data(self) -> list[Item]:
        async with self._lock:
            self._snapshot = None
            ticket = next(self._tickets)
            self.data_source.emit(DataSource.REMOTE)
        items = await self.fetcher.fetch_all()
        await self._commit(ticket, items)
        return items

    async def wait_for_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _read_local(self) -> list[Item]:
        try:
            return await self.store.fetch_all()
        except (sqlite3.Error, OSError):
            logger.warning("local read failed, falling through to remote", exc_info=True)
            return []

    async def _commit(self, ticket: int, items: Sequence[Item]) -> None:
        async with self._lock:
            if not self._apply(ticket, items):
                return
            try:
                await self.store.save_all(items)
            except (sqlite3.Error, OSError):
                logger.warning("local write failed count=%d", len(items), exc_info=True)

    def _is_fresh(self, snapshot: Snapshot) -> bool:
        return snapshot.age(time.monotonic()) < self.cache_duration_seconds

    def _apply(self, ticket: int, items: Sequence[Item]) -> bool:
        if ticket < self._applied_version:
            logger.debug(
                "snapshot write dropped ticket=%d applied_version=%d", ticket, self._applied_version
            )
            return False
        self._snapshot = Snapshot(items=tuple(items), captured_at=time.monotonic(), version=ticket)
        self._applied_version = ticket
        return True

    def _spawn_refresh(self, ticket: int) -> None:
        task = asyncio.create_task(self._refresh_in_background(ticket))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_in_background(self, ticket: int) -> None:
        try:
            items = await self.fetcher.fetch_all()
        except Exception:
            logger.exception("background refresh failed")
            return
        await self._commit(ticket, items)
        logger.info("background refresh done count=%d", len(items))
