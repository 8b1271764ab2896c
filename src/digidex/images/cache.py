from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections import OrderedDict
from typing import TYPE_CHECKING

import requests
from PIL import Image

from digidex.errors import InvalidRequest, TransportFailure
from digidex.schemas import parse_image_url
from digidex.storage.cache import ResponseCache

from .codec import decode_image, image_cost

if TYPE_CHECKING:
    from digidex.storage.local_store import LocalStore

logger = logging.getLogger(__name__)


class ImageCache:
    """Resolves item images through memory, the local store, the response cache, then network.

    Tier state is only touched while holding ``_lock``. Loads for one URL and
    name are coalesced onto a single in-flight task; other loads run concurrently.
    """

    def __init__(
        self,
        response_cache: ResponseCache,
        *,
        local_store: LocalStore | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 10.0,
        count_limit: int = 100,
        cost_limit: int = 50 * 1024 * 1024,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if count_limit < 1:
            raise ValueError("count_limit must be >= 1")
        if cost_limit < 0:
            raise ValueError("cost_limit must be >= 0")

        self.response_cache = response_cache
        self.local_store = local_store
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.count_limit = count_limit
        self.cost_limit = cost_limit

        self._memory: OrderedDict[str, tuple[Image.Image, int]] = OrderedDict()
        self._memory_cost = 0
        self._inflight: dict[tuple[str, str | None], asyncio.Task[Image.Image]] = {}
        self._generation = 0
        self._lock = asyncio.Lock()

    async def resolve(self, url: str, name: str | None = None) -> Image.Image:
        if parse_image_url(url) is None:
            raise InvalidRequest(f"The URL is invalid: {url!r}")

        async with self._lock:
            cached = self._memory_get(url)
            if cached is not None:
                logger.debug("image_cache hit tier=memory url=%s", url)
                return cached

            # Keyed by name too: only named loads consult the local store.
            key = (url, name or None)
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.create_task(self._load(url, name, self._generation))
                self._inflight[key] = task
                task.add_done_callback(lambda done: self._forget(key, done))

        return await asyncio.shield(task)

    async def clear(self) -> None:
        async with self._lock:
            # Loads already in flight still answer their callers but are not remembered.
            self._generation += 1
            self._inflight.clear()
            self._memory.clear()
            self._memory_cost = 0
        await asyncio.to_thread(self.response_cache.clear)
        logger.info("image_cache cleared generation=%d", self._generation)

    def __len__(self) -> int:
        return len(self._memory)

    async def _load(self, url: str, name: str | None, generation: int) -> Image.Image:
        if name and self.local_store is not None:
            image = await self._from_local_store(self.local_store, name)
            if image is not None:
                logger.debug("image_cache hit tier=local_store name=%s", name)
                return await self._remember(url, image, generation)

        data = await asyncio.to_thread(self.response_cache.get, url)
        if data is not None:
            image = decode_image(data)
            if image is not None:
                logger.debug("image_cache hit tier=response_cache url=%s", url)
                return await self._remember(url, image, generation)

        image, data, headers = await self._download(url)
        if generation == self._generation:
            await asyncio.to_thread(self.response_cache.store, url, data, headers=headers)
        logger.info("image_cache downloaded url=%s size=%d", url, len(data))
        return await self._remember(url, image, generation)

    async def _from_local_store(self, store: LocalStore, name: str) -> Image.Image | None:
        try:
            return await store.image_for(name)
        except (sqlite3.Error, OSError):
            logger.warning("image_cache local_store lookup failed name=%s", name, exc_info=True)
            return None

    async def _download(self, url: str) -> tuple[Image.Image, bytes, dict[str, str]]:
        try:
            response = await asyncio.to_thread(
                self.session.get, url, timeout=self.timeout_seconds
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"image request failed url={url}: {exc}", exc) from exc

        if not 200 <= response.status_code < 300:
            raise TransportFailure(
                f"bad server response url={url} status={response.status_code}"
            )

        image = decode_image(response.content)
        if image is None:
            raise TransportFailure(f"bad server response url={url} reason=undecodable")
        return image, response.content, dict(getattr(response, "headers", None) or {})

    async def _remember(self, url: str, image: Image.Image, generation: int) -> Image.Image:
        async with self._lock:
            if generation == self._generation:
                self._memory_set(url, image)
        return image

    def _forget(self, key: tuple[str, str | None], task: asyncio.Task[Image.Image]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _memory_get(self, url: str) -> Image.Image | None:
        entry = self._memory.get(url)
        if entry is None:
            return None
        self._memory.move_to_end(url)
        return entry[0]

    def _memory_set(self, url: str, image: Image.Image) -> None:
        cost = image_cost(image)
        if cost > self.cost_limit:
            return
        previous = self._memory.pop(url, None)
        if previous is not None:
            self._memory_cost -= previous[1]
        self._memory[url] = (image, cost)
        self._memory_cost += cost
        while len(self._memory) > self.count_limit or self._memory_cost > self.cost_limit:
            _, (_, evicted_cost) = self._memory.popitem(last=False)
            self._memory_cost -= evicted_cost
