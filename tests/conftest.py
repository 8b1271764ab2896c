from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Sequence
from io import BytesIO

import pytest
import requests
from PIL import Image

from digidex.repository import Repository
from digidex.schemas import DataSource, Item


class FakeResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        content: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.text = content.decode("utf-8", errors="replace")


class FakeSession:
    """Routes ``get`` calls by URL; unknown URLs raise ``ConnectionError``."""

    def __init__(self, routes: dict[str, FakeResponse | Exception] | None = None) -> None:
        self.routes = dict(routes or {})
        self.headers: dict[str, str] = {}
        self.urls: list[str] = []

    def get(self, url: str, **kwargs: object) -> FakeResponse:
        _ = kwargs
        self.urls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(route, Exception):
            raise route
        return route

    def calls_to(self, url: str) -> int:
        return self.urls.count(url)


class FakeFetcher:
    def __init__(self, *results: list[Item] | Exception) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, str | None]] = []
        self.gates: list[asyncio.Event | None] = []

    async def fetch_all(self) -> list[Item]:
        return await self._next("all", None)

    async def fetch_by_name(self, name: str) -> list[Item]:
        return await self._next("name", name)

    async def fetch_by_level(self, level: str) -> list[Item]:
        return await self._next("level", level)

    async def _next(self, kind: str, value: str | None) -> list[Item]:
        self.calls.append((kind, value))
        if not self.results:
            raise RuntimeError("no queued results")
        result = self.results.pop(0)
        gate = self.gates.pop(0) if self.gates else None
        if gate is not None:
            await gate.wait()
        if isinstance(result, Exception):
            raise result
        return result


class FakeStore:
    def __init__(
        self,
        items: Sequence[Item] = (),
        *,
        fail_reads: bool = False,
        fail_writes: bool = False,
    ) -> None:
        self.items = list(items)
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.fetch_calls = 0
        self.saved: list[list[Item]] = []

    async def fetch_all(self) -> list[Item]:
        self.fetch_calls += 1
        if self.fail_reads:
            raise sqlite3.OperationalError("database is locked")
        return list(self.items)

    async def save_all(self, items: Sequence[Item]) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        self.saved.append(list(items))
        self.items = list(items)


class FakeImageCache:
    def __init__(self, result: Image.Image | Exception) -> None:
        self.result = result
        self.calls: list[tuple[str, str | None]] = []

    async def resolve(self, url: str, name: str | None = None) -> Image.Image:
        self.calls.append((url, name))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def make_repository(
    fetcher: FakeFetcher,
    store: FakeStore | None = None,
    image_cache: FakeImageCache | None = None,
) -> tuple[Repository, list[DataSource | None]]:
    repository = Repository(
        fetcher=fetcher,  # type: ignore[arg-type]
        store=store or FakeStore(),  # type: ignore[arg-type]
        image_cache=image_cache or FakeImageCache(Image.new("RGB", (1, 1))),  # type: ignore[arg-type]
    )
    observed: list[DataSource | None] = []
    repository.data_source.subscribe(observed.append)
    return repository, observed


def png_bytes(color: str = "orange", size: tuple[int, int] = (4, 4)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def json_response(payload: object, *, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code=status_code, content=json.dumps(payload).encode("utf-8"))


@pytest.fixture
def agumon() -> Item:
    return Item(name="Agumon", img="https://images.example.com/agumon.jpg", level="Rookie")


@pytest.fixture
def gabumon() -> Item:
    return Item(name="Gabumon", img="https://images.example.com/gabumon.jpg", level="Rookie")
