from __future__ import annotations

import asyncio
import os
import threading

import pytest
from PIL import Image

import digidex.storage.cache as cache_module
from conftest import FakeResponse, FakeSession, png_bytes
from digidex.schemas import Item
from digidex.storage import LocalStore, ResponseCache


def test_response_cache_ttl_behavior(monkeypatch, tmp_path) -> None:
    clock = {"now": 1_000.0}
    monkeypatch.setattr(cache_module.time, "time", lambda: clock["now"])

    cache = ResponseCache(tmp_path / "responses")
    key = "https://images.example.com/ttl.png"
    cache.store(key, b"payload", ttl_seconds=5)

    assert cache.get(key) == b"payload"

    clock["now"] = 1_006.0
    assert cache.get(key) is None


def test_response_cache_honors_cache_control(monkeypatch, tmp_path) -> None:
    clock = {"now": 1_000.0}
    monkeypatch.setattr(cache_module.time, "time", lambda: clock["now"])
    cache = ResponseCache(tmp_path / "responses")

    assert cache.store("a", b"aaa", headers={"cache-control": "no-store"}) is False
    assert cache.get("a") is None

    assert cache.store("b", b"bbb", headers={"Cache-Control": "public, max-age=10"}) is True
    clock["now"] = 1_009.0
    assert cache.get("b") == b"bbb"
    clock["now"] = 1_011.0
    assert cache.get("b") is None


def test_response_cache_reads_back_from_disk(tmp_path) -> None:
    ResponseCache(tmp_path / "responses").store("key", b"persisted")

    fresh = ResponseCache(tmp_path / "responses")

    assert fresh.memory_usage == 0
    assert fresh.get("key") == b"persisted"
    assert fresh.memory_usage == len(b"persisted")


def test_response_cache_evicts_oldest_over_capacity(tmp_path) -> None:
    cache = ResponseCache(tmp_path / "responses", memory_capacity=10, disk_capacity=10)

    cache.store("old", b"123456")
    old_path = next((tmp_path / "responses").glob("*.cache"))
    os.utime(old_path, (1, 1))
    cache.store("new", b"abcdef")

    assert cache.disk_usage() == 6
    assert cache.memory_usage == 6
    assert cache.get("old") is None
    assert cache.get("new") == b"abcdef"


def test_response_cache_clear(tmp_path) -> None:
    cache = ResponseCache(tmp_path / "responses")
    cache.store("one", b"1")
    cache.store("two", b"2")

    cache.clear()

    assert cache.get("one") is None
    assert cache.disk_usage() == 0
    assert list((tmp_path / "responses").iterdir()) == []


def _store(tmp_path, session: FakeSession | None = None, **kwargs: object) -> LocalStore:
    return LocalStore(
        tmp_path / "store.db",
        tmp_path / "images",
        session=session or FakeSession(),  # type: ignore[arg-type]
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_local_store_save_and_fetch_preserves_order(tmp_path, agumon, gabumon) -> None:
    store = _store(tmp_path, download_images=False)

    assert await store.fetch_all() == []
    await store.save_all([gabumon, agumon])

    assert await store.fetch_all() == [gabumon, agumon]


@pytest.mark.asyncio
async def test_local_store_downloads_images_after_save(tmp_path, agumon) -> None:
    session = FakeSession({agumon.image_url: FakeResponse(content=png_bytes("red"))})
    store = _store(tmp_path, session)

    await store.save_all([agumon])
    await store.drain()

    image = await store.image_for("Agumon")
    assert isinstance(image, Image.Image)
    assert image.size == (4, 4)
    assert (tmp_path / "images" / "agumon").exists()
    assert await store.image_for("agumon") is None


@pytest.mark.asyncio
async def test_local_store_skips_failed_and_invalid_downloads(tmp_path, agumon) -> None:
    broken = Item(name="Broken", img="not a url", level="Rookie")
    missing = Item(name="Missing", img="https://images.example.com/missing.jpg", level="Rookie")
    session = FakeSession(
        {
            agumon.image_url: FakeResponse(status_code=404, content=b""),
            missing.image_url: FakeResponse(content=b"not an image"),
        }
    )
    store = _store(tmp_path, session)

    await store.save_all([agumon, broken, missing])
    await store.drain()

    assert await store.fetch_all() == [agumon, broken, missing]
    assert await store.image_for("Agumon") is None
    assert await store.image_for("Missing") is None
    assert "not a url" not in session.urls


@pytest.mark.asyncio
async def test_save_all_replaces_rows_and_deletes_dropped_images(tmp_path, agumon, gabumon) -> None:
    session = FakeSession(
        {
            agumon.image_url: FakeResponse(content=png_bytes("red")),
            gabumon.image_url: FakeResponse(content=png_bytes("blue")),
        }
    )
    store = _store(tmp_path, session)

    await store.save_all([agumon, gabumon])
    await store.drain()
    assert (tmp_path / "images" / "gabumon").exists()

    await store.save_all([agumon])
    await store.drain()

    assert await store.fetch_all() == [agumon]
    assert not (tmp_path / "images" / "gabumon").exists()
    assert await store.image_for("Gabumon") is None
    assert await store.image_for("Agumon") is not None


@pytest.mark.asyncio
async def test_clear_all_removes_rows_and_images(tmp_path, agumon) -> None:
    session = FakeSession({agumon.image_url: FakeResponse(content=png_bytes())})
    store = _store(tmp_path, session)
    await store.save_all([agumon])
    await store.drain()

    await store.clear_all()

    assert await store.fetch_all() == []
    assert list((tmp_path / "images").iterdir()) == []


class _ParkedWrite:
    """Holds the first image write for ``name`` inside the worker thread until released."""

    def __init__(self, monkeypatch, name: str) -> None:
        self.name = name
        self.entered = threading.Event()
        self.resume = threading.Event()
        self.finished = threading.Event()
        self._original = LocalStore._write_image

        def write(store: LocalStore, name: str, data: bytes, generation: int | None = None) -> bool:
            return self._write(store, name, data, generation)

        monkeypatch.setattr(LocalStore, "_write_image", write)

    def _write(self, store: LocalStore, name: str, data: bytes, generation: int | None) -> bool:
        if name != self.name or self.entered.is_set():
            return self._original(store, name, data, generation)
        self.entered.set()
        self.resume.wait(timeout=5)
        try:
            return self._original(store, name, data, generation)
        finally:
            self.finished.set()

    async def release(self) -> None:
        self.resume.set()
        assert await asyncio.to_thread(self.finished.wait, 5)


@pytest.mark.asyncio
async def test_save_all_drops_image_write_already_running_for_previous_generation(
    tmp_path, monkeypatch, agumon, gabumon
) -> None:
    parked = _ParkedWrite(monkeypatch, "Gabumon")
    session = FakeSession(
        {
            agumon.image_url: FakeResponse(content=png_bytes("red")),
            gabumon.image_url: FakeResponse(content=png_bytes("blue")),
        }
    )
    store = _store(tmp_path, session)

    await store.save_all([agumon, gabumon])
    assert await asyncio.to_thread(parked.entered.wait, 5)
    await store.save_all([agumon])
    await parked.release()
    await store.drain()

    assert await store.fetch_all() == [agumon]
    assert not (tmp_path / "images" / "gabumon").exists()
    assert (tmp_path / "images" / "agumon").exists()


@pytest.mark.asyncio
async def test_clear_all_drops_image_write_already_running(
    tmp_path, monkeypatch, agumon
) -> None:
    parked = _ParkedWrite(monkeypatch, "Agumon")
    session = FakeSession({agumon.image_url: FakeResponse(content=png_bytes())})
    store = _store(tmp_path, session)

    await store.save_all([agumon])
    assert await asyncio.to_thread(parked.entered.wait, 5)
    await store.clear_all()
    await parked.release()
    await store.drain()

    assert await store.fetch_all() == []
    assert list((tmp_path / "images").iterdir()) == []


@pytest.mark.asyncio
async def test_save_image_requires_a_saved_row(tmp_path, agumon) -> None:
    store = _store(tmp_path, download_images=False)
    await store.save_all([agumon])

    assert await store.save_image("Agumon", Image.new("RGB", (2, 2))) is True
    assert await store.save_image("Ghostmon", Image.new("RGB", (2, 2))) is False
    assert not (tmp_path / "images" / "ghostmon").exists()
