from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Coroutine, Sequence
from pathlib import Path
from typing import Any

import requests
from PIL import Image

from digidex.images.codec import decode_image, encode_jpeg
from digidex.schemas import Item, image_id, parse_image_url

logger = logging.getLogger(__name__)


class LocalStore:
    """SQLite copy of the last full catalogue plus one JPEG per item on disk.

    ``save_all`` replaces the whole collection: rows and images belonging to the
    previous generation are deleted before the new rows are written. Images for
    the new rows are downloaded in the background and never delay the save.
    """

    def __init__(
        self,
        db_path: str | Path,
        image_dir: str | Path,
        *,
        session: requests.Session | None = None,
        download_images: bool = True,
        timeout_seconds: float = 10.0,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.image_dir = Path(image_dir)
        self.image_dir.mkdir(parents=True, exist_ok=True)
        self.session = session or requests.Session()
        self.download_images = download_images
        self.timeout_seconds = timeout_seconds
        self._downloads: set[asyncio.Task[None]] = set()
        self._write_lock = threading.Lock()
        self._generation = 0
        self._init_schema()

    async def save_all(self, items: Sequence[Item]) -> None:
        self._cancel_downloads()
        snapshot = list(items)
        generation = await asyncio.to_thread(self._replace_rows, snapshot)
        logger.info("local_store saved count=%d generation=%d", len(snapshot), generation)

        if not self.download_images:
            return
        for item in snapshot:
            if parse_image_url(item.image_url) is None or image_id(item.name) is None:
                continue
            self._spawn(self._download_image(item, generation))

    async def fetch_all(self) -> list[Item]:
        return await asyncio.to_thread(self._list_items)

    async def image_for(self, name: str) -> Image.Image | None:
        return await asyncio.to_thread(self._load_image, name)

    async def save_image(self, name: str, image: Image.Image) -> bool:
        """Store ``image`` for a saved item; returns False when no row has that name."""
        return await asyncio.to_thread(self._write_image, name, encode_jpeg(image))

    async def clear_all(self) -> None:
        self._cancel_downloads()
        await asyncio.to_thread(self._delete_rows)
        logger.info("local_store cleared")

    async def drain(self) -> None:
        """Wait for the image downloads started by the last ``save_all``."""
        while self._downloads:
            await asyncio.gather(*list(self._downloads), return_exceptions=True)

    def image_path(self, name: str) -> Path | None:
        identifier = image_id(name)
        if identifier is None:
            return None
        return self.image_dir / identifier

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._downloads.add(task)
        task.add_done_callback(self._downloads.discard)

    def _cancel_downloads(self) -> None:
        for task in list(self._downloads):
            task.cancel()

    async def _download_image(self, item: Item, generation: int) -> None:
        try:
            response = await asyncio.to_thread(
                self.session.get, item.image_url, timeout=self.timeout_seconds
            )
        except requests.RequestException as exc:
            logger.warning(
                "image download failed name=%s url=%s error=%s", item.name, item.image_url, exc
            )
            return

        if not 200 <= response.status_code < 300:
            logger.warning(
                "image download failed name=%s url=%s status=%s",
                item.name,
                item.image_url,
                response.status_code,
            )
            return

        image = decode_image(response.content)
        if image is None:
            logger.warning("image download undecodable name=%s url=%s", item.name, item.image_url)
            return

        try:
            await asyncio.to_thread(self._write_image, item.name, encode_jpeg(image), generation)
        except (sqlite3.Error, OSError):
            logger.exception("failed to save image name=%s", item.name)

    def _replace_rows(self, items: list[Item]) -> int:
        payloads = [
            (position, item.name, item.image_url, item.level)
            for position, item in enumerate(items)
        ]
        with self._write_lock:
            self._generation += 1
            with self._connect() as conn:
                previous = [row["name"] for row in conn.execute("SELECT name FROM items")]
                for name in previous:
                    self._delete_image(name)
                conn.execute("DELETE FROM items")
                if payloads:
                    conn.executemany(
                        "INSERT INTO items (position, name, img, level) VALUES (?, ?, ?, ?)",
                        payloads,
                    )
            return self._generation

    def _list_items(self) -> list[Item]:
        query = """
        SELECT name, img, level
        FROM items
        ORDER BY position ASC, id ASC
        """
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()

        return [self._row_to_item(row) for row in rows]

    def _load_image(self, name: str) -> Image.Image | None:
        with self._connect() as conn:
            row = conn.execute("SELECT name FROM items WHERE name = ? LIMIT 1", (name,)).fetchone()
        if row is None:
            return None

        path = self.image_path(row["name"])
        if path is None or not path.exists():
            return None
        return decode_image(path.read_bytes())

    def _write_image(self, name: str, data: bytes, generation: int | None = None) -> bool:
        path = self.image_path(name)
        if path is None:
            return False
        # Rows and image files change together under _write_lock.
        with self._write_lock:
            if generation is not None and generation != self._generation:
                logger.debug(
                    "local_store image skipped name=%s generation=%d current=%d",
                    name,
                    generation,
                    self._generation,
                )
                return False
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM items WHERE name = ? LIMIT 1", (name,)
                ).fetchone()
            if row is None:
                logger.debug("local_store image skipped name=%s reason=no_row", name)
                return False
            self.image_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        logger.info("local_store image saved name=%s path=%s", name, path)
        return True

    def _delete_rows(self) -> None:
        with self._write_lock:
            self._generation += 1
            with self._connect() as conn:
                for row in conn.execute("SELECT name FROM items").fetchall():
                    self._delete_image(row["name"])
                conn.execute("DELETE FROM items")

    def _delete_image(self, name: str) -> None:
        path = self.image_path(name)
        if path is not None and path.exists():
            path.unlink()

    def _init_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        schema = schema_path.read_text(encoding="utf-8")
        with self._connect() as conn:
            conn.executescript(schema)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        return Item(name=row["name"], img=row["img"], level=row["level"])
