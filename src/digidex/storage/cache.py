from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

_MAX_AGE_PATTERN = re.compile(r"max-age\s*=\s*(\d+)", re.IGNORECASE)


class ResponseCache:
    """Request-keyed HTTP body cache with a bounded memory layer and a bounded disk layer."""

    def __init__(
        self,
        directory: str | Path,
        *,
        memory_capacity: int = 50 * 1024 * 1024,
        disk_capacity: int = 100 * 1024 * 1024,
        default_ttl_seconds: int | None = None,
    ) -> None:
        if memory_capacity < 0:
            raise ValueError("memory_capacity must be >= 0")
        if disk_capacity < 0:
            raise ValueError("disk_capacity must be >= 0")
        if default_ttl_seconds is not None and default_ttl_seconds < 0:
            raise ValueError("default_ttl_seconds must be >= 0")

        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.memory_capacity = memory_capacity
        self.disk_capacity = disk_capacity
        self.default_ttl_seconds = default_ttl_seconds

        self._memory: OrderedDict[str, tuple[bytes, float | None]] = OrderedDict()
        self._memory_bytes = 0
        # Callers reach this object from worker threads via asyncio.to_thread.
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        digest = self._sha1_key(key)
        with self._lock:
            entry = self._memory.get(digest)
            if entry is not None:
                data, expire_at = entry
                if expire_at is not None and time.time() > expire_at:
                    self._drop_memory(digest)
                else:
                    self._memory.move_to_end(digest)
                    logger.debug("response_cache hit layer=memory key=%s", digest)
                    return data

            data_path = self._data_path(digest)
            if not data_path.exists():
                logger.debug("response_cache miss key=%s reason=not_found", digest)
                return None

            expire_at = self._read_expire_at(digest)
            if expire_at is not None and time.time() > expire_at:
                self._delete_paths(digest)
                logger.info("response_cache miss key=%s reason=expired", digest)
                return None

            data = data_path.read_bytes()
            self._remember(digest, data, expire_at)
            logger.debug("response_cache hit layer=disk key=%s", digest)
            return data

    def store(
        self,
        key: str,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        ttl_seconds: int | None = None,
    ) -> bool:
        if ttl_seconds is not None and ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")

        cache_control = _header(headers, "Cache-Control")
        if "no-store" in cache_control.lower():
            logger.info("response_cache skip key=%s reason=no_store", self._sha1_key(key))
            return False

        if ttl_seconds is None:
            ttl_seconds = _max_age(cache_control)
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds
        expire_at = time.time() + ttl_seconds if ttl_seconds is not None else None

        digest = self._sha1_key(key)
        with self._lock:
            self._remember(digest, data, expire_at)
            if len(data) > self.disk_capacity:
                logger.info("response_cache skip_disk key=%s size=%d", digest, len(data))
                return True

            self._data_path(digest).write_bytes(data)
            self._meta_path(digest).write_text(
                "" if expire_at is None else str(int(expire_at)), encoding="utf-8"
            )
            self._evict_disk(keep=digest)

        logger.info(
            "response_cache set key=%s size=%d ttl_seconds=%s", digest, len(data), ttl_seconds
        )
        return True

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            self._memory_bytes = 0
            removed = 0
            for path in self.directory.glob("*.cache"):
                path.unlink(missing_ok=True)
                removed += 1
            for path in self.directory.glob("*.meta"):
                path.unlink(missing_ok=True)
        logger.info("response_cache cleared removed=%d", removed)

    @property
    def memory_usage(self) -> int:
        return self._memory_bytes

    def disk_usage(self) -> int:
        return sum(path.stat().st_size for path in self.directory.glob("*.cache"))

    def _remember(self, digest: str, data: bytes, expire_at: float | None) -> None:
        if len(data) > self.memory_capacity:
            return
        self._drop_memory(digest)
        self._memory[digest] = (data, expire_at)
        self._memory_bytes += len(data)
        while self._memory_bytes > self.memory_capacity:
            oldest, _ = next(iter(self._memory.items()))
            self._drop_memory(oldest)

    def _drop_memory(self, digest: str) -> None:
        entry = self._memory.pop(digest, None)
        if entry is not None:
            self._memory_bytes -= len(entry[0])

    def _evict_disk(self, *, keep: str) -> None:
        entries = sorted(
            (path.stat().st_mtime, path) for path in self.directory.glob("*.cache")
        )
        total = sum(path.stat().st_size for _, path in entries)
        for _, path in entries:
            if total <= self.disk_capacity:
                break
            if path.stem == keep:
                continue
            total -= path.stat().st_size
            self._delete_paths(path.stem)
            logger.info("response_cache evict key=%s", path.stem)

    @staticmethod
    def _sha1_key(key: str) -> str:
        return hashlib.sha1(key.encode("utf-8")).hexdigest()

    def _data_path(self, digest: str) -> Path:
        return self.directory / f"{digest}.cache"

    def _meta_path(self, digest: str) -> Path:
        return self.directory / f"{digest}.meta"

    def _delete_paths(self, digest: str) -> None:
        for path in [self._data_path(digest), self._meta_path(digest)]:
            if path.exists():
                path.unlink()

    def _read_expire_at(self, digest: str) -> int | None:
        meta_path = self._meta_path(digest)
        if not meta_path.exists():
            return None

        raw = meta_path.read_text(encoding="utf-8").strip()
        if not raw:
            return None
        return int(raw)


def _header(headers: Mapping[str, str] | None, name: str) -> str:
    if not headers:
        return ""
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value or ""
    return ""


def _max_age(cache_control: str) -> int | None:
    match = _MAX_AGE_PATTERN.search(cache_control)
    if match is None:
        return None
    return int(match.group(1))
