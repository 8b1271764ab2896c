from __future__ import annotations

from dataclasses import dataclass

import requests

from digidex.api import RemoteFetcher
from digidex.config import AppConfig
from digidex.images import ImageCache
from digidex.repository import Repository
from digidex.storage import LocalStore, ResponseCache


@dataclass(slots=True)
class Services:
    fetcher: RemoteFetcher
    store: LocalStore
    response_cache: ResponseCache
    image_cache: ImageCache
    repository: Repository


def build_services(config: AppConfig, *, session: requests.Session | None = None) -> Services:
    session = session or requests.Session()
    fetcher = RemoteFetcher.from_config(config.api, session=session)
    store = LocalStore(
        config.storage.db_path,
        config.storage.image_dir,
        session=session,
        download_images=config.storage.download_images,
        timeout_seconds=config.api.timeout_seconds,
    )
    response_cache = ResponseCache(
        config.images.cache_dir,
        memory_capacity=config.images.response_memory_bytes,
        disk_capacity=config.images.response_disk_bytes,
    )
    image_cache = ImageCache(
        response_cache,
        local_store=store,
        session=session,
        timeout_seconds=config.api.timeout_seconds,
        count_limit=config.images.memory_count_limit,
        cost_limit=config.images.memory_cost_limit,
    )
    repository = Repository(
        fetcher=fetcher,
        store=store,
        image_cache=image_cache,
        cache_duration_seconds=config.caching.memory_ttl_seconds,
    )
    return Services(
        fetcher=fetcher,
        store=store,
        response_cache=response_cache,
        image_cache=image_cache,
        repository=repository,
    )
