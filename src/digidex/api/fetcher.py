from __future__ import annotations

import asyncio
import logging

import requests
from pydantic import ValidationError

from digidex.config import ApiConfig
from digidex.errors import DecodeFailure, HTTPStatusError, InvalidResponse, TransportFailure
from digidex.schemas import Item, decode_items

from .endpoints import Query, build_url

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Accept": "application/json"}


class RemoteFetcher:
    """Runs catalogue queries against the public JSON API."""

    def __init__(
        self,
        *,
        base_url: str = "https://digimon-api.vercel.app",
        resource: str = "digimon",
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if not resource.strip():
            raise ValueError("resource must not be empty")

        self.base_url = base_url
        self.resource = resource
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "digidex/0.1.0")

    @classmethod
    def from_config(
        cls, config: ApiConfig, *, session: requests.Session | None = None
    ) -> RemoteFetcher:
        return cls(
            base_url=config.base_url,
            resource=config.resource,
            timeout_seconds=config.timeout_seconds,
            session=session,
        )

    async def fetch_all(self) -> list[Item]:
        return await self.fetch(Query.all())

    async def fetch_by_name(self, name: str) -> list[Item]:
        return await self.fetch(Query.by_name(name))

    async def fetch_by_level(self, level: str) -> list[Item]:
        return await self.fetch(Query.by_level(level))

    async def fetch(self, query: Query) -> list[Item]:
        url = build_url(self.base_url, self.resource, query)
        response = await asyncio.to_thread(self._get, url)

        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int):
            raise InvalidResponse(f"The server response was invalid url={url}")
        if not 200 <= status_code < 300:
            logger.warning("remote_fetch failed url=%s status=%s", url, status_code)
            raise HTTPStatusError(status_code, url)

        try:
            items = decode_items(response.content)
        except ValidationError as exc:
            raise DecodeFailure(f"Failed to decode the response url={url}", exc) from exc

        logger.info("remote_fetch ok kind=%s count=%d", query.kind.value, len(items))
        return items

    def _get(self, url: str) -> requests.Response:
        try:
            return self.session.get(url, headers=_JSON_HEADERS, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise TransportFailure(f"request failed url={url}: {exc}", exc) from exc
