from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import requests

from digidex.errors import InvalidRequest


class QueryKind(StrEnum):
    ALL = "all"
    NAME = "name"
    LEVEL = "level"


@dataclass(frozen=True, slots=True)
class Query:
    kind: QueryKind
    value: str | None = None

    @classmethod
    def all(cls) -> Query:
        return cls(QueryKind.ALL)

    @classmethod
    def by_name(cls, name: str) -> Query:
        return cls(QueryKind.NAME, name)

    @classmethod
    def by_level(cls, level: str) -> Query:
        return cls(QueryKind.LEVEL, level)

    @property
    def params(self) -> dict[str, str]:
        if self.kind is QueryKind.ALL:
            return {}
        return {self.kind.value: self.value or ""}


def build_url(base_url: str, resource: str, query: Query) -> str:
    """Return the absolute GET url for ``query``, e.g. ``/api/digimon?level=Rookie``."""
    if query.kind is not QueryKind.ALL and not (query.value or "").strip():
        raise InvalidRequest(f"{query.kind.value} query requires a non-empty value")

    url = f"{base_url.rstrip('/')}/api/{resource.strip('/')}"
    try:
        prepared = requests.Request("GET", url, params=query.params).prepare()
    except (
        requests.exceptions.MissingSchema,
        requests.exceptions.InvalidSchema,
        requests.exceptions.InvalidURL,
    ) as exc:
        raise InvalidRequest(f"The URL is invalid: {url}") from exc

    if not prepared.url:
        raise InvalidRequest(f"The URL is invalid: {url}")
    return prepared.url
