"""Remote catalogue API client."""

from .endpoints import Query, QueryKind, build_url
from .fetcher import RemoteFetcher

__all__ = ["Query", "QueryKind", "RemoteFetcher", "build_url"]
