from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

_IMAGE_ID_SEPARATORS = re.compile(r"[\s/\\]+")


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Item(DTOBase):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    name: str
    image_url: str = Field(alias="img")
    level: str

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class DataSource(StrEnum):
    REMOTE = "remote"
    LOCAL = "local"
    CACHE = "cache"

    @property
    def description(self) -> str:
        return {
            DataSource.REMOTE: "Remote API",
            DataSource.LOCAL: "Local Database",
            DataSource.CACHE: "Memory Cache",
        }[self]


@dataclass(frozen=True, slots=True)
class Snapshot:
    items: tuple[Item, ...]
    captured_at: float
    version: int

    def age(self, now: float) -> float:
        return now - self.captured_at


ITEM_LIST_ADAPTER: TypeAdapter[list[Item]] = TypeAdapter(list[Item])


def decode_items(payload: str | bytes | bytearray) -> list[Item]:
    return ITEM_LIST_ADAPTER.validate_json(payload)


def image_id(name: str) -> str | None:
    """Disk identifier for an item's image, derived only from its name."""
    normalized = _IMAGE_ID_SEPARATORS.sub("_", name.strip()).lower()
    return normalized or None


def parse_image_url(raw: str) -> str | None:
    candidate = (raw or "").strip()
    if not candidate:
        return None
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme.lower() not in {"http", "https"} or not parts.netloc:
        return None
    return candidate
