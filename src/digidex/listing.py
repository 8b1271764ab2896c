from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field

from PIL import Image

from digidex.errors import DigidexError
from digidex.repository import Repository
from digidex.schemas import DataSource, Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class Loading:
    pass


@dataclass(frozen=True, slots=True)
class Loaded:
    items: tuple[Item, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class Failed:
    error: Exception

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Failed):
            return NotImplemented
        return str(self.error) == str(other.error)

    def __hash__(self) -> int:
        return hash(str(self.error))


ViewState = Idle | Loading | Loaded | Failed


class ItemListModel:
    """Presentation-agnostic list state driven by a ``Repository``.

    A failed load leaves the model in ``Failed``; retrying is up to the caller.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.state: ViewState = Idle()
        self.search_text = ""
        self.data_source: DataSource | None = None
        self._unsubscribe = repository.data_source.subscribe(self._on_data_source)

    @property
    def items(self) -> list[Item]:
        if isinstance(self.state, Loaded):
            return list(self.state.items)
        return []

    @property
    def filtered_items(self) -> list[Item]:
        needle = self.search_text.strip().lower()
        if not needle:
            return self.items
        return [item for item in self.items if needle in item.name.lower()]

    async def load(self) -> ViewState:
        return await self._run(self.repository.fetch_all())

    async def load_by_level(self, level: str) -> ViewState:
        return await self._run(self.repository.fetch_by_level(level))

    async def search(self, name: str) -> ViewState:
        return await self._run(self.repository.fetch_by_name(name))

    async def refresh(self) -> ViewState:
        return await self._run(self.repository.refresh_data())

    async def image_for(self, item: Item) -> Image.Image | None:
        return await self.repository.get_image(item)

    def close(self) -> None:
        self._unsubscribe()

    async def _run(self, operation: Awaitable[list[Item]]) -> ViewState:
        self.state = Loading()
        try:
            items = await operation
        except DigidexError as exc:
            logger.warning("list load failed code=%s error=%s", exc.code, exc)
            self.state = Failed(exc)
        except Exception as exc:
            logger.exception("list load failed unexpectedly")
            self.state = Failed(exc)
        else:
            self.state = Loaded(tuple(items))
        return self.state

    def _on_data_source(self, source: DataSource | None) -> None:
        self.data_source = source
