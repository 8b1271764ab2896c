from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from digidex.schemas import DataSource

logger = logging.getLogger(__name__)

Listener = Callable[[DataSource | None], None]


class DataSourceStream:
    """Broadcasts provenance tags and replays the latest one to new subscribers.

    The stream never completes; subscribers leave by calling the function
    returned from ``subscribe`` or by closing the ``updates()`` iterator.
    """

    def __init__(self) -> None:
        self._value: DataSource | None = None
        self._listeners: list[Listener] = []
        self._queues: set[asyncio.Queue[DataSource | None]] = set()

    @property
    def value(self) -> DataSource | None:
        return self._value

    def emit(self, source: DataSource) -> None:
        self._value = source
        logger.debug("data_source emit source=%s", source.value)
        for listener in list(self._listeners):
            try:
                listener(source)
            except Exception:
                logger.exception("data_source listener failed source=%s", source.value)
        for queue in list(self._queues):
            queue.put_nowait(source)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def updates(self) -> AsyncIterator[DataSource | None]:
        queue: asyncio.Queue[DataSource | None] = asyncio.Queue()
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
