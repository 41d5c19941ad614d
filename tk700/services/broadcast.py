import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, Generic, List, Optional, TypeVar

log = logging.getLogger("tk700.broadcast")

T = TypeVar("T")


class SharedValue(Generic[T]):
    """
    Latest value of one metric, fanned out to any number of consumers.

    Listeners are plain callbacks run inside publish(); subscribers are async
    iterators fed through bounded queues that drop their oldest item when
    full. Both receive the current value as soon as they attach. With
    ``distinct=True`` a publish of an equal value is ignored.
    """

    def __init__(self, name: str, initial: Optional[T] = None, distinct: bool = False):
        self.name = name
        self.distinct = distinct
        self._value = initial
        self._listeners: List[Callable[[Optional[T]], None]] = []
        self._queues: List[asyncio.Queue] = []

    @property
    def value(self) -> Optional[T]:
        return self._value

    def publish(self, value: Optional[T]) -> bool:
        """Store and fan out ``value``; returns False when suppressed as a duplicate."""
        if self.distinct and value == self._value:
            return False
        self._value = value
        for q in list(self._queues):
            if q.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    q.get_nowait()
            q.put_nowait(value)
        for cb in list(self._listeners):
            try:
                cb(value)
            except Exception:
                log.exception("listener on %s failed", self.name)
        return True

    def listen(self, callback: Callable[[Optional[T]], None]) -> Callable[[], None]:
        """Register ``callback``, call it with the current value, return an unregister function."""
        self._listeners.append(callback)
        callback(self._value)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)
        return remove

    async def subscribe(self, maxsize: int = 16) -> AsyncIterator[Optional[T]]:
        q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        q.put_nowait(self._value)
        self._queues.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            with contextlib.suppress(ValueError):
                self._queues.remove(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._queues)
