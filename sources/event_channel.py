# event_channel.py
"""
Typed publish/subscribe channel used by the sessions.

``subscribe`` returns a disposer; the subscriber keeps it and calls it on
teardown, so listeners never pile up across reconnects.
"""

from typing import Callable, Generic, List, TypeVar

from app_logger import logger

E = TypeVar("E")
Handler = Callable[[E], None]


class EventChannel(Generic[E]):

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._handlers: List[Handler] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _dispose() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _dispose

    def publish(self, event: E) -> None:
        # copy: a handler may dispose itself while we iterate
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("%s handler failed on %s", self.name, type(event).__name__)

    def clear(self) -> None:
        self._handlers.clear()
