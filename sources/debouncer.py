# debouncer.py
"""Trailing debounce on top of the asyncio loop's ``call_later``."""

import asyncio
from typing import Callable, Optional

from app_logger import logger


class Debouncer:
    """
    Collapse bursts of ``trigger()`` calls into one ``action()`` call made
    ``delay`` seconds after the last trigger.  Every trigger cancels the
    pending call and schedules a new one, so a burst that goes quiet always
    ends with exactly one call.  ``action`` never runs inside ``trigger``.
    """

    def __init__(
        self,
        delay: float,
        action: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.delay = delay
        self._action = action
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        try:
            self._action()
        except Exception:
            logger.exception("Debounced action failed")
