# timing_decorator.py
import functools
import inspect
import time
from typing import Any, Callable, Optional, TypeVar, cast

from app_logger import logger

F = TypeVar("F", bound=Callable[..., Any])


def timed(label: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator that measures execution time and logs it at DEBUG level.
    Works on plain functions and on coroutine functions; for the latter
    the time spent awaiting is included.
    """
    def decorator(func: F) -> F:
        tag = label or func.__qualname__

        def _log(start: float) -> None:
            elapsed = time.monotonic() - start
            logger.debug("[%s] took %.4f s", tag, elapsed)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.monotonic()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _log(start)
            return cast(F, async_wrapper)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                _log(start)
        return cast(F, wrapper)
    return decorator
