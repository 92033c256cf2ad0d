import inspect
import logging
from typing import Callable

__all__ = ["CleanupQueue"]

logger = logging.getLogger(__name__)


class CleanupQueue:
    """LIFO queue of cleanup jobs run when the application exits"""

    def __init__(self) -> None:
        self._jobs: list[tuple[str, Callable, tuple]] = []

    @property
    def has_jobs(self) -> bool:
        return bool(self._jobs)

    def push(self, name: str, func: Callable, *args) -> None:
        self._jobs.append((name, func, args))

    async def consume_all(self) -> None:
        while self._jobs:
            (name, func, args) = self._jobs.pop()

            logger.debug(f"Running cleanup job {name}")

            try:
                result = func(*args)

                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(f"Cleanup job {name} failed: {e}")
