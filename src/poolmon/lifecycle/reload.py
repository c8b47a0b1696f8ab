"""Reload trigger shared by everything that must refresh on SIGHUP."""

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class ReloadTrigger:
    """Fan-out of a reload request to registered subscribers."""

    def __init__(self):
        self._subscribers: List[Callable[[], object]] = []

    def subscribe(self, callback: Callable[[], object]) -> None:
        self._subscribers.append(callback)

    def fire(self) -> int:
        """Call every subscriber; a failing subscriber does not stop the others.

        Returns:
            Number of subscribers that completed without raising
        """
        completed = 0
        for callback in self._subscribers:
            try:
                callback()
                completed += 1
            except Exception:
                logger.exception(f"Reload subscriber {callback!r} failed")
        return completed
