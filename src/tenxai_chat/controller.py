"""Controller pool — tracks in-flight model calls so they can be stopped."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


def _key(session_id: str, message_id: str) -> str:
    return f"{session_id},{message_id}"


class ChatControllerPool:
    """Maps ``(session_id, message_id)`` to the task streaming that message."""

    def __init__(self) -> None:
        self._controllers: dict[str, asyncio.Task] = {}
        self._aborted: set[str] = set()

    def add(self, session_id: str, message_id: str, task: asyncio.Task) -> str:
        key = _key(session_id, message_id)
        self._controllers[key] = task
        return key

    def stop(self, session_id: str, message_id: str) -> bool:
        """Cancel one in-flight call. Returns True if a call was found."""
        key = _key(session_id, message_id)
        task = self._controllers.get(key)
        if task is None:
            return False
        self._aborted.add(key)
        task.cancel()
        logger.info("Aborted model call for %s", key)
        return True

    def stop_all(self) -> None:
        for key, task in list(self._controllers.items()):
            self._aborted.add(key)
            task.cancel()

    def has_pending(self) -> bool:
        return bool(self._controllers)

    def was_aborted(self, session_id: str, message_id: str) -> bool:
        """True if the call was stopped by the user rather than failing."""
        return _key(session_id, message_id) in self._aborted

    def remove(self, session_id: str, message_id: str) -> None:
        key = _key(session_id, message_id)
        self._controllers.pop(key, None)
        self._aborted.discard(key)
