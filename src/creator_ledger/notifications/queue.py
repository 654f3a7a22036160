from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List


class AsyncNotificationQueue(ABC):
    """
    Outbound channel for creator/account notifications.
    Production deployments back this with a broker; the ledger only enqueues.
    """

    @abstractmethod
    async def enqueue(self, payload: Dict[str, Any]) -> None:
        ...


class InMemoryNotificationQueue(AsyncNotificationQueue):
    """asyncio.Queue-backed reference implementation."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

    async def enqueue(self, payload: Dict[str, Any]) -> None:
        await self._queue.put(payload)

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return everything queued so far."""
        messages = []
        while not self._queue.empty():
            messages.append(self._queue.get_nowait())
        return messages

    def qsize(self) -> int:
        return self._queue.qsize()
