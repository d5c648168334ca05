from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Protocol

from doujin_api.models import Doujin

log = logging.getLogger(__name__)


class RecordLookup(Protocol):
    def find_by_source_id(self, doujin_id: str) -> Optional[Doujin]: ...


def check_existing(store: RecordLookup, doujin_id: str) -> Optional[Doujin]:
    existing = store.find_by_source_id(doujin_id)
    if existing is not None and existing.is_published:
        log.info("Doujin doujin_id=%s already published at %s", doujin_id, existing.telegraph_url)
    return existing


class KeyedLocks:
    """Per-key asyncio locks, so one process never publishes the same gallery twice.

    Only covers a single event loop; separate worker processes can still race.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        self._waiters[key] += 1
        lock = self._locks[key]
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
